"""Fake onnxruntime sessions and a tiny real tokenizer, so no model files are needed."""

from types import SimpleNamespace

import numpy as np
import pytest
from tokenizers import Tokenizer as HFTokenizer
from tokenizers import models, pre_tokenizers

from fastvlm.config import FastVLMConfig, ModelArchitecture
from fastvlm.engine import Decoder, TokenEmbedder, VisionEncoder
from fastvlm.model import FastVLM
from fastvlm.sampler import TopKSampler
from fastvlm.tokenizer import Tokenizer

HIDDEN = 4
VOCAB_LOGITS = 10      # decoder emits 10 logits; ids 8 and 9 sit above the cap

VOCAB = {
    "[UNK]": 0, "a": 1, "red": 2, "square": 3, "on": 4, "black": 5,
    "<|im_start|>": 6, "<|im_end|>": 7, "<image>": 8, "<|endoftext|>": 9,
}

ARCH = ModelArchitecture(
    num_layers=2, num_kv_heads=1, head_dim=2, hidden_size=HIDDEN,
    vocab_cap=8, eos_token_id=7, im_end_token_id=7, image_token_id=8,
)


def node(name, shape):
    return SimpleNamespace(name=name, shape=shape, type="tensor(float)")


class FakeSession:
    """Duck-types onnxruntime.InferenceSession: run(output_names, feed)."""

    def __init__(self, inputs, outputs, fn):
        self._inputs = inputs
        self._outputs = outputs
        self.fn = fn
        self.calls = []

    def get_inputs(self):
        return self._inputs

    def get_outputs(self):
        return self._outputs

    def run(self, output_names, feed):
        self.calls.append(feed)
        result = self.fn(feed)
        return [result[name] for name in output_names]


def embed_ids(input_ids):
    # Row i of the table is filled with float(i)
    ids = np.asarray(input_ids, dtype=np.float32)
    return np.repeat(ids[..., None], HIDDEN, axis=-1)


def make_embed_session():
    return FakeSession(
        [node("input_ids", ["batch", "seq"])],
        [node("inputs_embeds", ["batch", "seq", HIDDEN])],
        lambda feed: {"inputs_embeds": embed_ids(feed["input_ids"])},
    )


def make_vision_session(num_features=6, hidden=HIDDEN, output_name="image_features", ndim=3):
    def fn(feed):
        assert feed["pixel_values"].shape[:2] == (1, 3)
        feats = np.full((1, num_features, hidden), -1.0, dtype=np.float32)
        if ndim == 2:
            feats = feats[0]
        return {output_name: feats}
    return FakeSession(
        [node("pixel_values", ["batch", 3, "h", "w"])],
        [node(output_name, ["batch", num_features, hidden])],
        fn,
    )


def make_decoder_session(script, arch=ARCH, append=False, kv_heads=None, layers=None):
    """Decoder that emits script[i] as the top logit on call i.

    Presents are the full cache (replace) unless append=True, in which case
    only the new positions come back.
    """
    kv_heads = arch.num_kv_heads if kv_heads is None else kv_heads
    layers = arch.num_layers if layers is None else layers
    state = {"step": 0}

    def fn(feed):
        embeds = feed["inputs_embeds"]
        new_len = embeds.shape[1]
        logits = np.zeros((1, new_len, VOCAB_LOGITS), dtype=np.float32)
        # A huge logit above the vocab cap must never be sampled
        logits[0, -1, 9] = 100.0
        logits[0, -1, script[state["step"] % len(script)]] = 20.0
        state["step"] += 1

        out = {"logits": logits}
        for i in range(arch.num_layers):
            past = feed[f"past_key_values.{i}.key"]
            new = np.full((1, arch.num_kv_heads, new_len, arch.head_dim), float(state["step"]),
                          dtype=np.float32)
            present = new if append else np.concatenate([past, new], axis=2)
            out[f"present.{i}.key"] = present
            out[f"present.{i}.value"] = present.copy()
        return out

    inputs = [node("inputs_embeds", ["batch", "seq", HIDDEN]),
              node("position_ids", ["batch", "seq"]),
              node("attention_mask", ["batch", "total"])]
    outputs = [node("logits", ["batch", "seq", VOCAB_LOGITS])]
    for i in range(layers):
        for kind in ("key", "value"):
            inputs.append(node(f"past_key_values.{i}.{kind}", ["batch", kv_heads, "past", arch.head_dim]))
    for i in range(arch.num_layers):
        for kind in ("key", "value"):
            outputs.append(node(f"present.{i}.{kind}", ["batch", kv_heads, "total", arch.head_dim]))
    return FakeSession(inputs, outputs, fn)


def build_tokenizer():
    backend = HFTokenizer(models.WordLevel(vocab=VOCAB, unk_token="[UNK]"))
    backend.pre_tokenizer = pre_tokenizers.Whitespace()
    backend.add_special_tokens(["<|im_start|>", "<|im_end|>", "<image>", "<|endoftext|>"])
    return Tokenizer(backend)


def first_draw():
    return 0.0


@pytest.fixture
def tokenizer():
    return build_tokenizer()


@pytest.fixture
def make_model(tokenizer):
    def make(script=(2, 3, 7), config=None, append=False, vision=None):
        config = config or FastVLMConfig(max_response_length=10, image_size=16)
        return FastVLM(
            tokenizer,
            VisionEncoder(vision or make_vision_session()),
            TokenEmbedder(make_embed_session()),
            Decoder(make_decoder_session(list(script), append=append)),
            config=config,
            arch=ARCH,
            sampler=TopKSampler(config.top_k, random_source=first_draw),
        )
    return make


def rgba_buffer(width, height, color=(255, 0, 0, 255)):
    return bytes(color) * (width * height)
