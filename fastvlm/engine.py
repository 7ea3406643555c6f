"""
engine.py - onnxruntime sessions for the three FastVLM graphs.

Each graph is wrapped in a Network that feeds named tensors and returns named
outputs. Anything raised by onnxruntime is re-raised as InferenceEngineError
naming the network. Sessions only need run()/get_inputs()/get_outputs(), so
tests substitute fakes.
"""

import logging
import os
import re
import time

import numpy as np
import onnxruntime as ort

from .config import DEFAULT_PROVIDERS
from .errors import InferenceEngineError, TensorShapeMismatch

logger = logging.getLogger(__name__)

VISION_OUTPUT_NAMES = ("last_hidden_state", "image_features", "output")

_PAST_KEY_RE = re.compile(r"^past_key_values\.(\d+)\.(key|value)$")


# ============================================================================
# Session creation
# ============================================================================

def select_providers(preferred=None):
    """Preferred execution providers that this onnxruntime build has, CPU last."""
    available = set(ort.get_available_providers())
    wanted = list(preferred) if preferred else list(DEFAULT_PROVIDERS)
    providers = [p for p in wanted if p in available]
    if "CPUExecutionProvider" not in providers:
        providers.append("CPUExecutionProvider")
    return providers


def create_session(path, providers=None):
    t0 = time.perf_counter()
    options = ort.SessionOptions()
    options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    providers = select_providers(providers)
    name = os.path.basename(os.fspath(path))
    try:
        session = ort.InferenceSession(os.fspath(path), sess_options=options, providers=providers)
    except Exception as e:
        raise InferenceEngineError(name, f"model loading error: {e}") from e
    logger.info("Model %s loaded in %.2fms (providers: %s)",
                name, (time.perf_counter() - t0) * 1000, ", ".join(session.get_providers()))
    return session


# ============================================================================
# Named-tensor networks
# ============================================================================

class Network:
    def __init__(self, name, session):
        self.name = name
        self.session = session
        self.input_names = [i.name for i in session.get_inputs()]
        self.output_names = [o.name for o in session.get_outputs()]

    def run(self, feed):
        """Run the graph on a name -> ndarray map, return name -> ndarray."""
        try:
            outputs = self.session.run(self.output_names, feed)
        except Exception as e:
            raise InferenceEngineError(self.name, e) from e
        return dict(zip(self.output_names, outputs))


class VisionEncoder(Network):
    def __init__(self, session):
        super().__init__("vision_encoder", session)

    def encode(self, pixel_values):
        """pixel_values [1, 3, S, S] -> image features [1, Li, D]"""
        outputs = self.run({"pixel_values": pixel_values})
        name = next((n for n in VISION_OUTPUT_NAMES if n in outputs), self.output_names[0])
        features = np.asarray(outputs[name])

        if features.ndim == 2:
            # [seq_len, hidden] -> [1, seq_len, hidden]
            features = features[None, ...]
        elif features.ndim != 3:
            raise TensorShapeMismatch(
                f"Unexpected vision encoder output dimensionality: {features.ndim}"
            )
        logger.debug("Image features from %r: %s", name, features.shape)
        return features


class TokenEmbedder(Network):
    def __init__(self, session):
        super().__init__("embed_tokens", session)

    def embed(self, token_ids):
        """token ids -> inputs_embeds [1, L, D]"""
        input_ids = np.asarray(token_ids, dtype=np.int64).reshape(1, -1)
        embeds = np.asarray(self.run({"input_ids": input_ids})["inputs_embeds"])
        if embeds.ndim != 3:
            raise TensorShapeMismatch(f"Unexpected token embedding shape: {embeds.shape}")
        return embeds


class Decoder(Network):
    """Merged decoder: one graph for prefill and cached single-token steps."""

    def __init__(self, session):
        super().__init__("decoder", session)

    def past_key_inputs(self):
        """Declared past_key_values inputs: {layer: {"key": NodeArg, "value": NodeArg}}"""
        layers = {}
        for node in self.session.get_inputs():
            m = _PAST_KEY_RE.match(node.name)
            if m:
                layers.setdefault(int(m.group(1)), {})[m.group(2)] = node
        return layers

    def check_architecture(self, arch):
        """Fail fast if the exported graph disagrees with the cache layout we build."""
        embeds = next((n for n in self.session.get_inputs() if n.name == "inputs_embeds"), None)
        if embeds is None:
            raise TensorShapeMismatch("Decoder has no inputs_embeds input")
        hidden = list(embeds.shape)[-1]
        if isinstance(hidden, int) and hidden != arch.hidden_size:
            raise TensorShapeMismatch(f"Decoder hidden size {hidden}, expected {arch.hidden_size}")

        layers = self.past_key_inputs()
        declared = sum(len(kv) for kv in layers.values())
        if declared != arch.num_cache_tensors or sorted(layers) != list(range(arch.num_layers)):
            raise TensorShapeMismatch(
                f"Decoder declares {declared} past_key_values inputs, "
                f"expected {arch.num_cache_tensors} ({arch.num_layers} layers)"
            )
        for layer, kv in layers.items():
            for kind, node in kv.items():
                shape = list(node.shape)
                if len(shape) != 4:
                    raise TensorShapeMismatch(f"{node.name} has rank {len(shape)}, expected 4")
                # Dynamic dims come back as strings; only check static ones
                heads, head_dim = shape[1], shape[3]
                if isinstance(heads, int) and heads != arch.num_kv_heads:
                    raise TensorShapeMismatch(
                        f"{node.name}: {heads} kv heads, expected {arch.num_kv_heads}")
                if isinstance(head_dim, int) and head_dim != arch.head_dim:
                    raise TensorShapeMismatch(
                        f"{node.name}: head_dim {head_dim}, expected {arch.head_dim}")

    def step(self, inputs_embeds, position_ids, attention_mask, past_kv):
        """One decoder call. Returns (logits [1, L, V], presents [(key, value)] per layer)."""
        feed = {
            "inputs_embeds": inputs_embeds,
            "position_ids": position_ids,
            "attention_mask": attention_mask,
        }
        for i, (key, value) in enumerate(past_kv):
            feed[f"past_key_values.{i}.key"] = key
            feed[f"past_key_values.{i}.value"] = value

        outputs = self.run(feed)

        logits = np.asarray(outputs["logits"])
        if logits.ndim != 3:
            raise TensorShapeMismatch(f"Unexpected decoder logits shape: {logits.shape}")

        presents = []
        for i in range(len(past_kv)):
            try:
                presents.append((outputs[f"present.{i}.key"], outputs[f"present.{i}.value"]))
            except KeyError as e:
                raise TensorShapeMismatch(f"Decoder did not return {e.args[0]}") from e
        return logits, presents
