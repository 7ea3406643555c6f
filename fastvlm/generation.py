"""
generation.py - Autoregressive decoding with an explicit per-layer KV cache.

States: INIT (build masks/positions, empty cache) -> STEP (one decoder call,
sample, extend) repeated -> Stopped(reason). The cache is passed in and read
back on every call, so each step depends only on GenerationState and tests
can drive it with canned decoder outputs.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from .config import DEFAULT_TEMPERATURE, EMPTY_RESPONSE_TEXT, ModelArchitecture
from .errors import TensorShapeMismatch

logger = logging.getLogger(__name__)


# ============================================================================
# KV cache
# ============================================================================

class KVCache:
    """Per-layer (key, value) pairs, each [1, num_kv_heads, cached_len, head_dim]."""

    def __init__(self, pairs):
        self.pairs = [(k, v) for k, v in pairs]

    @classmethod
    def empty(cls, arch, dtype=np.float32):
        shape = (1, arch.num_kv_heads, 0, arch.head_dim)
        return cls((np.zeros(shape, dtype=dtype), np.zeros(shape, dtype=dtype))
                   for _ in range(arch.num_layers))

    def __len__(self):
        return len(self.pairs)

    def __iter__(self):
        return iter(self.pairs)

    @property
    def num_tensors(self):
        return 2 * len(self.pairs)

    @property
    def cached_len(self):
        if not self.pairs:
            return 0
        return self.pairs[0][0].shape[2]

    def updated(self, presents, new_tokens):
        """Adopt the decoder's present tensors as the next cache.

        A present of length past+new is a full replacement; a present of
        length new is appended. Anything else means the graph and the loop
        disagree about the cache.
        """
        if len(presents) != len(self.pairs):
            raise TensorShapeMismatch(
                f"Decoder returned {len(presents)} present pairs, cache has {len(self.pairs)} layers"
            )

        pairs = []
        for layer, ((past_k, past_v), (key, value)) in enumerate(zip(self.pairs, presents)):
            key = np.asarray(key)
            value = np.asarray(value)
            past_len = past_k.shape[2]
            if key.ndim != 4 or key.shape != value.shape:
                raise TensorShapeMismatch(
                    f"present.{layer}: key {key.shape} / value {value.shape}, expected matching rank-4"
                )
            present_len = key.shape[2]
            if present_len == past_len + new_tokens:
                pairs.append((key, value))
            elif present_len == new_tokens:
                pairs.append((np.concatenate([past_k, key], axis=2),
                              np.concatenate([past_v, value], axis=2)))
            else:
                raise TensorShapeMismatch(
                    f"present.{layer} has length {present_len}; cache holds {past_len}, "
                    f"step added {new_tokens}"
                )
        return KVCache(pairs)


# ============================================================================
# State machine
# ============================================================================

class StopReason(enum.Enum):
    STOP_TOKEN = "stop_token"
    STEP_CAP = "step_cap"


@dataclass(frozen=True)
class Stopped:
    reason: StopReason
    steps: int
    token_id: Optional[int] = None  # the stop token, when reason is STOP_TOKEN


@dataclass
class GenerationState:
    current_embeds: np.ndarray      # [1, L, D] on the first step, [1, 1, D] after
    attention_mask: np.ndarray      # [1, total_len] int64
    position_ids: np.ndarray        # [1, L] then [1, 1] int64
    past_kv: KVCache
    generated_tokens: List[int] = field(default_factory=list)
    steps: int = 0


@dataclass(frozen=True)
class GenerationOutput:
    text: str
    token_ids: Tuple[int, ...]
    stopped: Stopped


class GenerationLoop:
    def __init__(self, decoder, embedder, sampler, arch=None,
                 max_response_length=30, temperature=DEFAULT_TEMPERATURE):
        self.decoder = decoder
        self.embedder = embedder
        self.sampler = sampler
        self.arch = arch or ModelArchitecture()
        self.max_response_length = max_response_length
        self.temperature = temperature

    def init(self, input_embeds):
        """INIT: positions [0..L), all-ones mask, empty cache."""
        if input_embeds.ndim != 3 or input_embeds.shape[2] != self.arch.hidden_size:
            raise TensorShapeMismatch(
                f"Decoder expects [1, L, {self.arch.hidden_size}] embeddings, got {input_embeds.shape}"
            )
        seq_len = input_embeds.shape[1]
        return GenerationState(
            current_embeds=input_embeds,
            attention_mask=np.ones((1, seq_len), dtype=np.int64),
            position_ids=np.arange(seq_len, dtype=np.int64).reshape(1, seq_len),
            past_kv=KVCache.empty(self.arch, dtype=np.float32),
        )

    def step(self, state):
        """STEP: run the decoder once. Returns Stopped, or None to keep going."""
        if state.steps >= self.max_response_length:
            return Stopped(StopReason.STEP_CAP, state.steps)

        logits, presents = self.decoder.step(
            state.current_embeds, state.position_ids, state.attention_mask, list(state.past_kv)
        )
        next_kv = state.past_kv.updated(presents, state.current_embeds.shape[1])

        vocab_size = min(logits.shape[2], self.arch.vocab_cap)
        last_token_logits = logits[0, -1, :vocab_size]
        next_token_id = self.sampler.sample(last_token_logits, self.temperature)
        state.steps += 1

        if next_token_id in self.arch.stop_token_ids:
            logger.debug("End token detected, stopping generation at step %d", state.steps)
            return Stopped(StopReason.STOP_TOKEN, state.steps, next_token_id)

        state.generated_tokens.append(next_token_id)
        state.past_kv = next_kv
        state.current_embeds = self.embedder.embed([next_token_id])

        current_seq_len = state.attention_mask.shape[1]
        state.attention_mask = np.ones((1, current_seq_len + 1), dtype=np.int64)
        state.position_ids = np.array([[current_seq_len]], dtype=np.int64)
        return None

    def run(self, input_embeds):
        """Drive INIT -> STEP* -> Stopped. Returns (final state, Stopped)."""
        state = self.init(input_embeds)
        while True:
            stopped = self.step(state)
            if stopped is not None:
                logger.debug("Generated %d tokens (%s)", len(state.generated_tokens), stopped.reason.value)
                return state, stopped

    def generate(self, input_embeds, tokenizer):
        state, stopped = self.run(input_embeds)
        if not state.generated_tokens:
            text = EMPTY_RESPONSE_TEXT
        else:
            text = tokenizer.decode(state.generated_tokens).strip()
            logger.debug("Decoded text: %r", text)
        return GenerationOutput(text, tuple(state.generated_tokens), stopped)
