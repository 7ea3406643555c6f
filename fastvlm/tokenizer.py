"""
tokenizer.py - Thin wrapper over a HuggingFace `tokenizers` tokenizer.json.

Only encode/decode are used by the pipeline. encode failures surface as
TokenizationError; decode never raises for any id sequence.
"""

import logging
import os
import time

from tokenizers import Tokenizer as HFTokenizer

from .errors import TokenizationError

logger = logging.getLogger(__name__)


class Tokenizer:
    def __init__(self, backend):
        self.backend = backend

    @classmethod
    def from_file(cls, path):
        t0 = time.perf_counter()
        try:
            backend = HFTokenizer.from_file(os.fspath(path))
        except Exception as e:
            raise TokenizationError(f"Error loading tokenizer {path}: {e}") from e
        logger.info("Tokenizer loaded in %.2fms", (time.perf_counter() - t0) * 1000)
        return cls(backend)

    def encode(self, text):
        """Encode text to token IDs (special tokens such as <image> kept intact)."""
        if not isinstance(text, str):
            raise TokenizationError(f"Expected str, got {type(text).__name__}")
        try:
            encoding = self.backend.encode(text, add_special_tokens=True)
        except Exception as e:
            raise TokenizationError(f"Error encoding: {e}") from e
        return list(encoding.ids)

    def decode(self, ids):
        """Decode token IDs to text, skipping special tokens and invalid ids."""
        valid = [int(t) for t in ids if 0 <= int(t) < 2 ** 32]
        if not valid:
            return ""
        return self.backend.decode(valid, skip_special_tokens=True)
