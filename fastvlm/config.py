"""
config.py - Runtime configuration and fixed model constants for FastVLM-0.5B.

FastVLM = FastViTHD vision encoder + token embedding table + Qwen2 decoder,
exported as three ONNX graphs plus a HuggingFace tokenizer.json.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

# ============================================================================
# Model store artifacts
# ============================================================================

TOKENIZER_FILE = "tokenizer.json"
VISION_ENCODER_FILE = "vision_encoder.onnx"
EMBED_TOKENS_FILE = "embed_tokens.onnx"
DECODER_FILE = "decoder_model_merged.onnx"

MODEL_FILES = (TOKENIZER_FILE, VISION_ENCODER_FILE, EMBED_TOKENS_FILE, DECODER_FILE)

# ============================================================================
# Special tokens (Qwen2 vocabulary + FastVLM image token)
# ============================================================================

EOS_TOKEN_ID = 151645      # <|im_end|>
IM_END_TOKEN_ID = 151645   # <|im_end|>
IMAGE_TOKEN_ID = 151646    # <image>

# Ids at or above the image token are reserved, never sampled
VOCAB_CAP = 151646

MAX_IMAGE_TOKENS = 256
TOP_K = 50
DEFAULT_TEMPERATURE = 0.7
IMAGE_SIZE = 1024

EMPTY_RESPONSE_TEXT = "No response generated."

DEFAULT_PROVIDERS = (
    "CoreMLExecutionProvider",
    "CUDAExecutionProvider",
    "CPUExecutionProvider",
)


@dataclass(frozen=True)
class ModelArchitecture:
    """Decoder shapes and token ids the exported graphs were traced with."""
    num_layers: int = 24
    num_kv_heads: int = 2
    head_dim: int = 64          # 896 / 14
    hidden_size: int = 896
    vocab_cap: int = VOCAB_CAP
    eos_token_id: int = EOS_TOKEN_ID
    im_end_token_id: int = IM_END_TOKEN_ID
    image_token_id: int = IMAGE_TOKEN_ID

    @property
    def stop_token_ids(self) -> Tuple[int, ...]:
        return tuple(sorted({self.eos_token_id, self.im_end_token_id}))

    @property
    def num_cache_tensors(self) -> int:
        return self.num_layers * 2


@dataclass(frozen=True)
class FastVLMConfig:
    max_response_length: int = 30
    default_prompt: str = "Describe this image briefly."
    temperature: float = DEFAULT_TEMPERATURE
    top_k: int = TOP_K
    max_image_tokens: int = MAX_IMAGE_TOKENS
    image_size: int = IMAGE_SIZE
    # Fixed seed makes sampling reproducible; None draws from OS entropy
    seed: Optional[int] = None
    # None picks from DEFAULT_PROVIDERS whatever onnxruntime has available
    providers: Optional[Tuple[str, ...]] = None

    def __post_init__(self):
        if self.max_response_length < 0:
            raise ValueError(f"max_response_length must be >= 0, got {self.max_response_length}")
        if self.top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {self.top_k}")
        if self.image_size < 1:
            raise ValueError(f"image_size must be >= 1, got {self.image_size}")
        if self.max_image_tokens < 0:
            raise ValueError(f"max_image_tokens must be >= 0, got {self.max_image_tokens}")
