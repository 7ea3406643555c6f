"""FastVLM image description over ONNX Runtime."""

from .client import FastVLMClient, create_client
from .config import FastVLMConfig, ModelArchitecture
from .errors import (
    FastVLMError, ImageShapeError, InferenceEngineError, ModelNotFoundError,
    NotInitializedError, TensorShapeMismatch, TokenizationError,
)
from .generation import GenerationLoop, KVCache, StopReason, Stopped
from .model import AnalysisResult, FastVLM
from .sampler import TopKSampler

__all__ = [
    "AnalysisResult", "FastVLM", "FastVLMClient", "FastVLMConfig", "FastVLMError",
    "GenerationLoop", "ImageShapeError", "InferenceEngineError", "KVCache",
    "ModelArchitecture", "ModelNotFoundError", "NotInitializedError", "StopReason",
    "Stopped", "TensorShapeMismatch", "TokenizationError", "TopKSampler", "create_client",
]
