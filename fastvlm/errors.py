"""Exceptions raised by the FastVLM pipeline. None of them are retried internally."""


class FastVLMError(Exception):
    pass


class ImageShapeError(FastVLMError):
    """Pixel buffer does not hold width*height RGBA pixels."""


class TensorShapeMismatch(FastVLMError):
    """Hidden size, rank or layer count disagrees between pipeline stages."""


class TokenizationError(FastVLMError):
    pass


class ModelNotFoundError(FastVLMError):
    def __init__(self, model_dir, missing):
        self.model_dir = model_dir
        self.missing = list(missing)
        super().__init__(f"Missing model files in {model_dir}: {', '.join(self.missing)}")


class InferenceEngineError(FastVLMError):
    """Opaque onnxruntime failure, tagged with the network that raised it."""

    def __init__(self, network, cause):
        self.network = network
        self.cause = cause
        super().__init__(f"{network} inference failed: {cause}")


class NotInitializedError(FastVLMError):
    pass
