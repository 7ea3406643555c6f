"""
model.py - FastVLM pipeline: RGBA pixels + prompt -> description.

    pixels -> letterbox/normalize -> vision encoder -> image features
    prompt -> chat template -> tokenizer -> embed_tokens -> text embeds
    fuse at <image> -> decoder loop with KV cache -> tokenizer.decode

One call runs start to finish on the calling thread. A FastVLM instance is not
safe for concurrent analyze() calls; serialize them or load one per worker.
"""

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .config import (
    DECODER_FILE, EMBED_TOKENS_FILE, MODEL_FILES, TOKENIZER_FILE, VISION_ENCODER_FILE,
    FastVLMConfig, ModelArchitecture,
)
from .engine import Decoder, TokenEmbedder, VisionEncoder, create_session
from .errors import ModelNotFoundError, NotInitializedError
from .fusion import fuse_image_text_embeddings
from .generation import GenerationLoop, StopReason
from .image_process import ImageProcessor, rgba_to_image
from .prompt import find_image_token, format_chat_template
from .sampler import TopKSampler
from .tokenizer import Tokenizer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisResult:
    text: str
    timestamp: datetime
    processing_time: float      # seconds, whole analyze() call
    preprocess_time: float = 0.0
    generation_time: float = 0.0
    num_tokens: int = 0
    stop_reason: StopReason = StopReason.STOP_TOKEN


def check_model_dir(model_dir):
    """Return the artifact paths, or raise listing every missing file."""
    model_dir = Path(model_dir)
    missing = [name for name in MODEL_FILES if not (model_dir / name).is_file()]
    if missing:
        raise ModelNotFoundError(model_dir, missing)
    return {name: model_dir / name for name in MODEL_FILES}


class FastVLM:
    def __init__(self, tokenizer, vision_encoder, embed_tokens, decoder,
                 config=None, arch=None, sampler=None):
        self.config = config or FastVLMConfig()
        self.arch = arch or ModelArchitecture()
        self.tokenizer = tokenizer
        self.vision_encoder = vision_encoder
        self.embed_tokens = embed_tokens
        self.decoder = decoder
        self.sampler = sampler or TopKSampler(self.config.top_k, seed=self.config.seed)
        self.image_processor = ImageProcessor(self.config.image_size)

    @classmethod
    def from_model_dir(cls, model_dir, config=None, arch=None, sampler=None):
        """Load tokenizer.json and the three ONNX graphs from model_dir."""
        config = config or FastVLMConfig()
        arch = arch or ModelArchitecture()
        init_start = time.perf_counter()
        logger.info("Initializing FastVLM from %s", os.fspath(model_dir))

        paths = check_model_dir(model_dir)
        tokenizer = Tokenizer.from_file(paths[TOKENIZER_FILE])
        vision_encoder = VisionEncoder(create_session(paths[VISION_ENCODER_FILE], config.providers))
        embed_tokens = TokenEmbedder(create_session(paths[EMBED_TOKENS_FILE], config.providers))
        decoder = Decoder(create_session(paths[DECODER_FILE], config.providers))
        decoder.check_architecture(arch)

        logger.info("FastVLM models loaded successfully in %.2fms",
                    (time.perf_counter() - init_start) * 1000)
        return cls(tokenizer, vision_encoder, embed_tokens, decoder, config, arch, sampler)

    @property
    def is_loaded(self):
        return self.decoder is not None

    def close(self):
        """Drop the sessions and tokenizer; the instance can't analyze afterwards."""
        self.tokenizer = None
        self.vision_encoder = None
        self.embed_tokens = None
        self.decoder = None

    # ------------------------------------------------------------------------

    def analyze(self, pixel_buffer, width, height, prompt=None):
        """Describe an interleaved RGBA buffer of width*height pixels."""
        if not self.is_loaded:
            raise NotInitializedError("FastVLM has been closed")
        start_time = time.perf_counter()
        timestamp = datetime.now()
        prompt = prompt if prompt is not None else self.config.default_prompt

        logger.debug("Starting FastVLM analysis for %dx%d image", width, height)

        preprocess_start = time.perf_counter()
        image = rgba_to_image(pixel_buffer, width, height)
        pixel_values = self.image_processor.preprocess(image)
        preprocess_time = time.perf_counter() - preprocess_start
        logger.debug("Image preprocessing completed in %.2fms", preprocess_time * 1000)

        generation_start = time.perf_counter()
        output = self.generate_text(pixel_values, prompt)
        generation_time = time.perf_counter() - generation_start
        logger.debug("Text generation completed in %.2fms", generation_time * 1000)

        total = time.perf_counter() - start_time
        result = AnalysisResult(
            text=output.text,
            timestamp=timestamp,
            processing_time=total,
            preprocess_time=preprocess_time,
            generation_time=generation_time,
            num_tokens=len(output.token_ids),
            stop_reason=output.stopped.reason,
        )
        logger.info("FastVLM analysis completed in %.2fms (preprocess: %.2fms, generation: %.2fms): %s",
                    total * 1000, preprocess_time * 1000, generation_time * 1000, result.text)
        return result

    def generate_text(self, pixel_values, text):
        """pixel_values [1, 3, S, S] + user text -> GenerationOutput"""
        image_features = self.vision_encoder.encode(pixel_values)

        formatted_prompt = format_chat_template(text)
        input_ids = self.tokenizer.encode(formatted_prompt)
        image_token_position = find_image_token(input_ids, self.arch.image_token_id)
        logger.debug("Token IDs length: %d, image token position: %d",
                     len(input_ids), image_token_position)

        input_embeds = self.embed_tokens.embed(input_ids)
        fused_embeds = fuse_image_text_embeddings(
            input_embeds, image_features, image_token_position, self.config.max_image_tokens
        )

        loop = GenerationLoop(
            self.decoder, self.embed_tokens, self.sampler, self.arch,
            max_response_length=self.config.max_response_length,
            temperature=self.config.temperature,
        )
        return loop.generate(fused_embeds, self.tokenizer)
