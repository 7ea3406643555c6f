"""
client.py - Long-lived owner of a loaded FastVLM with an explicit lifecycle.

    client = FastVLMClient()
    client.initialize("models/fastvlm", FastVLMConfig(max_response_length=50))
    result = client.analyze_image_file("photo.jpg")
    client.cleanup()

Calls against one client are serialized with a lock; for real parallelism
create one client per worker. The async methods run the blocking call in a
worker thread so an event loop stays responsive.
"""

import asyncio
import logging
import os
import threading

from .config import FastVLMConfig
from .errors import NotInitializedError
from .image_process import load_image_rgba
from .model import FastVLM

logger = logging.getLogger(__name__)


class FastVLMClient:
    def __init__(self):
        self.model = None
        self.model_path = None
        self._lock = threading.Lock()

    def initialize(self, model_path, config=None, **kwargs):
        """Load the models from model_path. Any previous model is released first."""
        model = FastVLM.from_model_dir(model_path, config or FastVLMConfig(), **kwargs)
        with self._lock:
            if self.model is not None:
                self.model.close()
            self.model = model
            self.model_path = os.fspath(model_path)
        logger.info("FastVLM model initialized from %s", self.model_path)

    def attach(self, model, model_path=None):
        """Adopt an already-built FastVLM instance."""
        with self._lock:
            self.model = model
            self.model_path = model_path

    def is_initialized(self):
        return self.model is not None

    def analyze_image(self, image_data, width, height, prompt=None):
        with self._lock:
            if self.model is None:
                raise NotInitializedError("Model not initialized, call initialize() first")
            return self.model.analyze(image_data, width, height, prompt)

    def analyze_image_file(self, image_path, prompt=None):
        image_data, width, height = load_image_rgba(image_path)
        return self.analyze_image(image_data, width, height, prompt)

    async def analyze_image_async(self, image_data, width, height, prompt=None):
        return await asyncio.to_thread(self.analyze_image, image_data, width, height, prompt)

    async def analyze_image_file_async(self, image_path, prompt=None):
        return await asyncio.to_thread(self.analyze_image_file, image_path, prompt)

    def cleanup(self):
        with self._lock:
            if self.model is not None:
                self.model.close()
                self.model = None
                logger.info("FastVLM model unloaded")
            self.model_path = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.cleanup()
        return False


def create_client(model_path, config=None):
    client = FastVLMClient()
    client.initialize(model_path, config)
    return client
