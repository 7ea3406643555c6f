"""
fusion.py - Splice image features into the prompt's token embeddings.

The image block is inserted at the placeholder position; the placeholder's own
embedding stays in the text suffix. Output length = Lt + min(Li, max_image_tokens).
"""

import logging

import numpy as np

from .config import MAX_IMAGE_TOKENS
from .errors import TensorShapeMismatch

logger = logging.getLogger(__name__)


def fuse_image_text_embeddings(text_embeds, image_features, image_token_pos=None,
                               max_image_tokens=MAX_IMAGE_TOKENS):
    """[1, Lt, D] text + [1, Li, D] image -> [1, Lt + min(Li, K), D]"""
    if text_embeds.ndim != 3 or image_features.ndim != 3:
        raise TensorShapeMismatch(
            f"Expected [1, L, D] embeddings, got text {text_embeds.shape}, image {image_features.shape}"
        )

    _, text_seq_len, hidden_dim = text_embeds.shape
    image_seq_len = image_features.shape[1]

    if image_features.shape[2] != hidden_dim:
        raise TensorShapeMismatch(
            f"Image feature dimension {image_features.shape[2]} doesn't match text dimension {hidden_dim}"
        )

    if image_token_pos is None:
        image_token_pos = text_seq_len // 2
    image_token_pos = max(0, min(int(image_token_pos), text_seq_len))

    # Truncate, no pooling
    actual_image_tokens = min(image_seq_len, max_image_tokens)
    final_image_embeds = image_features[:, :actual_image_tokens, :]

    total_seq_len = text_seq_len + actual_image_tokens
    fused = np.zeros((1, total_seq_len, hidden_dim), dtype=text_embeds.dtype)

    image_end = image_token_pos + actual_image_tokens
    fused[:, :image_token_pos, :] = text_embeds[:, :image_token_pos, :]
    fused[:, image_token_pos:image_end, :] = final_image_embeds
    fused[:, image_end:, :] = text_embeds[:, image_token_pos:, :]

    logger.debug("Fused embeddings %s (text: %d, image: %d, at: %d)",
                 fused.shape, text_seq_len, actual_image_tokens, image_token_pos)
    return fused
