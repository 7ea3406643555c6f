import numpy as np
import pytest

from fastvlm.errors import TensorShapeMismatch
from fastvlm.fusion import fuse_image_text_embeddings


def text(length, dim=4):
    # Row i holds i + 1 so positions are identifiable; image rows are negative
    return np.repeat(np.arange(1, length + 1, dtype=np.float32)[None, :, None], dim, axis=2)


def image(length, dim=4):
    return -np.repeat(np.arange(1, length + 1, dtype=np.float32)[None, :, None], dim, axis=2)


def test_image_block_inserted_at_placeholder():
    fused = fuse_image_text_embeddings(text(5), image(3), image_token_pos=2)
    assert fused.shape == (1, 8, 4)
    np.testing.assert_array_equal(fused[0, :, 0], [1, 2, -1, -2, -3, 3, 4, 5])


def test_image_features_truncated_to_cap():
    fused = fuse_image_text_embeddings(text(4), image(10), image_token_pos=1, max_image_tokens=3)
    assert fused.shape == (1, 7, 4)
    np.testing.assert_array_equal(fused[0, :, 0], [1, -1, -2, -3, 2, 3, 4])


@pytest.mark.parametrize("text_len,image_len,cap", [(7, 300, 256), (7, 10, 256), (1, 0, 256), (12, 5, 2)])
def test_fused_length(text_len, image_len, cap):
    fused = fuse_image_text_embeddings(text(text_len), image(image_len), 0, max_image_tokens=cap)
    assert fused.shape[1] == text_len + min(image_len, cap)


def test_missing_placeholder_inserts_at_midpoint():
    fused = fuse_image_text_embeddings(text(7), image(2), image_token_pos=None)
    # floor(7 / 2) == 3
    np.testing.assert_array_equal(fused[0, :, 0], [1, 2, 3, -1, -2, 4, 5, 6, 7])


def test_placeholder_at_edges():
    start = fuse_image_text_embeddings(text(3), image(2), 0)
    np.testing.assert_array_equal(start[0, :, 0], [-1, -2, 1, 2, 3])
    end = fuse_image_text_embeddings(text(3), image(2), 3)
    np.testing.assert_array_equal(end[0, :, 0], [1, 2, 3, -1, -2])


def test_hidden_size_mismatch_is_fatal():
    with pytest.raises(TensorShapeMismatch):
        fuse_image_text_embeddings(text(3, dim=4), image(2, dim=5), 1)


def test_rank_mismatch_is_fatal():
    with pytest.raises(TensorShapeMismatch):
        fuse_image_text_embeddings(text(3)[0], image(2), 1)
