import os

import numpy as np
import pytest

from decoder.reconstruction.comparison import (
    calculate_compression_percentage, calculate_quality_metrics, file_compression_percentage,
    node_compression_percentage,
)
from decoder.reconstruction.reconstruct import reconstruct_image
from encoder.quadtree.metrics import VARIANCE
from encoder.quadtree.node import SENTINEL_COLOR, QuadtreeNode
from encoder.quadtree.partition import build_tree
from encoder.quadtree.pixel_buffer import PixelBuffer
from encoder.quadtree.policy import StandardPolicy


def test_zero_threshold_reconstruction_is_lossless(noise_image):
    buffer = PixelBuffer(noise_image)
    root = build_tree(buffer, 0.0, VARIANCE, StandardPolicy(10, 1))
    assert np.array_equal(reconstruct_image(root, buffer), noise_image)


def test_reconstruct_from_shape_and_in_place(diagonal_image):
    buffer = PixelBuffer(diagonal_image)
    root = build_tree(buffer, 0.0, VARIANCE, StandardPolicy(10, 1))

    from_shape = reconstruct_image(root, (8, 8))
    assert from_shape.shape == (8, 8, 3)
    assert np.array_equal(from_shape, diagonal_image)

    canvas = np.full((8, 8, 3), 7, dtype=np.uint8)
    assert reconstruct_image(root, canvas) is canvas
    assert np.array_equal(canvas, diagonal_image)


def test_childless_internal_node_is_painted():
    root = QuadtreeNode(0, 0, 4, 4)
    root.set_color((1, 2, 3))
    root.is_leaf = False

    canvas = reconstruct_image(root, (4, 4))
    assert (canvas == (1, 2, 3)).all()


def test_leaves_past_the_edge_are_clipped():
    root = QuadtreeNode(0, 0, 4, 4)
    children = root.subdivide()
    children[3].width = 10
    children[3].set_color((200, 0, 0))

    canvas = reconstruct_image(root, (4, 4))
    assert canvas[3, 3].tolist() == [200, 0, 0]
    assert canvas[0, 0].tolist() == list(SENTINEL_COLOR)


def test_reconstruct_empty_tree():
    canvas = reconstruct_image(None, (2, 3))
    assert canvas.shape == (2, 3, 3)
    assert not canvas.any()


# ============================================================================
# COMPARISON
# ============================================================================

def test_node_and_file_percentages():
    assert node_compression_percentage(1, 16) == pytest.approx(93.75)
    assert node_compression_percentage(5, 0) == 0.0
    assert file_compression_percentage(1000, 250) == pytest.approx(75.0)
    assert file_compression_percentage(0, 250) is None
    assert file_compression_percentage(1000, None) is None


def test_compression_percentage_prefers_file_sizes(tmp_path):
    original = tmp_path / "original.bin"
    compressed = tmp_path / "compressed.bin"
    original.write_bytes(b"x" * 400)
    compressed.write_bytes(b"x" * 100)

    pct, basis = calculate_compression_percentage(str(original), str(compressed), 10, 100, verbose=False)
    assert basis == 'file'
    assert pct == pytest.approx(75.0)


def test_compression_percentage_falls_back_to_nodes(tmp_path):
    original = tmp_path / "original.bin"
    original.write_bytes(b"x" * 400)
    missing = os.path.join(str(tmp_path), "missing.png")

    pct, basis = calculate_compression_percentage(str(original), missing, 10, 100, verbose=False)
    assert basis == 'node'
    assert pct == pytest.approx(90.0)

    pct, basis = calculate_compression_percentage(None, None, 1, 4, verbose=False)
    assert basis == 'node'
    assert pct == pytest.approx(75.0)


def test_quality_metrics_of_identical_images(noise_image):
    metrics = calculate_quality_metrics(noise_image, noise_image.copy())
    assert metrics['mse'] == 0.0
    assert metrics['psnr'] == float('inf')
    assert metrics['ssim'] == pytest.approx(1.0)
    assert metrics['max_error'] == 0.0


def test_quality_metrics_of_a_lossy_reconstruction(noise_image):
    buffer = PixelBuffer(noise_image)
    root = build_tree(buffer, 2000.0, VARIANCE, StandardPolicy(10, 4))
    metrics = calculate_quality_metrics(noise_image, reconstruct_image(root, buffer))

    assert metrics['mse'] > 0
    assert 0 < metrics['psnr'] < 100
    assert metrics['ssim'] < 1.0
    assert metrics['rmse'] == pytest.approx(metrics['mse'] ** 0.5)


def test_quality_metrics_shape_mismatch(noise_image):
    with pytest.raises(ValueError):
        calculate_quality_metrics(noise_image, noise_image[:10])
