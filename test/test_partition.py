import math

import numpy as np
import pytest

from decoder.reconstruction.reconstruct import reconstruct_image
from encoder.quadtree.coordinator import RunCoordinator
from encoder.quadtree.metrics import ERROR_METHODS, MAD, VARIANCE
from encoder.quadtree import partition
from encoder.quadtree.node import (
    SENTINEL_COLOR, QuadtreeNode, count_leaf_nodes, node_count, tree_depth, validate_tree,
)
from encoder.quadtree.partition import QuadtreePartitioner, build_tree, measure_compression
from encoder.quadtree.pixel_buffer import PixelBuffer
from encoder.quadtree.policy import FixedGridPolicy, StandardPolicy


def _leaf_rects(root):
    return sorted(node.rect for node in root.iter_leaves())


def test_uniform_image_is_a_single_leaf():
    image = np.full((4, 4, 3), 42, dtype=np.uint8)
    buffer = PixelBuffer(image)
    root = build_tree(buffer, 10.0, VARIANCE, StandardPolicy(10, 2))

    assert root.is_leaf
    assert root.color == (42, 42, 42)
    pct, leaves = measure_compression(buffer, 10.0, VARIANCE, StandardPolicy(10, 2))
    assert leaves == 1
    assert pct == pytest.approx(93.75)


def test_diagonal_image_splits_only_mixed_quadrants(diagonal_image):
    root = build_tree(PixelBuffer(diagonal_image), 0.01, MAD, StandardPolicy(10, 2))

    assert count_leaf_nodes(root) == 10
    assert node_count(root) == 13
    assert tree_depth(root) == 3

    top_right, bottom_left = root.children[1], root.children[2]
    assert top_right.is_leaf and top_right.color == (255, 255, 255)
    assert bottom_left.is_leaf and bottom_left.color == (0, 0, 0)
    assert not root.children[0].is_leaf
    assert not root.children[3].is_leaf


def test_zero_threshold_splits_down_to_pixels(solid_image):
    root = build_tree(PixelBuffer(solid_image), 0.0, VARIANCE, StandardPolicy(10, 1))
    assert count_leaf_nodes(root) == 256
    assert all(node.width == 1 and node.height == 1 for node in root.iter_leaves())


def test_infinite_threshold_keeps_the_root(noise_image):
    buffer = PixelBuffer(noise_image)
    root = build_tree(buffer, math.inf, VARIANCE, StandardPolicy(10, 1))
    assert root.is_leaf
    assert count_leaf_nodes(root) == 1

    reconstructed = reconstruct_image(root, buffer)
    assert (reconstructed == root.color).all()


def test_depth_bound_is_respected(noise_image):
    root = build_tree(PixelBuffer(noise_image), 0.0, VARIANCE, StandardPolicy(2, 1))
    # depths 0, 1, 2 may split; nodes at depth 3 are leaves
    assert tree_depth(root) == 4
    assert count_leaf_nodes(root) == 64


@pytest.mark.parametrize("method", ERROR_METHODS)
def test_every_method_builds_a_valid_tree(method, gradient_image):
    root = build_tree(PixelBuffer(gradient_image), 0.05, method, StandardPolicy(10, 2))
    assert validate_tree(root) == []
    assert count_leaf_nodes(root) > 1
    for leaf in root.iter_leaves():
        assert leaf.color_computed


def test_odd_sizes_tile_the_image():
    rng = np.random.default_rng(3)
    image = rng.integers(0, 256, size=(13, 21, 3), dtype=np.uint8)
    root = build_tree(PixelBuffer(image), 0.0, VARIANCE, StandardPolicy(10, 1))

    coverage = np.zeros((13, 21), dtype=int)
    for x, y, w, h in _leaf_rects(root):
        coverage[y:y + h, x:x + w] += 1
    assert (coverage == 1).all()
    assert validate_tree(root) == []


def test_fixed_grid_ignores_the_metric(solid_image):
    root = build_tree(PixelBuffer(solid_image), math.inf, VARIANCE, FixedGridPolicy(3, 4))
    assert count_leaf_nodes(root) == 16
    assert all(node.width == 4 for node in root.iter_leaves())


def test_parallel_and_sequential_runs_agree(noise_image):
    buffer = PixelBuffer(noise_image)
    sequential = build_tree(buffer, 3000.0, VARIANCE, StandardPolicy(10, 2), parallel=False)
    parallel = build_tree(buffer, 3000.0, VARIANCE, StandardPolicy(10, 2), parallel=True)

    assert _leaf_rects(sequential) == _leaf_rects(parallel)
    assert validate_tree(parallel) == []


# ============================================================================
# STOP CONDITIONS
# ============================================================================

def test_cancelled_run_returns_colored_root(noise_image):
    coordinator = RunCoordinator(timeout=None).start()
    coordinator.cancel()
    root = build_tree(PixelBuffer(noise_image), 0.0, VARIANCE, StandardPolicy(10, 1), coordinator)

    assert root.is_leaf
    assert root.color_computed
    expected = np.rint(noise_image.reshape(-1, 3).mean(axis=0)).astype(int)
    assert root.color == tuple(expected)


def test_zero_timeout_gives_valid_partial_tree(noise_image):
    coordinator = RunCoordinator(timeout=0.0).start()
    root = build_tree(PixelBuffer(noise_image), 0.0, VARIANCE, StandardPolicy(10, 1), coordinator)

    assert validate_tree(root) == []
    assert count_leaf_nodes(root) < noise_image.shape[0] * noise_image.shape[1]
    for leaf in root.iter_leaves():
        assert leaf.color_computed


def test_node_cap_stops_subdivision(noise_image):
    coordinator = RunCoordinator(timeout=None, max_nodes=5).start()
    root = build_tree(PixelBuffer(noise_image), 0.0, VARIANCE, StandardPolicy(10, 1), coordinator)

    assert coordinator.node_cap_reached
    assert node_count(root) == 5
    assert count_leaf_nodes(root) == 4
    assert validate_tree(root) == []


def test_tiny_timeout_on_large_image_returns_quickly():
    rng = np.random.default_rng(11)
    image = rng.integers(0, 256, size=(800, 800, 3), dtype=np.uint8)
    coordinator = RunCoordinator(timeout=0.05).start()

    root = build_tree(PixelBuffer(image), 0.0, VARIANCE, StandardPolicy(12, 1), coordinator)

    assert coordinator.timed_out
    assert coordinator.elapsed < 20.0
    assert validate_tree(root) == []


# ============================================================================
# FAULTS
# ============================================================================

def test_origin_outside_the_image_gets_the_sentinel(solid_image):
    buffer = PixelBuffer(solid_image)
    partitioner = QuadtreePartitioner(buffer, 10.0, VARIANCE, StandardPolicy(10, 1),
                                      RunCoordinator().start())
    node = QuadtreeNode(16, 0, 4, 4)
    partitioner.quadtree_compress(node, 1)

    assert node.is_leaf
    assert node.color == SENTINEL_COLOR
    assert not node.color_computed


def test_metric_fault_makes_a_leaf_and_warns(noise_image, monkeypatch, capsys):
    def broken(method, block, avg_block=None):
        raise FloatingPointError("boom")

    monkeypatch.setattr(partition, "damped_error", broken)
    root = build_tree(PixelBuffer(noise_image), 0.0, VARIANCE, StandardPolicy(10, 1))

    assert root.is_leaf
    assert root.color_computed
    assert "Warning" in capsys.readouterr().out


def test_color_fault_still_paints_the_region_mean(noise_image, monkeypatch, capsys):
    buffer = PixelBuffer(noise_image)

    def broken(x, y, width, height):
        raise FloatingPointError("boom")

    monkeypatch.setattr(buffer, "mean_color", broken)
    root = build_tree(buffer, 0.0, VARIANCE, StandardPolicy(10, 1))

    expected = np.rint(noise_image.reshape(-1, 3).mean(axis=0)).astype(int)
    assert root.is_leaf
    assert root.color_computed
    assert root.color == tuple(expected)
    assert root.color != SENTINEL_COLOR
    assert "Warning" in capsys.readouterr().out
