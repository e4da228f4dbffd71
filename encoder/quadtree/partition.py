from concurrent.futures import ThreadPoolExecutor

import numpy as np

from decoder.reconstruction.comparison import node_compression_percentage
from encoder.quadtree.coordinator import RunCoordinator, DEFAULT_TIMEOUT, MAX_NODES
from encoder.quadtree.metrics import SSIM, damped_error, flat_block, relaxed_threshold
from encoder.quadtree.node import QuadtreeNode, count_leaf_nodes


PARALLEL_PIXEL_THRESHOLD = 500_000
PARALLEL_MAX_DEPTH = 1  # nodes at depth 0 and 1 fan their children out to threads

# Depths at which a standard run asks for a snapshot
_STANDARD_SNAPSHOT_DEPTHS = (0, 1, 3, 5)
_GRID_SNAPSHOT_DEPTH = 2


class QuadtreePartitioner:
    """
    One partitioning run over a pixel buffer.

    Everything here is read-only during the run except the nodes themselves
    and the coordinator; each task writes only the subtree it was handed.
    """

    def __init__(self, buffer, threshold, method, policy, coordinator, frames=None, parallel=None):
        self.buffer = buffer
        self.threshold = threshold
        self.method = method
        self.policy = policy
        self.coordinator = coordinator
        self.frames = frames
        if parallel is None:
            parallel = buffer.total_pixels > PARALLEL_PIXEL_THRESHOLD
        self.parallel = parallel

    def run(self):
        root = QuadtreeNode(0, 0, self.buffer.width, self.buffer.height)
        self.quadtree_compress(root, 0)
        return root

    # ------------------------------------------------------------------
    # recursion
    # ------------------------------------------------------------------

    def quadtree_compress(self, node, depth):
        if self.coordinator.should_stop():
            self._finalize_leaf(node)
            return

        buffer = self.buffer
        if node.x < 0 or node.y < 0 or node.x >= buffer.width or node.y >= buffer.height:
            node.set_color(None)
            node.is_leaf = True
            return

        max_depth, min_block_size = self.policy.bounds_for(node, buffer)
        if depth > max_depth or node.width <= min_block_size or node.height <= min_block_size:
            self._finalize_leaf(node)
            return

        highlight = None
        if self.policy.uses_metric:
            accepted, highlight = self._evaluate(node, depth)
            if accepted:
                return

        if not self.coordinator.reserve_nodes(4):
            self._finalize_leaf(node)
            return

        children = node.subdivide()
        self._snapshot(depth, highlight if highlight is not None else node.rect)
        self._process_children(children, depth)

    def _evaluate(self, node, depth):
        """
        Score the node against the threshold.

        Returns:
            tuple: (accepted_as_leaf, clipped rect used for the score)
        """
        buffer = self.buffer
        bounds = buffer.clip(*node.rect)
        if bounds is None:
            node.set_color(None)
            node.is_leaf = True
            return True, None

        x0, y0, x1, y1 = bounds
        rect = (x0, y0, x1 - x0, y1 - y0)

        try:
            block = buffer.region(*rect)
            color = buffer.mean_color(*rect)
            node.set_color(color)
            avg_block = flat_block(block, color) if self.method == SSIM else None
            error = damped_error(self.method, block, avg_block)
        except Exception as e:
            print(f"Warning: could not score region {node.rect}: {e}")
            if not node.color_computed:
                node.set_color(self._direct_mean(rect))
            node.is_leaf = True
            return True, rect

        if error < relaxed_threshold(self.threshold, rect[2] * rect[3]):
            node.is_leaf = True
            self._snapshot(depth)
            return True, rect

        return False, rect

    def _process_children(self, children, depth):
        if self.parallel and depth <= PARALLEL_MAX_DEPTH:
            with ThreadPoolExecutor(max_workers=len(children)) as executor:
                futures = [executor.submit(self.quadtree_compress, child, depth + 1) for child in children]
                for future in futures:
                    future.result()
            return

        for i, child in enumerate(children):
            if i % 2 == 0 and self.coordinator.should_stop():
                for remaining in children[i:]:
                    self._finalize_leaf(remaining)
                return
            self.quadtree_compress(child, depth + 1)

    def _finalize_leaf(self, node):
        node.set_color(self.buffer.mean_color(*node.rect))
        node.is_leaf = True

    def _direct_mean(self, rect):
        """Rounded mean of a clipped rect, read from the pixels instead of the summed-area table."""
        x, y, w, h = rect
        pixels = self.buffer.image[y:y + h, x:x + w].reshape(-1, 3)
        return tuple(int(c) for c in np.rint(pixels.mean(axis=0)))

    def _snapshot(self, depth, highlight=None):
        if self.frames is None:
            return
        if self.policy.uses_metric:
            if depth not in _STANDARD_SNAPSHOT_DEPTHS:
                return
        elif depth > _GRID_SNAPSHOT_DEPTH:
            return
        self.frames.capture(self.buffer.image, highlight=highlight)


# ============================================================================
# ENTRY POINTS
# ============================================================================

def build_tree(buffer, threshold, method, policy, coordinator=None, frames=None, parallel=None):
    """
    Partition buffer into a quadtree.

    Args:
        buffer: PixelBuffer to partition (read-only)
        threshold: score below which a region becomes a leaf
        method: error method name
        policy: StandardPolicy, FixedGridPolicy or HybridRegionPolicy
        coordinator: started RunCoordinator; a fresh one with default limits if None
        frames: optional FrameRecorder for snapshots
        parallel: force thread fan-out on/off; by default only for large images

    Returns:
        QuadtreeNode: the root. It may be under-subdivided if the coordinator
        stopped the run, but it is always structurally valid.
    """
    if coordinator is None:
        coordinator = RunCoordinator().start()

    partitioner = QuadtreePartitioner(buffer, threshold, method, policy, coordinator,
                                      frames=frames, parallel=parallel)
    return partitioner.run()


def measure_compression(buffer, threshold, method, policy, timeout=DEFAULT_TIMEOUT, max_nodes=MAX_NODES):
    """
    Build a disposable tree and measure its leaf-based compression.

    Returns:
        tuple: (compression_pct, leaf_count)
    """
    coordinator = RunCoordinator(timeout, max_nodes).start()
    root = build_tree(buffer, threshold, method, policy, coordinator)
    leaves = count_leaf_nodes(root)
    return node_compression_percentage(leaves, buffer.total_pixels), leaves
