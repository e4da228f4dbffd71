import time

from decoder.reconstruction.comparison import calculate_compression_percentage, node_compression_percentage
from decoder.reconstruction.reconstruct import reconstruct_image
from encoder.quadtree.calibration import adjust_threshold_for_target_compression
from encoder.quadtree.coordinator import RunCoordinator, DEFAULT_TIMEOUT, MAX_NODES
from encoder.quadtree.metrics import resolve_method, get_method_name
from encoder.quadtree.node import tree_depth, node_count, count_leaf_nodes
from encoder.quadtree.partition import build_tree
from encoder.quadtree.pixel_buffer import PixelBuffer
from encoder.quadtree.policy import StandardPolicy
from encoder.quadtree.visualization import FrameRecorder, draw_quadtree_visualization, save_animation


DEFAULT_MAX_DEPTH = 10


class QuadtreeCompressor:
    """
    One compression session: a source image, its parameters and the tree built from them.

    Calibration may rewrite threshold, min_block_size, max_depth and policy when
    a target compression is set. The tree is rebuilt from scratch on every
    compress_image() call.
    """

    def __init__(self, image, threshold, min_block_size, method="variance",
                 target_compression_pct=0.0, visualize=False, max_depth=DEFAULT_MAX_DEPTH,
                 timeout=DEFAULT_TIMEOUT, max_nodes=MAX_NODES, parallel=None, verbose=True):
        """
        Args:
            image: RGB numpy array (gray and RGBA are converted)
            threshold: error score below which a region becomes a leaf
            min_block_size: regions with a side at or below this are never split
            method: 'variance', 'mad', 'max_pixel_diff', 'entropy' or 'ssim'
            target_compression_pct: 0 disables calibration, otherwise (0, 100]
            visualize: record frames while the tree is built
            max_depth: deepest level a region may be split at
            timeout: seconds allowed for building the tree (None for no limit)
            max_nodes: hard cap on allocated nodes
            parallel: force thread fan-out on/off; automatic when None
            verbose: print progress

        Raises:
            ValueError: for a bad image or parameters
        """
        if threshold is None or threshold < 0:
            raise ValueError("Threshold must be non-negative")
        if min_block_size is None or min_block_size < 1:
            raise ValueError("Minimum block size must be at least 1")
        if target_compression_pct is None:
            target_compression_pct = 0.0
        if target_compression_pct < 0.0 or target_compression_pct > 100.0:
            raise ValueError("Target compression must be between 0 and 100 percent")
        if max_depth is None or max_depth < 0:
            raise ValueError("Maximum depth must be non-negative")

        self.buffer = image if isinstance(image, PixelBuffer) else PixelBuffer(image)
        self.image = self.buffer.image
        self.method = resolve_method(method)

        self.initial_threshold = float(threshold)
        self.initial_min_block_size = int(min_block_size)
        self.initial_max_depth = int(max_depth)

        self.threshold = self.initial_threshold
        self.min_block_size = self.initial_min_block_size
        self.max_depth = self.initial_max_depth
        self.target_compression_pct = float(target_compression_pct)
        self.policy = StandardPolicy(self.max_depth, self.min_block_size)

        self.timeout = timeout
        self.max_nodes = max_nodes
        self.parallel = parallel
        self.verbose = verbose

        self.visualize = visualize
        self.frames = FrameRecorder() if visualize else None

        self.root = None
        self.calibration_report = None
        self.timed_out = False
        self.node_cap_reached = False
        self.execution_time = 0.0

    def log(self, message):
        if self.verbose:
            print(message)

    # ------------------------------------------------------------------
    # compression
    # ------------------------------------------------------------------

    def compress_image(self):
        """
        Calibrate (when a target is set) and build the tree.

        Returns:
            QuadtreeNode: the root of the new tree
        """
        self.threshold = self.initial_threshold
        self.min_block_size = self.initial_min_block_size
        self.max_depth = self.initial_max_depth
        self.policy = StandardPolicy(self.max_depth, self.min_block_size)
        if self.frames is not None:
            self.frames.clear()

        start = time.time()
        self.calibration_report = adjust_threshold_for_target_compression(self, self.buffer)

        self.log(f"\n{'='*60}")
        self.log("BUILDING QUADTREE")
        self.log(f"{'='*60}")
        self.log(f"  - Image: {self.buffer.width}x{self.buffer.height} ({self.buffer.total_pixels:,} pixels)")
        self.log(f"  - Method: {get_method_name(self.method)}")
        self.log(f"  - Threshold: {self.threshold:.4f}")
        self.log(f"  - Policy: {self.policy!r}")

        if self.frames is not None:
            self.frames.add(self.image, "Original")

        coordinator = RunCoordinator(self.timeout, self.max_nodes).start()
        self.root = build_tree(self.buffer, self.threshold, self.method, self.policy,
                               coordinator=coordinator, frames=self.frames, parallel=self.parallel)

        self.timed_out = coordinator.timed_out
        self.node_cap_reached = coordinator.node_cap_reached
        if self.timed_out:
            print(f"Warning: quadtree construction stopped after {self.timeout}s; the tree is partial")
        if self.node_cap_reached:
            print(f"Warning: node limit of {self.max_nodes:,} reached; the tree is partial")

        if self.frames is not None:
            final = draw_quadtree_visualization(self.buffer.blank(), self.root)
            self.frames.add(final, "Final")

        self.execution_time = time.time() - start
        self.log(f"  - Leaves: {self.count_leaf_nodes():,}")
        self.log(f"  - Built in {coordinator.elapsed:.2f}s ({self.execution_time:.2f}s total)")
        return self.root

    def reconstruct_image(self, destination=None):
        """
        Paint the leaves into destination (in place) or into a new canvas.

        Raises:
            ValueError: if compress_image() has not run yet
        """
        if self.root is None:
            raise ValueError("No quadtree: call compress_image() first")
        target = destination if destination is not None else self.buffer
        return reconstruct_image(self.root, target)

    # ------------------------------------------------------------------
    # statistics
    # ------------------------------------------------------------------

    def get_tree_depth(self):
        return tree_depth(self.root)

    def get_node_count(self):
        return node_count(self.root)

    def count_leaf_nodes(self):
        return count_leaf_nodes(self.root)

    def get_threshold(self):
        return self.threshold

    def calculate_compression_percentage(self, original_path=None, compressed_path=None):
        """Compression from file sizes when both files exist, otherwise from the leaf count."""
        pct, _ = calculate_compression_percentage(original_path, compressed_path,
                                                  self.count_leaf_nodes(), self.buffer.total_pixels,
                                                  verbose=self.verbose)
        return pct

    def save_animation(self, output_path, fps=2.0):
        if self.frames is None:
            print("Visualization was not enabled for this session.")
            return False
        return save_animation(self.frames.frames, output_path, fps=fps)

    def summary(self):
        return {
            'method': self.method,
            'threshold': self.threshold,
            'min_block_size': self.min_block_size,
            'max_depth': self.max_depth,
            'policy': self.policy.describe(),
            'tree_depth': self.get_tree_depth(),
            'node_count': self.get_node_count(),
            'leaf_count': self.count_leaf_nodes(),
            'compression_pct': node_compression_percentage(self.count_leaf_nodes(), self.buffer.total_pixels),
            'timed_out': self.timed_out,
            'node_cap_reached': self.node_cap_reached,
            'execution_time': self.execution_time,
        }
