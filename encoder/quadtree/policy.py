import math


def depth_for_block(max_dimension, block_size):
    """Depth at which halving max_dimension reaches block_size, plus one level of slack."""
    block_size = max(1, block_size)
    return int(math.log2(max(1, max_dimension) / block_size)) + 1 if max_dimension >= block_size else 1


class StandardPolicy:
    """Metric-driven subdivision within a depth and block-size bound."""

    name = 'standard'
    uses_metric = True

    def __init__(self, max_depth, min_block_size):
        self.max_depth = max_depth
        self.min_block_size = min_block_size

    def __repr__(self):
        return f"StandardPolicy(max_depth={self.max_depth}, min_block_size={self.min_block_size})"

    def bounds_for(self, node, buffer):
        return self.max_depth, self.min_block_size

    def describe(self):
        return {'policy': self.name, 'max_depth': self.max_depth, 'min_block_size': self.min_block_size}


class FixedGridPolicy(StandardPolicy):
    """Subdivide by depth and size only, ignoring the error metric."""

    name = 'fixed_grid'
    uses_metric = False

    def __repr__(self):
        return f"FixedGridPolicy(max_depth={self.max_depth}, min_block_size={self.min_block_size})"


class HybridRegionPolicy:
    """
    Fixed-grid subdivision with a finer grid in a centered rectangle.

    The center is stored as a fraction of each image dimension, so a policy
    chosen on one resolution can be applied to another.
    """

    name = 'hybrid_region'
    uses_metric = False

    def __init__(self, center_ratio, center_min_block_size, center_max_depth,
                 outer_min_block_size, outer_max_depth):
        self.center_ratio = center_ratio
        self.center_min_block_size = center_min_block_size
        self.center_max_depth = center_max_depth
        self.outer_min_block_size = outer_min_block_size
        self.outer_max_depth = outer_max_depth
        self._center_cache = {}

    def __repr__(self):
        return (f"HybridRegionPolicy(center_ratio={self.center_ratio:.3f}, "
                f"center={self.center_min_block_size}px/depth {self.center_max_depth}, "
                f"outer={self.outer_min_block_size}px/depth {self.outer_max_depth})")

    @property
    def max_depth(self):
        return max(self.center_max_depth, self.outer_max_depth)

    @property
    def min_block_size(self):
        return min(self.center_min_block_size, self.outer_min_block_size)

    def center_region(self, width, height):
        """Centered (x, y, w, h) rectangle for an image of the given size."""
        key = (width, height)
        if key not in self._center_cache:
            center_w = int(width * self.center_ratio)
            center_h = int(height * self.center_ratio)
            self._center_cache[key] = ((width - center_w) // 2, (height - center_h) // 2,
                                       center_w, center_h)
        return self._center_cache[key]

    def in_center(self, node, width, height):
        cx, cy, cw, ch = self.center_region(width, height)
        if cw <= 0 or ch <= 0:
            return False
        return (node.x < cx + cw and cx < node.x + node.width and
                node.y < cy + ch and cy < node.y + node.height)

    def bounds_for(self, node, buffer):
        if self.in_center(node, buffer.width, buffer.height):
            return self.center_max_depth, self.center_min_block_size
        return self.outer_max_depth, self.outer_min_block_size

    def describe(self):
        return {
            'policy': self.name,
            'center_ratio': self.center_ratio,
            'center_min_block_size': self.center_min_block_size,
            'center_max_depth': self.center_max_depth,
            'outer_min_block_size': self.outer_min_block_size,
            'outer_max_depth': self.outer_max_depth,
        }
