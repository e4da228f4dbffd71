import numpy as np

from encoder.quadtree.pixel_buffer import PixelBuffer


def _canvas(target):
    if isinstance(target, np.ndarray):
        return target
    if isinstance(target, PixelBuffer):
        return target.blank()
    height, width = target[:2]
    return np.zeros((height, width, 3), dtype=np.uint8)


def reconstruct_image(root, target):
    """
    Paint every leaf of a quadtree with its representative color.

    Internal nodes are skipped since their children cover them. A node marked
    internal but left without children (a run stopped mid-split) is painted
    with its own color so the output has no holes.

    Args:
        root: QuadtreeNode
        target: destination array (painted in place), a PixelBuffer to size a
                new canvas from, or an (height, width) shape

    Returns:
        np.ndarray: the painted canvas
    """
    canvas = _canvas(target)
    if root is None:
        return canvas

    stack = [root]
    while stack:
        node = stack.pop()

        if node.is_leaf or len(node.children) != 4:
            PixelBuffer.fill(canvas, node.x, node.y, node.width, node.height, node.color)
            continue

        stack.extend(node.children)

    return canvas
