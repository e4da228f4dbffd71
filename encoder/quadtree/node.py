SENTINEL_COLOR = (128, 128, 128)  # neutral gray, never a computed mean until color_computed is set


def split_rect(x, y, width, height):
    """
    Split a rectangle at its midpoint.

    The left/top halves get floor(dim / 2); remainders from odd dimensions go
    to the right/bottom children, so the four rectangles tile the parent.

    Returns:
        list: [top_left, top_right, bottom_left, bottom_right] as (x, y, w, h)
    """
    half_w = width // 2
    rem_w = width - half_w
    half_h = height // 2
    rem_h = height - half_h

    return [
        (x, y, half_w, half_h),
        (x + half_w, y, rem_w, half_h),
        (x, y + half_h, half_w, rem_h),
        (x + half_w, y + half_h, rem_w, rem_h),
    ]


class QuadtreeNode:
    """A rectangle of the source image, its representative color and its 0 or 4 children."""

    __slots__ = ("x", "y", "width", "height", "color", "color_computed", "children", "is_leaf")

    def __init__(self, x, y, width, height):
        self.x = x
        self.y = y
        self.width = width
        self.height = height
        self.color = SENTINEL_COLOR
        self.color_computed = False
        self.children = []
        self.is_leaf = True

    def __repr__(self):
        kind = "leaf" if self.is_leaf else "internal"
        return f"QuadtreeNode({self.x}, {self.y}, {self.width}x{self.height}, {kind}, color={self.color})"

    @property
    def rect(self):
        return (self.x, self.y, self.width, self.height)

    @property
    def is_internal(self):
        return not self.is_leaf and len(self.children) == 4

    def set_color(self, color):
        """Store a computed mean; None (no valid pixels) keeps the sentinel."""
        if color is None:
            self.color = SENTINEL_COLOR
            self.color_computed = False
        else:
            self.color = color
            self.color_computed = True

    def subdivide(self):
        """
        Turn this node into an internal node with four fresh children.

        Returns:
            list: the four children, in split_rect order
        """
        children = [QuadtreeNode(*rect) for rect in split_rect(self.x, self.y, self.width, self.height)]
        self.children = children
        self.is_leaf = False
        return children

    def iter_leaves(self):
        """Yield leaf-equivalent nodes (leaves, and internal nodes left without children)."""
        stack = [self]
        while stack:
            node = stack.pop()
            if node.is_leaf or not node.children:
                yield node
            else:
                stack.extend(reversed(node.children))


# ============================================================================
# TREE STATISTICS
# ============================================================================

def tree_depth(node):
    """Number of levels below and including node (a lone leaf has depth 1)."""
    if node is None:
        return 0
    if node.is_leaf or not node.children:
        return 1
    return 1 + max(tree_depth(child) for child in node.children)


def node_count(node):
    if node is None:
        return 0
    if node.is_leaf:
        return 1
    return 1 + sum(node_count(child) for child in node.children)


def count_leaf_nodes(node):
    if node is None:
        return 0
    return sum(1 for _ in node.iter_leaves())


def validate_tree(node):
    """
    Check the structural invariants of a (possibly partial) tree.

    Returns:
        list: human readable problems, empty if the tree is valid
    """
    problems = []
    stack = [node]
    while stack:
        current = stack.pop()
        if current.is_leaf:
            if current.children:
                problems.append(f"leaf {current.rect} has {len(current.children)} children")
            continue

        if len(current.children) != 4:
            problems.append(f"internal node {current.rect} has {len(current.children)} children")
            continue

        expected = split_rect(*current.rect)
        actual = [child.rect for child in current.children]
        if actual != expected:
            problems.append(f"children of {current.rect} do not tile it: {actual}")

        stack.extend(current.children)

    return problems
