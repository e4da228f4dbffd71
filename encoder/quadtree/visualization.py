import threading
import cv2
import numpy as np
import matplotlib.pyplot as plt


# RGB colors
HIGHLIGHT_COLOR = (255, 0, 0)
LEAF_OUTLINE_COLOR = (0, 255, 0)
DEPTH_COLORS = [(0, 0, 255), (255, 0, 0), (255, 165, 0)]


class FrameRecorder:
    """
    Bounded collection of snapshots taken while a tree is built.

    Capture requests are thinned out as the run goes on: the first 5 are
    always kept, then every 40th until 15 frames, then every 80th until 30.
    Safe to call from several partitioning threads.
    """

    def __init__(self, max_width=640, max_height=480):
        self.max_width = max_width
        self.max_height = max_height
        self.frames = []
        self._requests = 0
        self._lock = threading.Lock()

    def __len__(self):
        return len(self.frames)

    def clear(self):
        with self._lock:
            self.frames = []
            self._requests = 0

    def _should_capture(self):
        self._requests += 1
        count = len(self.frames)
        if count < 5:
            return True
        if self._requests % 40 == 0 and count < 15:
            return True
        if self._requests % 80 == 0 and count < 30:
            return True
        return False

    def capture(self, image, highlight=None):
        """
        Request a snapshot of image, optionally outlining a (x, y, w, h) region.

        Returns:
            bool: True if the frame was kept
        """
        with self._lock:
            if not self._should_capture():
                return False
            label = f"Frame {len(self.frames) + 1}"
            self.frames.append(self._render(image, highlight, label))
            return True

    def add(self, image, label=None):
        """Append a frame unconditionally (first and last frames of a run)."""
        with self._lock:
            label = label or f"Frame {len(self.frames) + 1}"
            self.frames.append(self._render(image, None, label))

    def _render(self, image, highlight, label):
        frame = np.ascontiguousarray(image).copy()

        if highlight is not None:
            x, y, w, h = highlight
            cv2.rectangle(frame, (int(x), int(y)), (int(x + w - 1), int(y + h - 1)), HIGHLIGHT_COLOR, 2)

        height, width = frame.shape[:2]
        scale = min(self.max_width / max(1, width), self.max_height / max(1, height))
        if scale < 1.0:
            frame = cv2.resize(frame, None, fx=scale, fy=scale, interpolation=cv2.INTER_AREA)

        cv2.putText(frame, label, (10, 20), cv2.FONT_HERSHEY_SIMPLEX, 0.5, HIGHLIGHT_COLOR, 1)
        return frame


def draw_quadtree_visualization(image, node, depth=0):
    """
    Draw the tree over image in place.

    Leaves are filled with their color (outlined when at least 8 px wide);
    internal nodes get their outline and midlines in a depth-cycled color.
    """
    if node is None or depth > 10:
        return image

    img_h, img_w = image.shape[:2]
    x0, y0 = max(0, node.x), max(0, node.y)
    x1, y1 = min(node.x + node.width, img_w), min(node.y + node.height, img_h)
    if x0 >= x1 or y0 >= y1:
        return image

    if node.is_leaf or not node.children:
        cv2.rectangle(image, (x0, y0), (x1 - 1, y1 - 1), tuple(int(c) for c in node.color), cv2.FILLED)
        if node.width >= 8 and node.height >= 8:
            cv2.rectangle(image, (x0, y0), (x1 - 1, y1 - 1), LEAF_OUTLINE_COLOR, 1)
        return image

    color = DEPTH_COLORS[depth % 3]
    cv2.rectangle(image, (x0, y0), (x1 - 1, y1 - 1), color, 1)

    mid_x = x0 + (x1 - x0) // 2
    mid_y = y0 + (y1 - y0) // 2
    cv2.line(image, (mid_x, y0), (mid_x, y1 - 1), color, 1)
    cv2.line(image, (x0, mid_y), (x1 - 1, mid_y), color, 1)

    if depth < 8:
        for child in node.children:
            draw_quadtree_visualization(image, child, depth + 1)

    return image


def save_animation(frames, output_path, fps=2.0):
    """
    Write frames as an MJPG video.

    Returns:
        bool: False if there is nothing to write or the writer cannot be opened
    """
    if not frames:
        print("No frames available for animation.")
        return False

    print(f"Creating animation with {len(frames)} frames...")

    height, width = frames[0].shape[:2]
    writer = cv2.VideoWriter(str(output_path), cv2.VideoWriter_fourcc(*'MJPG'), fps, (width, height))
    if not writer.isOpened():
        print("Could not create animation file.")
        return False

    total = len(frames)
    try:
        for i, frame in enumerate(frames):
            if frame.shape[:2] != (height, width):
                frame = cv2.resize(frame, (width, height), interpolation=cv2.INTER_AREA)
            writer.write(cv2.cvtColor(frame, cv2.COLOR_RGB2BGR))

            if i % max(1, total // 5) == 0 or i == total - 1:
                print(f"Writing frame {i + 1}/{total}")
    finally:
        writer.release()

    print(f"Animation saved to: {output_path}")
    return True


def show_comparison(original, reconstructed, title=None, stats=None):
    """Side by side view of the source and its reconstruction."""
    fig, axes = plt.subplots(1, 2, figsize=(12, 6))

    axes[0].imshow(original)
    axes[0].set_title(f"Original\n{original.shape[1]}x{original.shape[0]} pixels")
    axes[0].axis('off')

    subtitle = "Reconstructed"
    if stats:
        subtitle += f"\n{stats.get('leaf_count', 0):,} leaves, depth {stats.get('tree_depth', 0)}"
    axes[1].imshow(reconstructed)
    axes[1].set_title(subtitle)
    axes[1].axis('off')

    if title:
        plt.suptitle(title, fontsize=14, fontweight='bold')
    plt.tight_layout()
    plt.show()
    return fig
