import cv2
import numpy as np


# ============================================================================
# PIXEL BUFFER
# ============================================================================

class PixelBuffer:
    """
    Read-only RGB image with bounded region access.

    Wraps an H x W x 3 uint8 array and a summed-area table so the mean color
    of any rectangle costs four lookups instead of a pass over its pixels.
    """

    def __init__(self, image):
        """
        Args:
            image: numpy array, H x W (gray), H x W x 3 (RGB) or H x W x 4 (RGBA)

        Raises:
            ValueError: if the image is missing, empty or has an unsupported layout
        """
        if image is None:
            raise ValueError("Image is None")

        image = np.asarray(image)
        if image.size == 0 or image.ndim < 2 or image.shape[0] == 0 or image.shape[1] == 0:
            raise ValueError(f"Image is empty: shape {image.shape}")

        if image.dtype != np.uint8:
            image = np.clip(image, 0, 255).astype(np.uint8)

        if image.ndim == 2:
            image = cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
        elif image.ndim == 3 and image.shape[2] == 4:
            image = cv2.cvtColor(image, cv2.COLOR_RGBA2RGB)
        elif image.ndim != 3 or image.shape[2] != 3:
            raise ValueError(f"Image must have 3 color channels, got shape {image.shape}")

        self.image = np.ascontiguousarray(image)
        self.height, self.width = self.image.shape[:2]
        self.total_pixels = self.height * self.width

        # (H+1) x (W+1) x 3 running sums
        self.integral = cv2.integral(self.image, sdepth=cv2.CV_64F)

    @property
    def shape(self):
        return self.image.shape

    def clip(self, x, y, width, height):
        """
        Clip a rectangle to the image bounds.

        Returns:
            tuple: (x0, y0, x1, y1) with exclusive end, or None if nothing is left
        """
        x0 = max(0, x)
        y0 = max(0, y)
        x1 = min(x + width, self.width)
        y1 = min(y + height, self.height)

        if x0 >= x1 or y0 >= y1:
            return None
        return x0, y0, x1, y1

    def region(self, x, y, width, height):
        """Clipped view of a rectangle (no copy), or None when it is out of bounds."""
        bounds = self.clip(x, y, width, height)
        if bounds is None:
            return None
        x0, y0, x1, y1 = bounds
        return self.image[y0:y1, x0:x1]

    def mean_color(self, x, y, width, height):
        """
        Rounded mean color of the in-bounds part of a rectangle.

        Returns:
            tuple: (r, g, b) ints, or None if the rectangle has no valid pixels
        """
        bounds = self.clip(x, y, width, height)
        if bounds is None:
            return None
        x0, y0, x1, y1 = bounds

        s = self.integral
        total = s[y1, x1] - s[y0, x1] - s[y1, x0] + s[y0, x0]
        count = (x1 - x0) * (y1 - y0)

        mean = np.rint(total / count)
        return tuple(int(c) for c in np.clip(mean, 0, 255))

    def pixel(self, x, y):
        return tuple(int(c) for c in self.image[y, x])

    def blank(self):
        """Zeroed canvas with the source shape."""
        return np.zeros_like(self.image)

    def downsample(self, scale=0.5):
        """Resized copy for trial runs (area interpolation, like the rest of the pipeline)."""
        small = cv2.resize(self.image, None, fx=scale, fy=scale, interpolation=cv2.INTER_AREA)
        return PixelBuffer(small)

    @staticmethod
    def fill(target, x, y, width, height, color):
        """
        Fill a rectangle of target with color, clipped to target's bounds.

        Returns:
            bool: True if any pixel was written
        """
        h, w = target.shape[:2]
        x0 = max(0, x)
        y0 = max(0, y)
        x1 = min(x + width, w)
        y1 = min(y + height, h)

        if x0 >= x1 or y0 >= y1:
            return False

        target[y0:y1, x0:x1] = color
        return True


# ============================================================================
# FILE I/O
# ============================================================================

def load_image(path):
    """
    Load an image file as an RGB array.

    Raises:
        ValueError: if the file cannot be decoded
    """
    image = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise ValueError(f"Could not load image: {path}")

    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2RGB)
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


def save_image(path, image_rgb, params=None):
    """Write an RGB array with OpenCV. Returns True on success."""
    image_bgr = cv2.cvtColor(np.ascontiguousarray(image_rgb), cv2.COLOR_RGB2BGR)
    return bool(cv2.imwrite(str(path), image_bgr, params or []))
