import math
import numpy as np
from scipy.stats import entropy as shannon_entropy


VARIANCE = 'variance'
MAD = 'mad'
MAX_PIXEL_DIFF = 'max_pixel_diff'
ENTROPY = 'entropy'
SSIM = 'ssim'

ERROR_METHODS = (VARIANCE, MAD, MAX_PIXEL_DIFF, ENTROPY, SSIM)

METHOD_NAMES = {
    VARIANCE: 'Variance',
    MAD: 'Mean Absolute Deviation',
    MAX_PIXEL_DIFF: 'Max Pixel Difference',
    ENTROPY: 'Entropy',
    SSIM: 'SSIM',
}

_ALIASES = {
    'var': VARIANCE,
    'mean_absolute_deviation': MAD,
    'max': MAX_PIXEL_DIFF,
    'maxdiff': MAX_PIXEL_DIFF,
    'max_diff': MAX_PIXEL_DIFF,
    'mpd': MAX_PIXEL_DIFF,
}

# (minimum, typical, maximum) thresholds per method
RECOMMENDED_THRESHOLDS = {
    VARIANCE: (10.0, 100.0, 1000.0),
    MAD: (5.0, 20.0, 50.0),
    MAX_PIXEL_DIFF: (10.0, 40.0, 100.0),
    ENTROPY: (0.1, 1.0, 5.0),
    SSIM: (0.05, 0.2, 0.5),
}

# Below these thresholds compression is minimal, above them quality is poor
_WARNING_BOUNDS = {
    VARIANCE: (1.0, 1000.0),
    MAD: (1.0, 100.0),
    MAX_PIXEL_DIFF: (1.0, 200.0),
    ENTROPY: (0.1, 5.0),
    SSIM: (0.01, 0.5),
}

ENTROPY_CEILING = 5.0
SMALL_BLOCK_PIXELS = 16
RELAXED_BLOCK_PIXELS = 36

# SSIM constants, L = 255
C1 = (0.01 * 255) ** 2
C2 = (0.03 * 255) ** 2
LUMA_WEIGHTS = (0.299, 0.587, 0.114)  # R, G, B


def resolve_method(method):
    """
    Normalize an error method name.

    Raises:
        ValueError: for an unknown method
    """
    if method is None:
        raise ValueError("Error method is required")

    key = str(method).strip().lower().replace(' ', '_').replace('-', '_')
    key = _ALIASES.get(key, key)
    if key not in ERROR_METHODS:
        raise ValueError(f"Unknown error method '{method}'. Choose one of: {', '.join(ERROR_METHODS)}")
    return key


def get_method_name(method):
    return METHOD_NAMES.get(method, 'Unknown')


def _pixels(block):
    return block.reshape(-1, 3).astype(np.float64)


# ============================================================================
# METRICS
# ============================================================================

def calculate_variance(block):
    """Mean squared deviation from the block mean, averaged over channels."""
    if block is None or block.size == 0:
        return 0.0
    pixels = _pixels(block)
    if len(pixels) <= 1:
        return 0.0
    return float(np.var(pixels, axis=0).mean())


def calculate_mad(block):
    """Mean absolute deviation from the block mean, averaged over channels."""
    if block is None or block.size == 0:
        return 0.0
    pixels = _pixels(block)
    deviation = np.abs(pixels - pixels.mean(axis=0))
    return float(deviation.mean())


def calculate_max_pixel_diff(block):
    """
    Max pixel difference.

    Up to 4 pixels: largest channel-averaged distance from the first pixel.
    Otherwise: sum of per-channel ranges divided by 3.
    """
    if block is None or block.size == 0:
        return 0.0
    pixels = _pixels(block)
    if len(pixels) == 1:
        return 0.0

    if len(pixels) <= 4:
        diffs = np.abs(pixels - pixels[0]).sum(axis=1) / 3.0
        return float(diffs.max())

    ranges = pixels.max(axis=0) - pixels.min(axis=0)
    return float(ranges.sum() / 3.0)


def calculate_entropy(block):
    """
    Shannon entropy in bits, averaged over channels and clamped to 5.0.

    Blocks under 16 pixels are too small for a histogram; they fall back to
    the max pixel difference scaled into [0, 1].
    """
    if block is None or block.size == 0:
        return 0.0
    pixels = block.reshape(-1, 3)
    if len(pixels) < 16:
        return calculate_max_pixel_diff(block) / 255.0

    channel_entropy = 0.0
    for c in range(3):
        hist = np.bincount(pixels[:, c], minlength=256)
        channel_entropy += shannon_entropy(hist, base=2)

    return float(min(channel_entropy / 3.0, ENTROPY_CEILING))


def calculate_ssim(block, avg_block):
    """
    Dissimilarity between a block and a flat block of its representative color.

    Per channel: 1 - SSIM(block, avg_block) clamped to [0, 1], combined with
    luma weights and halved. Blocks narrower than 4 pixels fall back to
    variance / 1000.
    """
    if block is None or avg_block is None or block.size == 0 or avg_block.size == 0:
        return 0.0

    rows, cols = block.shape[:2]
    if rows < 4 or cols < 4:
        return calculate_variance(block) / 1000.0

    actual = _pixels(block)
    flat = _pixels(avg_block)
    n = len(actual)

    scores = []
    for c in range(3):
        a = actual[:, c]
        b = flat[:, c]
        mu1 = a.mean()
        mu2 = b.mean()
        d1 = a - mu1
        d2 = b - mu2
        sigma1_sq = (d1 * d1).sum() / (n - 1)
        sigma2_sq = (d2 * d2).sum() / (n - 1)
        sigma12 = (d1 * d2).sum() / (n - 1)

        numerator = (2 * mu1 * mu2 + C1) * (2 * sigma12 + C2)
        denominator = (mu1 * mu1 + mu2 * mu2 + C1) * (sigma1_sq + sigma2_sq + C2)
        similarity = numerator / denominator if denominator > 0.001 else 0.99

        scores.append(min(1.0, max(0.0, 1.0 - similarity)))

    weighted = sum(w * s for w, s in zip(LUMA_WEIGHTS, scores))
    return float(weighted * 0.5)


def flat_block(block, color):
    """Block-shaped array filled with color."""
    flat = np.empty_like(block)
    flat[...] = color
    return flat


def calculate_error(method, block, avg_block=None):
    """
    Score a block with the chosen method. Empty and single-pixel blocks score 0.

    For SSIM, avg_block is the block filled with its representative color;
    it is built from the block mean when not given.
    """
    if block is None or block.size == 0:
        return 0.0
    if block.shape[0] * block.shape[1] <= 1:
        return 0.0

    if method == VARIANCE:
        return calculate_variance(block)
    if method == MAD:
        return calculate_mad(block)
    if method == MAX_PIXEL_DIFF:
        return calculate_max_pixel_diff(block)
    if method == ENTROPY:
        return calculate_entropy(block)
    if method == SSIM:
        if avg_block is None:
            mean = np.rint(_pixels(block).mean(axis=0)).astype(block.dtype)
            avg_block = flat_block(block, mean)
        return calculate_ssim(block, avg_block)

    raise ValueError(f"Unknown error method '{method}'")


# ============================================================================
# SMALL BLOCK POLICY
# ============================================================================

def damped_error(method, block, avg_block=None):
    """
    Error score with the small-block damping applied.

    Variance, MAD and entropy are unstable on a handful of pixels, so blocks of
    up to 16 pixels are scored at half weight: pixel-scale methods through the
    max pixel difference, normalized methods through their own small-block
    fallback.
    """
    if block is None or block.size == 0:
        return 0.0

    n = block.shape[0] * block.shape[1]
    if n > SMALL_BLOCK_PIXELS:
        return calculate_error(method, block, avg_block)

    if method in (VARIANCE, MAD, MAX_PIXEL_DIFF):
        return 0.5 * calculate_max_pixel_diff(block) if n > 1 else 0.0
    return 0.5 * calculate_error(method, block, avg_block)


def relaxed_threshold(threshold, pixel_count):
    """Acceptance threshold for a block, 1.5x looser at 36 pixels or fewer."""
    if pixel_count <= RELAXED_BLOCK_PIXELS:
        return threshold * 1.5
    return threshold


# ============================================================================
# PARAMETER VALIDATION
# ============================================================================

def is_power_of_two(n):
    return n > 0 and (n & (n - 1)) == 0


def next_power_of_two_at_most(value):
    """Largest power of two <= value (1 for anything below 2)."""
    if value < 2:
        return 1
    return 1 << int(math.floor(math.log2(value)))


def validate_parameters(threshold, min_block_size, method, image_shape=None, target_pct=0.0):
    """
    Check compression parameters.

    Returns:
        list: warnings worth showing to the user

    Raises:
        ValueError: for parameters no run can use
    """
    method = resolve_method(method)
    warnings = []

    if threshold is None or threshold < 0:
        raise ValueError("Threshold must be non-negative")
    if min_block_size is None or min_block_size < 1:
        raise ValueError("Minimum block size must be at least 1")
    if target_pct is not None and (target_pct < 0.0 or target_pct > 100.0):
        raise ValueError("Target compression must be between 0 and 100 percent")

    low, high = _WARNING_BOUNDS[method]
    name = get_method_name(method)
    if threshold < low:
        warnings.append(f"Threshold is very low for {name}. Compression may be minimal")
    elif threshold > high:
        warnings.append(f"Threshold is very high for {name}. Image quality may be poor")

    if not is_power_of_two(min_block_size):
        warnings.append("Minimum block size is not a power of two. Results may be uneven")

    if image_shape is not None:
        min_dimension = min(image_shape[0], image_shape[1])
        if min_block_size >= min_dimension / 2:
            warnings.append(f"Minimum block size is too large for this image. "
                            f"Recommended maximum: {max(1, min_dimension // 4)}")

    if target_pct:
        if target_pct > 95.0:
            warnings.append("Target compression is very high (>95%). Image quality may be very poor")
        elif target_pct < 10.0:
            warnings.append("Target compression is very low (<10%). It may be hard to reach")

    return warnings
