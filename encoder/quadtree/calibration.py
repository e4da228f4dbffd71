import math

from encoder.quadtree.metrics import (
    VARIANCE, MAD, MAX_PIXEL_DIFF, ENTROPY, SSIM, get_method_name, next_power_of_two_at_most,
)
from encoder.quadtree.partition import measure_compression
from encoder.quadtree.policy import StandardPolicy, FixedGridPolicy, HybridRegionPolicy, depth_for_block


PRECISION_LIMIT = 20.0
FIXED_GRID_LIMIT = 75.0
HYBRID_TRIGGER = 10.0           # percentage points between predicted and target
CALIBRATION_TOLERANCE = 3.0     # percentage points
CALIBRATION_MAX_ITERATIONS = 7
CALIBRATION_DOWNSAMPLE_PIXELS = 1_000_000
LOW_THRESHOLD = 0.0001

# Fixed threshold for the precision regime
PRECISION_THRESHOLDS = {
    VARIANCE: 5.0,
    MAD: 2.0,
    MAX_PIXEL_DIFF: 5.0,
    ENTROPY: 0.1,
    SSIM: 0.01,
}

# Upper end of the search interval for targets < 85, < 95 and >= 95
ADAPTIVE_HIGH_THRESHOLDS = {
    VARIANCE: (50.0, 200.0, 500.0),
    MAD: (15.0, 30.0, 50.0),
    MAX_PIXEL_DIFF: (30.0, 75.0, 150.0),
    ENTROPY: (1.0, 2.5, 5.0),
    SSIM: (0.15, 0.3, 0.5),
}

_CENTER_RATIO_LIMITS = (0.05, 0.95)
_MIN_CENTER_RATIO = 0.3
_COARSE_FACTORS = (2, 4, 8)


def calibration_regime(target_pct):
    if target_pct <= 0.0:
        return None
    if target_pct < PRECISION_LIMIT:
        return 'precision'
    if target_pct < FIXED_GRID_LIMIT:
        return 'fixed_grid'
    return 'adaptive'


def adaptive_high_threshold(method, target_pct):
    bands = ADAPTIVE_HIGH_THRESHOLDS[method]
    if target_pct < 85.0:
        return bands[0]
    if target_pct < 95.0:
        return bands[1]
    return bands[2]


def predicted_grid_compression(width, height, block_size):
    """Leaf-based compression of a uniform grid of block_size squares."""
    total_pixels = width * height
    predicted_leaves = max(1, (width // block_size) * (height // block_size))
    return (1.0 - predicted_leaves / total_pixels) * 100.0


def hybrid_layout(target_pct, fine_block):
    """
    Size the fine center and pick the coarse outer block for a target.

    With leaf density 1/fine^2 in the center and 1/coarse^2 outside, the
    center area fraction f solves t = f/fine^2 + (1 - f)/coarse^2 for the
    target leaf density t. The first coarse factor giving a center of at least
    30% per side wins.

    Returns:
        tuple: (center_ratio, coarse_block)
    """
    leaf_density = 1.0 - target_pct / 100.0
    fine_density = 1.0 / (fine_block * fine_block)

    ratio, coarse_block = _CENTER_RATIO_LIMITS[0], fine_block * _COARSE_FACTORS[-1]
    for factor in _COARSE_FACTORS:
        coarse = fine_block * factor
        coarse_density = 1.0 / (coarse * coarse)
        fraction = (leaf_density - coarse_density) / (fine_density - coarse_density)
        candidate = math.sqrt(max(0.0, fraction))
        ratio, coarse_block = candidate, coarse
        if candidate >= _MIN_CENTER_RATIO:
            break

    low, high = _CENTER_RATIO_LIMITS
    return min(high, max(low, ratio)), coarse_block


# ============================================================================
# REGIMES
# ============================================================================

def _calibrate_precision(session, target_pct, width, height):
    session.threshold = PRECISION_THRESHOLDS[session.method]

    grid_size = math.sqrt(width * height * (1.0 - target_pct / 100.0))
    session.min_block_size = max(2, next_power_of_two_at_most(grid_size))
    session.policy = StandardPolicy(session.max_depth, session.min_block_size)

    session.log(f"  - Threshold: {session.threshold}")
    session.log(f"  - Minimum block size: {session.min_block_size}")
    return {'regime': 'precision'}


def _calibrate_fixed_grid(session, target_pct, width, height):
    total_pixels = width * height
    target_leaves = max(1, int(total_pixels * (1.0 - target_pct / 100.0)))
    session.log(f"  - Target leaf nodes: {target_leaves:,} of {total_pixels:,} pixels")

    avg_block_area = total_pixels / target_leaves
    block = next_power_of_two_at_most(math.sqrt(avg_block_area))
    max_dimension = max(width, height)

    session.min_block_size = block
    session.max_depth = depth_for_block(max_dimension, block)

    predicted_pct = predicted_grid_compression(width, height, block)
    session.log(f"  - Fixed grid block: {block}x{block}")
    session.log(f"  - Predicted compression: {predicted_pct:.2f}%")
    session.log(f"  - Depth limit: {session.max_depth}")

    report = {'regime': 'fixed_grid', 'predicted_pct': predicted_pct}

    if abs(predicted_pct - target_pct) > HYBRID_TRIGGER:
        center_ratio, coarse_block = hybrid_layout(target_pct, block)
        session.policy = HybridRegionPolicy(
            center_ratio=center_ratio,
            center_min_block_size=block,
            center_max_depth=depth_for_block(max_dimension, block),
            outer_min_block_size=coarse_block,
            outer_max_depth=depth_for_block(max_dimension, coarse_block),
        )
        center_w, center_h = int(width * center_ratio), int(height * center_ratio)
        session.log(f"  - Hybrid mode: {center_w}x{center_h} center at {block}px, "
                    f"outer region at {coarse_block}px")
        report['regime'] = 'hybrid_region'
        report['center_ratio'] = center_ratio
    else:
        session.policy = FixedGridPolicy(session.max_depth, block)

    return report


def _calibrate_adaptive(session, target_pct, buffer):
    method = session.method
    low = LOW_THRESHOLD
    high = adaptive_high_threshold(method, target_pct)

    test_buffer = buffer
    if buffer.total_pixels > CALIBRATION_DOWNSAMPLE_PIXELS:
        test_buffer = buffer.downsample(0.5)
        session.log(f"  - Trial image downsampled to {test_buffer.width}x{test_buffer.height}")

    policy = StandardPolicy(session.max_depth, session.min_block_size)

    def trial(threshold):
        pct, _ = measure_compression(test_buffer, threshold, method, policy,
                                     timeout=session.timeout, max_nodes=session.max_nodes)
        return pct

    threshold = session.threshold
    current_pct = trial(threshold)
    best_threshold, best_pct = threshold, current_pct
    best_difference = abs(current_pct - target_pct)
    iterations = 1

    if best_difference <= CALIBRATION_TOLERANCE:
        session.log("Target compression achieved with initial threshold!")
        return {'regime': 'adaptive', 'iterations': iterations,
                'achieved_pct': current_pct, 'deviation': best_difference}

    # Narrow the bracket, or widen it when the initial threshold sits outside
    if current_pct < target_pct:
        if threshold >= high:
            high = threshold * 2.0
        low = max(low, threshold)
    else:
        if threshold <= low:
            low = threshold / 10.0
        high = min(high, threshold)

    for iteration in range(CALIBRATION_MAX_ITERATIONS):
        if high <= low:
            break
        if iteration == 0:
            weight = 0.5
        else:
            weight = 0.7 if current_pct < target_pct else 0.3

        threshold = low + (high - low) * weight
        if abs(threshold - best_threshold) < 0.001 * best_threshold:
            break

        session.log(f"Iteration {iteration + 1}: Testing threshold = {threshold:.4f}")
        current_pct = trial(threshold)
        iterations += 1
        session.log(f"  Current compression: {current_pct:.2f}%")

        difference = abs(current_pct - target_pct)
        if difference < best_difference:
            best_threshold, best_pct, best_difference = threshold, current_pct, difference

        if difference <= CALIBRATION_TOLERANCE:
            session.log(f"Target compression achieved with threshold = {threshold:.4f}")
            break

        if current_pct < target_pct:
            low = threshold
        else:
            high = threshold

        if (high - low) < 0.001 * low:
            break

    if best_difference > CALIBRATION_TOLERANCE:
        scale = target_pct / best_pct if best_pct > 0 else 2.0
        extrapolated = max(low, min(high * 1.2, best_threshold * scale))

        session.log(f"Fine-tuning with threshold = {extrapolated:.4f}")
        extrapolated_pct = trial(extrapolated)
        iterations += 1

        extrapolated_difference = abs(extrapolated_pct - target_pct)
        if extrapolated_difference < best_difference:
            best_threshold, best_pct, best_difference = extrapolated, extrapolated_pct, extrapolated_difference

    session.threshold = best_threshold
    session.policy = policy
    session.log(f"Using best threshold = {best_threshold:.4f}")
    session.log(f"Estimated final compression: within {best_difference:.2f}% of target")

    return {'regime': 'adaptive', 'iterations': iterations,
            'achieved_pct': best_pct, 'deviation': best_difference}


def adjust_threshold_for_target_compression(session, buffer):
    """
    Tune a session's threshold, block size, depth and policy toward its target.

    Mutates session in place; trial trees are built and thrown away.

    Args:
        session: QuadtreeCompressor with threshold, min_block_size, max_depth,
                 method, policy, timeout, max_nodes and target_compression_pct
        buffer: full resolution PixelBuffer

    Returns:
        dict: calibration report (regime, threshold, parameters and, for the
              adaptive regime, achieved compression and deviation)
    """
    target_pct = session.target_compression_pct
    regime = calibration_regime(target_pct)

    if regime is None:
        session.log("Target compression is disabled. Using standard threshold-based compression.")
        return None

    session.log(f"\n{'='*60}")
    session.log(f"CALIBRATING FOR {target_pct:.1f}% TARGET ({get_method_name(session.method)}, {regime})")
    session.log(f"{'='*60}")

    if regime == 'precision':
        report = _calibrate_precision(session, target_pct, buffer.width, buffer.height)
    elif regime == 'fixed_grid':
        report = _calibrate_fixed_grid(session, target_pct, buffer.width, buffer.height)
    else:
        report = _calibrate_adaptive(session, target_pct, buffer)

    report.update({
        'target_pct': target_pct,
        'threshold': session.threshold,
        'min_block_size': session.min_block_size,
        'max_depth': session.max_depth,
        'policy': session.policy.describe(),
    })
    return report
