import os
import numpy as np
from skimage.metrics import peak_signal_noise_ratio, structural_similarity


def node_compression_percentage(leaf_count, total_pixels):
    """(1 - leaves / pixels) * 100."""
    if total_pixels <= 0:
        return 0.0
    return (1.0 - leaf_count / total_pixels) * 100.0


def file_compression_percentage(original_size, compressed_size):
    """(1 - compressed / original) * 100, or None if either size is missing."""
    if not original_size or not compressed_size or original_size <= 0 or compressed_size <= 0:
        return None
    return (1.0 - compressed_size / original_size) * 100.0


def _file_size(path):
    if path is None or not os.path.exists(path):
        return 0
    try:
        return os.path.getsize(path)
    except OSError as e:
        print(f"Warning: could not read size of {path}: {e}")
        return 0


def calculate_compression_percentage(original_path, compressed_path, leaf_count, total_pixels, verbose=True):
    """
    Compression percentage from file sizes, falling back to the leaf count.

    Returns:
        tuple: (percentage, basis) with basis 'file' or 'node'
    """
    original_size = _file_size(original_path)
    compressed_size = _file_size(compressed_path)

    file_pct = file_compression_percentage(original_size, compressed_size)
    if file_pct is not None:
        if verbose:
            print("Compression from file sizes:")
            print(f"  Original: {original_size:,} bytes")
            print(f"  Compressed: {compressed_size:,} bytes")
            print(f"  Compression: {file_pct:.2f}%")
        return file_pct, 'file'

    node_pct = node_compression_percentage(leaf_count, total_pixels)
    if verbose:
        print(f"  File sizes unavailable, using node-based compression: {node_pct:.2f}%")
    return node_pct, 'node'


def calculate_quality_metrics(original, reconstructed):
    """
    Quality of a reconstruction against its source.

    Returns:
        dict: psnr, ssim, mse, rmse, mae, max_error
    """
    if original.shape != reconstructed.shape:
        raise ValueError(f"Shape mismatch: {original.shape} vs {reconstructed.shape}")

    original_f = original.astype(np.float64)
    reconstructed_f = reconstructed.astype(np.float64)

    metrics = {}
    metrics['mse'] = float(np.mean((original_f - reconstructed_f) ** 2))
    metrics['rmse'] = float(np.sqrt(metrics['mse']))
    metrics['mae'] = float(np.mean(np.abs(original_f - reconstructed_f)))
    metrics['max_error'] = float(np.max(np.abs(original_f - reconstructed_f)))

    if metrics['mse'] == 0:
        metrics['psnr'] = float('inf')
    else:
        metrics['psnr'] = float(peak_signal_noise_ratio(original, reconstructed, data_range=255))

    # structural_similarity needs a window of at least 7 px, odd
    win_size = min(7, original.shape[0], original.shape[1])
    if win_size % 2 == 0:
        win_size -= 1
    if win_size >= 3:
        metrics['ssim'] = float(structural_similarity(original, reconstructed, data_range=255,
                                                      channel_axis=2, win_size=win_size))
    else:
        metrics['ssim'] = 1.0 if metrics['mse'] == 0 else float('nan')

    return metrics
