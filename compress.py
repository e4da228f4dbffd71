import argparse
import os
import sys
import time

import cv2

from decoder.reconstruction.comparison import calculate_quality_metrics
from encoder.quadtree.coordinator import DEFAULT_TIMEOUT
from encoder.quadtree.metrics import ERROR_METHODS, RECOMMENDED_THRESHOLDS, resolve_method, validate_parameters
from encoder.quadtree.pixel_buffer import load_image, save_image
from encoder.quadtree.session import QuadtreeCompressor, DEFAULT_MAX_DEPTH
from encoder.quadtree.visualization import show_comparison


def jpeg_quality_for_target(target_pct):
    """JPEG quality to write with: 85, lowered as the target compression rises."""
    if target_pct > 80:
        return 60
    if target_pct > 60:
        return 70
    if target_pct > 40:
        return 75
    if target_pct > 20:
        return 80
    return 85


def encoder_params(output_path, target_pct=0.0):
    """OpenCV imwrite parameters for the output format."""
    ext = os.path.splitext(str(output_path))[1].lower()
    if ext in ('.jpg', '.jpeg'):
        return [cv2.IMWRITE_JPEG_QUALITY, jpeg_quality_for_target(target_pct)]
    if ext == '.png':
        return [cv2.IMWRITE_PNG_COMPRESSION, 9]
    if ext == '.webp':
        return [cv2.IMWRITE_WEBP_QUALITY, 80]
    return []


def build_parser():
    parser = argparse.ArgumentParser(description="Quadtree image compression")
    parser.add_argument("input", help="image to compress")
    parser.add_argument("output", help="where to write the reconstructed image")
    parser.add_argument("--method", default="variance",
                        help=f"error method: {', '.join(ERROR_METHODS)} (default: variance)")
    parser.add_argument("--threshold", type=float, default=None,
                        help="error threshold (default: typical value for the method)")
    parser.add_argument("--min-block", type=int, default=4, help="minimum block size in pixels")
    parser.add_argument("--target", type=float, default=0.0,
                        help="target compression percentage, 0 to disable (default: 0)")
    parser.add_argument("--max-depth", type=int, default=DEFAULT_MAX_DEPTH)
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT,
                        help="seconds allowed for building the tree")
    parser.add_argument("--animation", default=None, metavar="PATH",
                        help="also write the construction frames as a video")
    parser.add_argument("--show", action="store_true", help="show original and result side by side")
    parser.add_argument("--quiet", action="store_true")
    return parser


def print_results(rows):
    print(f"\n{'='*60}")
    print("RESULTS")
    print(f"{'='*60}")
    width = max(len(label) for label, _ in rows)
    for label, value in rows:
        print(f"  {label:<{width}} : {value}")
    print(f"{'='*60}")


def run(args):
    """
    Compress args.input into args.output.

    Returns:
        dict: session summary plus file sizes and quality metrics
    """
    method = resolve_method(args.method)
    threshold = args.threshold
    if threshold is None:
        threshold = RECOMMENDED_THRESHOLDS[method][1]

    image = load_image(args.input)

    for warning in validate_parameters(threshold, args.min_block, method, image.shape, args.target):
        print(f"Warning: {warning}")

    start = time.time()
    compressor = QuadtreeCompressor(
        image, threshold, args.min_block, method=method,
        target_compression_pct=args.target,
        visualize=args.animation is not None,
        max_depth=args.max_depth,
        timeout=args.timeout,
        verbose=not args.quiet,
    )
    compressor.compress_image()
    reconstructed = compressor.reconstruct_image()

    if not save_image(args.output, reconstructed, encoder_params(args.output, args.target)):
        raise ValueError(f"Could not write image: {args.output}")

    if args.animation is not None:
        compressor.save_animation(args.animation)

    execution_time = time.time() - start

    results = compressor.summary()
    results['compression_pct'] = compressor.calculate_compression_percentage(args.input, args.output)
    results['original_size'] = os.path.getsize(args.input)
    results['compressed_size'] = os.path.getsize(args.output)
    results['execution_time'] = execution_time
    results['quality'] = calculate_quality_metrics(image, reconstructed)

    print_results([
        ("Execution time", f"{execution_time:.2f}s"),
        ("Original size", f"{results['original_size']:,} bytes"),
        ("Compressed size", f"{results['compressed_size']:,} bytes"),
        ("Compression", f"{results['compression_pct']:.2f}%"),
        ("Final threshold", f"{results['threshold']:.4f}"),
        ("Tree depth", results['tree_depth']),
        ("Nodes", f"{results['node_count']:,}"),
        ("Leaves", f"{results['leaf_count']:,}"),
        ("PSNR", f"{results['quality']['psnr']:.2f} dB"),
        ("SSIM", f"{results['quality']['ssim']:.4f}"),
    ])

    if args.show:
        show_comparison(image, reconstructed, title=f"Quadtree ({method})", stats=results)

    return results


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        run(args)
    except ValueError as e:
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
