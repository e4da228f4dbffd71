import cv2
import pytest

import compress
from encoder.quadtree.pixel_buffer import save_image


@pytest.fixture
def image_file(tmp_path, gradient_image):
    path = tmp_path / "source.png"
    assert save_image(path, gradient_image)
    return path


@pytest.mark.parametrize("target,quality", [(0, 85), (20, 85), (30, 80), (50, 75), (70, 70), (90, 60)])
def test_jpeg_quality_for_target(target, quality):
    assert compress.jpeg_quality_for_target(target) == quality


def test_encoder_params_by_extension():
    assert compress.encoder_params("out.png") == [cv2.IMWRITE_PNG_COMPRESSION, 9]
    assert compress.encoder_params("out.JPG", 50) == [cv2.IMWRITE_JPEG_QUALITY, 75]
    assert compress.encoder_params("out.webp") == [cv2.IMWRITE_WEBP_QUALITY, 80]
    assert compress.encoder_params("out.bmp") == []


def test_parser_defaults():
    args = compress.build_parser().parse_args(["in.png", "out.png"])
    assert args.method == "variance"
    assert args.threshold is None
    assert args.min_block == 4
    assert args.target == 0.0
    assert args.animation is None
    assert not args.show


def test_main_writes_output(image_file, tmp_path, capsys):
    output = tmp_path / "result.png"
    assert compress.main([str(image_file), str(output), "--threshold", "50", "--min-block", "2"]) == 0
    assert output.exists()

    out = capsys.readouterr().out
    assert "RESULTS" in out
    assert "Tree depth" in out


def test_run_returns_results(image_file, tmp_path):
    args = compress.build_parser().parse_args(
        [str(image_file), str(tmp_path / "result.jpg"), "--method", "mad", "--target", "80", "--quiet"])
    results = compress.run(args)

    assert results['method'] == 'mad'
    assert results['compressed_size'] > 0
    assert results['leaf_count'] >= 1
    assert 'psnr' in results['quality']


def test_main_with_animation(image_file, tmp_path):
    animation = tmp_path / "run.avi"
    code = compress.main([str(image_file), str(tmp_path / "result.png"),
                          "--animation", str(animation), "--quiet"])
    assert code == 0


def test_main_reports_bad_input(tmp_path, capsys):
    assert compress.main([str(tmp_path / "missing.png"), str(tmp_path / "out.png")]) == 1
    assert "Error" in capsys.readouterr().out


def test_main_reports_unknown_method(image_file, tmp_path):
    assert compress.main([str(image_file), str(tmp_path / "out.png"), "--method", "sobel"]) == 1
