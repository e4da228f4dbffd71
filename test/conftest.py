import matplotlib
matplotlib.use("Agg")

import numpy as np
import pytest


@pytest.fixture
def solid_image():
    image = np.empty((16, 16, 3), dtype=np.uint8)
    image[...] = (10, 200, 30)
    return image


@pytest.fixture
def gradient_image():
    ramp = np.linspace(0, 255, 64).astype(np.uint8)
    image = np.zeros((64, 64, 3), dtype=np.uint8)
    image[:, :, 0] = ramp[np.newaxis, :]
    image[:, :, 1] = ramp[:, np.newaxis]
    image[:, :, 2] = 128
    return image


@pytest.fixture
def noise_image():
    rng = np.random.default_rng(7)
    return rng.integers(0, 256, size=(64, 64, 3), dtype=np.uint8)


@pytest.fixture
def diagonal_image():
    """8x8, white on and above the diagonal (x >= y), black below."""
    ys, xs = np.mgrid[0:8, 0:8]
    image = np.zeros((8, 8, 3), dtype=np.uint8)
    image[xs >= ys] = 255
    return image


@pytest.fixture
def two_color_block():
    """4x4 block, left half black and right half white."""
    block = np.zeros((4, 4, 3), dtype=np.uint8)
    block[:, 2:] = 255
    return block
