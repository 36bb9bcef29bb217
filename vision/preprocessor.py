"""
Preprocessing Module

Grayscale conversion, salt-and-pepper noise, Gaussian blur and axis flips
applied before feature extraction. Noise, blur and flips touch the live image
only; the snapshot is at most converted to grayscale.
"""

import cv2
import numpy as np

from data_classes.data_classes import TrackerConfig

NOISE_BOUND = 5


def to_grayscale(image: np.ndarray) -> np.ndarray:
    """Luminance copy of image (BGR input, single-channel input is copied)"""
    if image.ndim == 2:
        return image.copy()
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


def salt_and_pepper(image: np.ndarray, bound: int = NOISE_BOUND,
                    noise: np.ndarray = None, rng: np.random.Generator = None) -> np.ndarray:
    """
    Add salt-and-pepper noise to a single-channel image.

    Args:
        image: Single-channel uint8 image
        bound: Draws within this distance of 255 become white, of 0 black
        noise: Optional per-pixel draws in [0, 255], same shape as image
        rng: Generator used when noise is not given

    Returns:
        New image; pixels with interior draws are unchanged
    """
    if noise is None:
        rng = rng or np.random.default_rng()
        noise = rng.uniform(0, 255, size=image.shape[:2]).astype(np.float32)
    elif noise.shape != image.shape[:2]:
        raise ValueError(f"noise shape {noise.shape} does not match image {image.shape[:2]}")

    result = image.copy()
    result[noise >= 255 - bound] = 255
    result[noise <= 0 + bound] = 0
    return result


def normalize_kernel_size(size: int) -> int:
    """Gaussian kernels must be odd; even sizes drop by one, 0 disables blur"""
    if size <= 0:
        return 0
    return size - 1 if size % 2 == 0 else size


def flip(image: np.ndarray, horizontal: bool, vertical: bool) -> np.ndarray:
    if horizontal and vertical:
        return cv2.flip(image, -1)
    if horizontal:
        image = cv2.flip(image, 1)
    if vertical:
        image = cv2.flip(image, 0)
    return image


def preprocess(image: np.ndarray, config: TrackerConfig, live: bool = True,
               rng: np.random.Generator = None) -> np.ndarray:
    """Apply the configured transforms; the input array is never modified"""
    if config.grayscale or config.noise:
        result = to_grayscale(image)
        if config.noise and live:
            result = salt_and_pepper(result, rng=rng)
    else:
        result = image.copy()

    if not live:
        return result

    ksize = normalize_kernel_size(config.gaussian_smooth)
    if ksize > 0:
        result = cv2.GaussianBlur(result, (ksize, ksize), 0)

    return flip(result, config.invert_horizontal, config.invert_vertical)


def preprocess_pair(live: np.ndarray, snapshot: np.ndarray, config: TrackerConfig,
                    rng: np.random.Generator = None) -> tuple:
    return preprocess(live, config, live=True, rng=rng), preprocess(snapshot, config, live=False)
