"""
Overlay compositor: side-by-side view of the live image and the snapshot
with correspondence lines, plus the projected quadrilateral when available.
"""

import cv2
import numpy as np

from data_classes.data_classes import Features, MatchSet

QUAD_COLOR = (0, 200, 253)  # BGR
QUAD_THICKNESS = 4
# int32-safe bound for projected corners; cv2 clips lines to the canvas
QUAD_COORD_LIMIT = 1e6


def _to_bgr(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    return image


def side_by_side(image1: np.ndarray, image2: np.ndarray) -> np.ndarray:
    """BGR canvas with image1 on the left and image2 on the right, top aligned"""
    img1, img2 = _to_bgr(image1), _to_bgr(image2)
    h1, w1 = img1.shape[:2]
    h2, w2 = img2.shape[:2]

    canvas = np.zeros((max(h1, h2), w1 + w2, 3), dtype=np.uint8)
    canvas[:h1, :w1] = img1
    canvas[:h2, w1:w1 + w2] = img2
    return canvas


def draw_quad(canvas: np.ndarray, quad: np.ndarray, color: tuple = QUAD_COLOR,
              thickness: int = QUAD_THICKNESS) -> np.ndarray:
    """Draw the four closed edges of quad onto canvas in place"""
    pts = np.round(np.clip(quad, -QUAD_COORD_LIMIT, QUAD_COORD_LIMIT)).astype(np.int32).reshape(-1, 1, 2)
    cv2.polylines(canvas, [pts], True, color, thickness)
    return canvas


def compose(image1: np.ndarray, features1: Features, image2: np.ndarray, features2: Features,
            good_matches: MatchSet, quad: np.ndarray = None) -> np.ndarray:
    """
    Build the result view for one tick.

    Args:
        image1: Live image (left panel)
        features1: Live features, query side of good_matches
        image2: Snapshot (right panel)
        features2: Snapshot features, train side of good_matches
        good_matches: Matches to draw as lines
        quad: Optional (4, 2) quadrilateral in live image coordinates

    Returns:
        New BGR composite image
    """
    canvas = side_by_side(image1, image2)

    if len(good_matches) > 0:
        canvas = cv2.drawMatches(
            _to_bgr(image1), features1.to_cv_keypoints(),
            _to_bgr(image2), features2.to_cv_keypoints(),
            good_matches.to_cv_matches(), canvas,
            flags=cv2.DrawMatchesFlags_DRAW_OVER_OUTIMG,
        )

    if quad is not None:
        draw_quad(canvas, quad)

    return canvas
