import cv2
import numpy as np

from data_classes.data_classes import Features, MatchSet
from vision.errors import HomographyError

# homography needs at least 4 points; fewer or equal good matches skip it
MIN_CORRESPONDENCES = 4
RANSAC_REPROJ_THRESHOLD = 3.0


def correspondences(live: Features, snapshot: Features, matches: MatchSet) -> tuple:
    """Snapshot points and live points for each match, (M, 2) float32 each"""
    live_pts = live.keypoints[matches.pairs[:, 0]].astype(np.float32)
    snapshot_pts = snapshot.keypoints[matches.pairs[:, 1]].astype(np.float32)
    return snapshot_pts, live_pts


def estimate_homography(src_pts: np.ndarray, dst_pts: np.ndarray) -> np.ndarray:
    """
    Fit the homography mapping src_pts onto dst_pts with RANSAC.

    Raises:
        HomographyError: too few points, degenerate input, or no model found
    """
    if len(src_pts) < MIN_CORRESPONDENCES or len(src_pts) != len(dst_pts):
        raise HomographyError(f"need {MIN_CORRESPONDENCES} paired points, got {len(src_pts)}/{len(dst_pts)}")

    try:
        H, _mask = cv2.findHomography(
            src_pts.reshape(-1, 1, 2), dst_pts.reshape(-1, 1, 2),
            cv2.RANSAC, RANSAC_REPROJ_THRESHOLD,
        )
    except cv2.error as e:
        raise HomographyError(str(e)) from e

    if H is None or H.shape != (3, 3) or not np.all(np.isfinite(H)):
        raise HomographyError("no homography found")
    return H


def project_corners(width: int, height: int, H: np.ndarray) -> np.ndarray:
    """Map the corners of a width x height rectangle through H, (4, 2) float32"""
    corners = np.float32([[0, 0], [width, 0], [width, height], [0, height]]).reshape(-1, 1, 2)
    try:
        projected = cv2.perspectiveTransform(corners, H)
    except cv2.error as e:
        raise HomographyError(str(e)) from e

    projected = projected.reshape(4, 2)
    if not np.all(np.isfinite(projected)):
        raise HomographyError("corners projected to infinity")
    return projected


def is_convex(quad: np.ndarray) -> bool:
    return bool(cv2.isContourConvex(quad.reshape(-1, 1, 2).astype(np.float32)))
