import cv2
import numpy as np
import pytest

from data_classes.data_classes import Features, MatchSet
from vision.errors import FrameSourceError

WIDTH, HEIGHT = 320, 240


def make_textured_image(seed: int = 0, width: int = WIDTH, height: int = HEIGHT) -> np.ndarray:
    """BGR image with random rectangles, circles and text, rich in corners"""
    rng = np.random.default_rng(seed)
    img = np.full((height, width, 3), 127, dtype=np.uint8)

    for _ in range(25):
        x0, y0 = int(rng.integers(0, width - 20)), int(rng.integers(0, height - 20))
        x1, y1 = x0 + int(rng.integers(10, 60)), y0 + int(rng.integers(10, 60))
        color = tuple(int(c) for c in rng.integers(0, 256, 3))
        cv2.rectangle(img, (x0, y0), (x1, y1), color, -1)

    for _ in range(15):
        center = (int(rng.integers(0, width)), int(rng.integers(0, height)))
        color = tuple(int(c) for c in rng.integers(0, 256, 3))
        cv2.circle(img, center, int(rng.integers(4, 20)), color, -1)

    cv2.putText(img, "TRACK", (40, 130), cv2.FONT_HERSHEY_SIMPLEX, 1.5, (10, 10, 10), 3)
    return img


class FakeSource:
    """Frame source serving a fixed list of frames, cycling"""

    def __init__(self, *frames):
        self.frames = list(frames)
        self.reads = 0
        self.released = False

    def read(self):
        if not self.frames:
            raise FrameSourceError("no frame")
        frame = self.frames[self.reads % len(self.frames)]
        self.reads += 1
        return frame.copy()

    def release(self):
        self.released = True


class FixedExtractor:
    """Returns the same Features for every image"""

    def __init__(self, features: Features):
        self.features = features
        self.calls = []

    def extract(self, image, variant):
        self.calls.append(variant)
        return self.features


class IdentityMatcher:
    """Matches keypoint i to keypoint i with zero distance"""

    def match(self, feat0, feat1, strategy):
        n = min(len(feat0), len(feat1))
        idx = np.arange(n, dtype=np.int64)
        return MatchSet(pairs=np.stack([idx, idx], axis=1), distances=np.zeros(n, dtype=np.float32))


SPREAD_POINTS = [
    [30, 20], [290, 25], [280, 215], [40, 210], [160, 120],
    [100, 60], [220, 170], [70, 150], [250, 90], [150, 200],
]


def grid_features(n: int) -> Features:
    """n keypoints spread over the frame, no three of the first four collinear"""
    pts = np.float32(SPREAD_POINTS[:n]).reshape(-1, 2)
    desc = np.eye(max(n, 1), 8, dtype=np.float32)[:n]
    return Features(keypoints=pts, descriptors=desc, scores=np.ones(n, dtype=np.float32))


@pytest.fixture
def textured_image():
    return make_textured_image()


@pytest.fixture
def black_image():
    return np.zeros((HEIGHT, WIDTH, 3), dtype=np.uint8)


@pytest.fixture
def white_image():
    return np.full((HEIGHT, WIDTH, 3), 255, dtype=np.uint8)
