from dataclasses import dataclass, field, replace
from typing import Optional
import threading

import cv2
import numpy as np


@dataclass(frozen=True)
class TrackerConfig:
    """Tunable session parameters, read once at the start of every tick"""
    invert_horizontal: bool = False
    invert_vertical: bool = False
    grayscale: bool = False
    noise: bool = False
    gaussian_smooth: int = 0
    good_matching_threshold: float = 2.0
    use_good_matching_only: bool = True
    use_homography: bool = True
    feature_variant: str = 'sift'  # 'sift' | 'disk'
    matching_strategy: str = 'approximate'  # 'exact' | 'approximate'
    tick_interval_ms: int = 30

    def __post_init__(self):
        if self.gaussian_smooth < 0:
            raise ValueError(f"gaussian_smooth must be >= 0, got {self.gaussian_smooth}")
        if self.good_matching_threshold < 0:
            raise ValueError(f"good_matching_threshold must be >= 0, got {self.good_matching_threshold}")
        if self.tick_interval_ms <= 0:
            raise ValueError(f"tick_interval_ms must be > 0, got {self.tick_interval_ms}")


class Settings:
    """Thread-safe holder that swaps whole TrackerConfig instances"""

    def __init__(self, config: TrackerConfig = None):
        self._config = config or TrackerConfig()
        self._lock = threading.Lock()

    @property
    def current(self) -> TrackerConfig:
        with self._lock:
            return self._config

    def update(self, **changes) -> TrackerConfig:
        with self._lock:
            self._config = replace(self._config, **changes)
            return self._config

    def toggle(self, name: str) -> TrackerConfig:
        with self._lock:
            self._config = replace(self._config, **{name: not getattr(self._config, name)})
            return self._config


@dataclass
class Features:
    keypoints: np.ndarray  # (N, 2) x,y coordinates
    descriptors: np.ndarray  # (N, D) descriptor vectors
    scores: np.ndarray = None  # (N,) detector response

    def __post_init__(self):
        if len(self.keypoints) != len(self.descriptors):
            raise ValueError(
                f"{len(self.keypoints)} keypoints but {len(self.descriptors)} descriptors"
            )

    def __len__(self):
        return len(self.keypoints)

    @classmethod
    def empty(cls, dim: int = 128) -> 'Features':
        return cls(
            keypoints=np.zeros((0, 2), dtype=np.float32),
            descriptors=np.zeros((0, dim), dtype=np.float32),
            scores=np.zeros(0, dtype=np.float32),
        )

    def to_cv_keypoints(self) -> list:
        """cv2.KeyPoint list for the OpenCV drawing functions"""
        return [cv2.KeyPoint(float(x), float(y), 1.0) for x, y in self.keypoints]


@dataclass
class MatchSet:
    pairs: np.ndarray  # (M, 2) query index, train index
    distances: np.ndarray  # (M,) lower is more similar

    def __post_init__(self):
        if len(self.pairs) != len(self.distances):
            raise ValueError(f"{len(self.pairs)} pairs but {len(self.distances)} distances")

    def __len__(self):
        return len(self.pairs)

    @classmethod
    def empty(cls) -> 'MatchSet':
        return cls(pairs=np.zeros((0, 2), dtype=np.int64), distances=np.zeros(0, dtype=np.float32))

    def take(self, mask: np.ndarray) -> 'MatchSet':
        return MatchSet(pairs=self.pairs[mask], distances=self.distances[mask])

    def validate(self, n_query: int, n_train: int):
        """Raise ValueError if any index falls outside its descriptor set"""
        if len(self) == 0:
            return
        if self.pairs.min() < 0 or self.pairs[:, 0].max() >= n_query or self.pairs[:, 1].max() >= n_train:
            raise ValueError("match index out of range")

    def to_cv_matches(self) -> list:
        return [
            cv2.DMatch(int(q), int(t), float(d))
            for (q, t), d in zip(self.pairs, self.distances)
        ]


@dataclass
class TickResult:
    live: np.ndarray
    snapshot: Optional[np.ndarray] = None
    composite: Optional[np.ndarray] = None  # None until a snapshot exists
    features: tuple = None  # (live Features, snapshot Features)
    matches: MatchSet = None
    good_matches: MatchSet = None
    homography: Optional[np.ndarray] = None  # (3, 3) snapshot -> live
    quad: Optional[np.ndarray] = None  # (4, 2) projected corners
    state: str = 'idle'
    timings: dict = field(default_factory=dict)  # stage -> seconds
