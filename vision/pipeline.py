"""
Frame Pipeline

One traversal per timer tick:
Capturing -> Preprocessing -> Extracting -> Matching -> Filtering
-> Homography | SkipHomography -> Composing

The pipeline owns the two standing images (live frame, snapshot). Every
stage works on copies, so they survive unchanged for the next tick.
"""

import logging
import threading
import time
from enum import Enum

import numpy as np

from data_classes.data_classes import Settings, TickResult
from vision.compositor import compose
from vision.errors import HomographyError
from vision.feature_extractor import FeatureExtractor
from vision.feature_matcher import FeatureMatcher
from vision.homography import (
    MIN_CORRESPONDENCES, correspondences, estimate_homography, is_convex, project_corners
)
from vision.match_filter import filter_good
from vision.preprocessor import preprocess_pair

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = 'idle'
    CAPTURING = 'capturing'
    PREPROCESSING = 'preprocessing'
    EXTRACTING = 'extracting'
    MATCHING = 'matching'
    FILTERING = 'filtering'
    HOMOGRAPHY = 'homography'
    SKIP_HOMOGRAPHY = 'skip_homography'
    COMPOSING = 'composing'


def timeit(name, timings: dict):
    """Context manager recording the elapsed time of a stage into timings"""
    class Timer:
        def __init__(self, name):
            self.name = name
            self.start = None
        def __enter__(self):
            self.start = time.perf_counter()
            return self
        def __exit__(self, *args):
            timings[self.name] = time.perf_counter() - self.start
    return Timer(name)


class FramePipeline:
    def __init__(self, source, settings: Settings = None, extractor: FeatureExtractor = None,
                 matcher: FeatureMatcher = None, rng: np.random.Generator = None):
        """
        Args:
            source: Frame source with a read() method
            settings: Shared settings; each tick reads settings.current once
            extractor: Feature extraction backend
            matcher: Descriptor matching backend
            rng: Random generator for noise injection
        """
        self.source = source
        self.settings = settings or Settings()
        self.extractor = extractor or FeatureExtractor()
        self.matcher = matcher or FeatureMatcher()
        self.rng = rng or np.random.default_rng()

        self.state = PipelineState.IDLE
        self._live = None
        self._snapshot = None
        self._ready = False
        self._lock = threading.Lock()

    @property
    def ready(self) -> bool:
        return self._ready

    def take_snapshot(self) -> np.ndarray:
        """Store the current live frame as the snapshot and enable matching"""
        with self._lock:
            if self._live is None:
                self._live = self.source.read()
            self._snapshot = self._live.copy()
            self._ready = True
        logger.info("Snapshot taken (%dx%d)", self._snapshot.shape[1], self._snapshot.shape[0])
        return self._snapshot.copy()

    def set_snapshot(self, image: np.ndarray):
        """Use an externally loaded image as the snapshot"""
        with self._lock:
            self._snapshot = image.copy()
            self._ready = True

    def tick(self) -> TickResult:
        """
        Run one traversal.

        Returns:
            TickResult, or None if another tick is still in progress

        Raises:
            TickError: unsupported variant/strategy or no frame from the source
        """
        if not self._lock.acquire(blocking=False):
            logger.debug("Tick skipped, previous tick still running")
            return None
        try:
            return self._run(self.settings.current)
        finally:
            self.state = PipelineState.IDLE
            self._lock.release()

    def _run(self, config) -> TickResult:
        timings = {}

        self.state = PipelineState.CAPTURING
        with timeit('capture', timings):
            self._live = self.source.read()

        result = TickResult(
            live=self._live.copy(),
            snapshot=self._snapshot.copy() if self._snapshot is not None else None,
            state=self.state.value,
            timings=timings,
        )
        if not self._ready:
            return result

        self.state = PipelineState.PREPROCESSING
        with timeit('preprocess', timings):
            image1, image2 = preprocess_pair(self._live, self._snapshot, config, rng=self.rng)

        self.state = PipelineState.EXTRACTING
        with timeit('extract', timings):
            features1 = self.extractor.extract(image1, config.feature_variant)
            features2 = self.extractor.extract(image2, config.feature_variant)

        self.state = PipelineState.MATCHING
        with timeit('match', timings):
            matches = self.matcher.match(features1, features2, config.matching_strategy)
        matches.validate(len(features1), len(features2))

        self.state = PipelineState.FILTERING
        with timeit('filter', timings):
            good_matches = filter_good(matches, config.good_matching_threshold, config.use_good_matching_only)

        H, quad = None, None
        if config.use_homography and len(good_matches) > MIN_CORRESPONDENCES:
            self.state = PipelineState.HOMOGRAPHY
            with timeit('homography', timings):
                H, quad = self._locate(image1, features1, features2, good_matches)
        else:
            self.state = PipelineState.SKIP_HOMOGRAPHY

        logger.debug(
            "Keypoints %d/%d, matches %d, good %d, homography %s",
            len(features1), len(features2), len(matches), len(good_matches),
            'yes' if H is not None else 'no',
        )

        reached = self.state
        self.state = PipelineState.COMPOSING
        with timeit('compose', timings):
            composite = compose(image1, features1, image2, features2, good_matches, quad)

        result.composite = composite
        result.features = (features1, features2)
        result.matches = matches
        result.good_matches = good_matches
        result.homography = H
        result.quad = quad
        result.state = reached.value
        return result

    def _locate(self, image1, features1, features2, good_matches) -> tuple:
        """Homography snapshot -> live and the projected live rectangle, or (None, None)"""
        snapshot_pts, live_pts = correspondences(features1, features2, good_matches)
        h, w = image1.shape[:2]
        try:
            H = estimate_homography(snapshot_pts, live_pts)
            quad = project_corners(w, h, H)
        except HomographyError as e:
            logger.info("Homography skipped: %s", e)
            self.state = PipelineState.SKIP_HOMOGRAPHY
            return None, None

        if not is_convex(quad):
            logger.debug("Projected quadrilateral is not convex: %s", quad.tolist())
        return H, quad
