"""
Vision module for live feature matching.

Submodules:
- frame_source: Camera and image-folder frame sources
- preprocessor: Grayscale, salt-and-pepper noise, blur, flips
- feature_extractor: Extract SIFT/DISK features
- feature_matcher: Match descriptors (exact/approximate)
- match_filter: Keep good matches by distance ratio
- homography: RANSAC homography and corner projection
- compositor: Side-by-side match view with quadrilateral overlay
- pipeline: Per-tick orchestration
- scheduler: Periodic tasks driving the pipeline
"""

from .errors import (
    TrackerError,
    TickError,
    UnsupportedVariant,
    UnsupportedStrategy,
    FrameSourceError,
    StartupError,
    HomographyError,
)
from .frame_source import CameraSource, ImageSequenceSource, load_image
from .preprocessor import preprocess, preprocess_pair, salt_and_pepper, normalize_kernel_size
from .feature_extractor import FeatureExtractor, FEATURE_VARIANTS
from .feature_matcher import FeatureMatcher, MATCHING_STRATEGIES
from .match_filter import filter_good
from .homography import estimate_homography, project_corners, MIN_CORRESPONDENCES
from .compositor import compose
from .pipeline import FramePipeline, PipelineState
from .scheduler import Tracker, PeriodicTask, FrameCounter

__all__ = [
    # Errors
    'TrackerError',
    'TickError',
    'UnsupportedVariant',
    'UnsupportedStrategy',
    'FrameSourceError',
    'StartupError',
    'HomographyError',
    # Frame sources
    'CameraSource',
    'ImageSequenceSource',
    'load_image',
    # Preprocessing
    'preprocess',
    'preprocess_pair',
    'salt_and_pepper',
    'normalize_kernel_size',
    # Feature extraction
    'FeatureExtractor',
    'FEATURE_VARIANTS',
    # Feature matching
    'FeatureMatcher',
    'MATCHING_STRATEGIES',
    'filter_good',
    # Homography
    'estimate_homography',
    'project_corners',
    'MIN_CORRESPONDENCES',
    # Composition
    'compose',
    # Orchestration
    'FramePipeline',
    'PipelineState',
    'Tracker',
    'PeriodicTask',
    'FrameCounter',
]
