import numpy as np
import pytest

import vision.pipeline as pipeline_module
from data_classes.data_classes import MatchSet, Settings, TrackerConfig
from vision.compositor import QUAD_COLOR
from vision.errors import FrameSourceError, HomographyError, UnsupportedStrategy, UnsupportedVariant
from vision.feature_extractor import FeatureExtractor
from vision.feature_matcher import FeatureMatcher
from vision.pipeline import FramePipeline, PipelineState
from conftest import FakeSource, FixedExtractor, IdentityMatcher, grid_features

CORNERS = np.float32([[0, 0], [320, 0], [320, 240], [0, 240]])


@pytest.fixture(scope='module')
def extractor():
    return FeatureExtractor(device='cpu')


@pytest.fixture(scope='module')
def matcher():
    return FeatureMatcher(device='cpu')


def make_pipeline(source, config=None, extractor=None, matcher=None):
    return FramePipeline(
        source, Settings(config or TrackerConfig()),
        extractor=extractor, matcher=matcher, rng=np.random.default_rng(0),
    )


def count_color(image, color):
    return int(np.all(image == np.array(color, dtype=np.uint8), axis=2).sum())


def test_preview_only_until_snapshot(textured_image, extractor, matcher):
    pipeline = make_pipeline(FakeSource(textured_image), extractor=extractor, matcher=matcher)

    result = pipeline.tick()

    assert not pipeline.ready
    assert result.composite is None
    assert result.snapshot is None
    np.testing.assert_array_equal(result.live, textured_image)
    assert pipeline.state == PipelineState.IDLE


def test_snapshot_copies_current_live_frame(textured_image, black_image, extractor, matcher):
    source = FakeSource(textured_image, black_image)
    pipeline = make_pipeline(source, extractor=extractor, matcher=matcher)

    pipeline.tick()
    snapshot = pipeline.take_snapshot()

    assert pipeline.ready
    np.testing.assert_array_equal(snapshot, textured_image)
    result = pipeline.tick()
    np.testing.assert_array_equal(result.live, black_image)
    np.testing.assert_array_equal(result.snapshot, textured_image)


def test_snapshot_before_first_tick_reads_source(textured_image, extractor, matcher):
    source = FakeSource(textured_image)
    pipeline = make_pipeline(source, extractor=extractor, matcher=matcher)

    pipeline.take_snapshot()

    assert source.reads == 1
    assert pipeline.ready


@pytest.mark.parametrize("strategy", ['exact', 'approximate'])
def test_identical_images_give_identity_homography(textured_image, extractor, matcher, strategy):
    config = TrackerConfig(use_good_matching_only=True, good_matching_threshold=2.0, matching_strategy=strategy)
    pipeline = make_pipeline(FakeSource(textured_image), config, extractor, matcher)
    pipeline.take_snapshot()

    result = pipeline.tick()

    live_features, snapshot_features = result.features
    assert len(live_features) >= 5 and len(snapshot_features) >= 5
    assert len(result.good_matches) > 4
    assert np.all(result.good_matches.distances <= 1.0)
    np.testing.assert_allclose(result.homography / result.homography[2, 2], np.eye(3), atol=1e-2)
    np.testing.assert_allclose(result.quad, CORNERS, atol=1.0)
    assert result.state == PipelineState.HOMOGRAPHY.value
    assert result.composite.shape == (240, 640, 3)


def test_black_live_against_white_snapshot(black_image, white_image, extractor, matcher):
    pipeline = make_pipeline(FakeSource(black_image), extractor=extractor, matcher=matcher)
    pipeline.set_snapshot(white_image)

    result = pipeline.tick()

    assert len(result.good_matches) == 0
    assert result.homography is None and result.quad is None
    assert result.composite.shape == (240, 640, 3)
    assert np.all(result.composite[:, :320] == 0)
    assert np.all(result.composite[:, 320:] == 255)


@pytest.mark.parametrize("n, expect_quad", [(0, False), (4, False), (5, True), (8, True)])
def test_homography_only_above_four_good_matches(textured_image, n, expect_quad):
    pipeline = make_pipeline(FakeSource(textured_image), extractor=FixedExtractor(grid_features(n)),
                             matcher=IdentityMatcher())
    pipeline.take_snapshot()

    result = pipeline.tick()

    assert len(result.good_matches) == n
    assert (result.quad is not None) == expect_quad
    assert (count_color(result.composite, QUAD_COLOR) > 0) == expect_quad
    if not expect_quad:
        assert result.state == PipelineState.SKIP_HOMOGRAPHY.value
    else:
        assert result.state == PipelineState.HOMOGRAPHY.value


def test_homography_disabled(textured_image):
    pipeline = make_pipeline(FakeSource(textured_image), TrackerConfig(use_homography=False),
                             FixedExtractor(grid_features(8)), IdentityMatcher())
    pipeline.take_snapshot()

    result = pipeline.tick()

    assert result.quad is None
    assert result.composite is not None


def test_homography_failure_is_soft(monkeypatch, textured_image):
    def fail(src, dst):
        raise HomographyError("degenerate")

    monkeypatch.setattr(pipeline_module, 'estimate_homography', fail)
    pipeline = make_pipeline(FakeSource(textured_image), extractor=FixedExtractor(grid_features(8)),
                             matcher=IdentityMatcher())
    pipeline.take_snapshot()

    result = pipeline.tick()

    assert result.quad is None and result.homography is None
    assert result.state == PipelineState.SKIP_HOMOGRAPHY.value
    assert len(result.good_matches) == 8
    assert count_color(result.composite, QUAD_COLOR) == 0


def test_unsupported_variant_propagates(textured_image, extractor, matcher):
    pipeline = make_pipeline(FakeSource(textured_image), TrackerConfig(feature_variant='surf'), extractor, matcher)
    pipeline.take_snapshot()

    with pytest.raises(UnsupportedVariant):
        pipeline.tick()
    assert pipeline.state == PipelineState.IDLE

    # next tick runs normally once the selection is fixed
    pipeline.settings.update(feature_variant='sift')
    assert pipeline.tick().composite is not None


def test_unsupported_strategy_propagates(textured_image, extractor, matcher):
    pipeline = make_pipeline(FakeSource(textured_image), TrackerConfig(matching_strategy='bruteforce'),
                             extractor, matcher)
    pipeline.take_snapshot()

    with pytest.raises(UnsupportedStrategy):
        pipeline.tick()


def test_frame_source_failure_propagates(extractor, matcher):
    pipeline = make_pipeline(FakeSource(), extractor=extractor, matcher=matcher)
    with pytest.raises(FrameSourceError):
        pipeline.tick()


class OutOfRangeMatcher:
    def match(self, feat0, feat1, strategy):
        return MatchSet(pairs=np.array([[0, 0], [len(feat0), 0]]), distances=np.zeros(2, dtype=np.float32))


def test_out_of_range_match_indices_are_rejected(textured_image):
    pipeline = make_pipeline(FakeSource(textured_image), extractor=FixedExtractor(grid_features(5)),
                             matcher=OutOfRangeMatcher())
    pipeline.take_snapshot()

    with pytest.raises(ValueError, match="out of range"):
        pipeline.tick()
    assert pipeline.state == PipelineState.IDLE


def test_overlapping_tick_is_skipped(textured_image):
    source = FakeSource(textured_image)
    pipeline = make_pipeline(source, extractor=FixedExtractor(grid_features(5)), matcher=IdentityMatcher())

    with pipeline._lock:
        assert pipeline.tick() is None
    assert source.reads == 0
    assert pipeline.tick() is not None


def test_standing_images_survive_preprocessing(textured_image):
    config = TrackerConfig(noise=True, gaussian_smooth=5, invert_horizontal=True, invert_vertical=True)
    pipeline = make_pipeline(FakeSource(textured_image), config, FixedExtractor(grid_features(5)), IdentityMatcher())
    pipeline.take_snapshot()

    pipeline.tick()
    result = pipeline.tick()

    np.testing.assert_array_equal(result.live, textured_image)
    np.testing.assert_array_equal(result.snapshot, textured_image)


def test_config_read_once_per_tick(textured_image):
    settings = Settings(TrackerConfig(feature_variant='sift'))
    extractor = FixedExtractor(grid_features(5))

    class SwitchingMatcher(IdentityMatcher):
        def match(self, feat0, feat1, strategy):
            settings.update(feature_variant='disk', use_homography=False)
            return super().match(feat0, feat1, strategy)

    pipeline = FramePipeline(FakeSource(textured_image), settings, extractor=extractor, matcher=SwitchingMatcher())
    pipeline.take_snapshot()

    result = pipeline.tick()

    assert extractor.calls == ['sift', 'sift']
    # the homography gate still sees the configuration the tick started with
    assert result.quad is not None


def test_timings_recorded(textured_image):
    pipeline = make_pipeline(FakeSource(textured_image), extractor=FixedExtractor(grid_features(5)),
                             matcher=IdentityMatcher())
    pipeline.take_snapshot()

    result = pipeline.tick()

    assert set(result.timings) == {'capture', 'preprocess', 'extract', 'match', 'filter', 'homography', 'compose'}
    assert all(t >= 0 for t in result.timings.values())
