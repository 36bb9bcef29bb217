import argparse
import logging
import sys
import time
from pathlib import Path

import cv2
import numpy as np
from tqdm import tqdm

from data_classes.data_classes import Settings, TrackerConfig
from vision.errors import StartupError, TickError
from vision.feature_extractor import FEATURE_VARIANTS, FeatureExtractor
from vision.feature_matcher import MATCHING_STRATEGIES, FeatureMatcher
from vision.frame_source import CameraSource, ImageSequenceSource, load_image
from vision.pipeline import FramePipeline
from vision.scheduler import Tracker

logger = logging.getLogger(__name__)

WINDOW_LIVE = "Camera 1"
WINDOW_SNAPSHOT = "Camera 2"
WINDOW_RESULT = "Result"


def _next(options: tuple, current: str) -> str:
    return options[(options.index(current) + 1) % len(options)] if current in options else options[0]


def handle_key(key: int, tracker: Tracker, settings: Settings) -> bool:
    """Apply a keyboard command. Returns False when the user asked to quit."""
    config = settings.current

    if key in (ord('q'), 27):
        return False
    if key == ord('s'):
        tracker.take_snapshot()
    elif key == ord('g'):
        settings.toggle('grayscale')
    elif key == ord('n'):
        settings.toggle('noise')
    elif key == ord('h'):
        settings.toggle('invert_horizontal')
    elif key == ord('v'):
        settings.toggle('invert_vertical')
    elif key == ord('o'):
        settings.toggle('use_good_matching_only')
    elif key == ord('t'):
        settings.toggle('use_homography')
    elif key in (ord('+'), ord('=')):
        settings.update(gaussian_smooth=config.gaussian_smooth + 1)
    elif key == ord('-'):
        settings.update(gaussian_smooth=max(0, config.gaussian_smooth - 1))
    elif key == ord('f'):
        settings.update(feature_variant=_next(FEATURE_VARIANTS, config.feature_variant))
    elif key == ord('m'):
        settings.update(matching_strategy=_next(MATCHING_STRATEGIES, config.matching_strategy))
    elif key == ord('w'):
        result = tracker.last_result
        if result is not None and result.composite is not None:
            path = f"result_{int(time.time())}.png"
            cv2.imwrite(path, result.composite)
            print(f"Saved {path}")
    else:
        return True

    logger.info("Settings: %s", settings.current)
    return True


def run_live(source, settings: Settings, extractor: FeatureExtractor, matcher: FeatureMatcher):
    """Show the live view, snapshot and result windows until the user quits"""
    pipeline = FramePipeline(source, settings, extractor=extractor, matcher=matcher)
    tracker = Tracker(
        pipeline, settings,
        on_fps=lambda fps: logger.debug("%d frames/s", fps),
    )

    print("Keys: s=snapshot g=gray n=noise h/v=flip +/-=blur f=features m=matcher "
          "o=good-only t=homography w=save q=quit")

    with tracker:
        running = True
        while running:
            result = tracker.last_result
            if result is not None:
                cv2.imshow(WINDOW_LIVE, result.live)
                if result.snapshot is not None:
                    cv2.imshow(WINDOW_SNAPSHOT, result.snapshot)
                if result.composite is not None:
                    cv2.imshow(WINDOW_RESULT, result.composite)
                    cv2.setWindowTitle(WINDOW_RESULT, f"{WINDOW_RESULT} ({tracker.fps} fps)")

            key = cv2.waitKey(10) & 0xFF
            if key != 0xFF:
                running = handle_key(key, tracker, settings)

    cv2.destroyAllWindows()


def run_replay(source: ImageSequenceSource, snapshot: np.ndarray, settings: Settings,
               extractor: FeatureExtractor, matcher: FeatureMatcher, output_dir: str):
    """Match every frame of source against snapshot and save the composites"""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    pipeline = FramePipeline(source, settings, extractor=extractor, matcher=matcher)
    pipeline.set_snapshot(snapshot)

    timings = {}
    located = 0
    failed = 0
    for idx in tqdm(range(len(source)), desc="Replaying"):
        try:
            result = pipeline.tick()
        except TickError as e:
            logger.error("Frame %d failed: %s", idx, e)
            failed += 1
            continue

        if result.quad is not None:
            located += 1
        for stage, elapsed in result.timings.items():
            timings[stage] = timings.get(stage, 0.0) + elapsed
        cv2.imwrite(str(output_dir / f"result_{idx:06d}.jpg"), result.composite)

    total = len(source)
    print(f"\nProcessed {total - failed}/{total} frames, object located in {located}")
    print("Mean stage time:")
    for stage, elapsed in timings.items():
        print(f"  {stage:12s}: {1000 * elapsed / max(1, total - failed):7.2f} ms")
    print(f"Results saved to '{output_dir}/'")


def parse_args(argv=None):
    defaults = TrackerConfig()
    parser = argparse.ArgumentParser(description="Live feature matching against a snapshot")
    parser.add_argument("--device", type=int, default=0, help="Camera device index")
    parser.add_argument("--width", type=int, default=320, help="Frame width")
    parser.add_argument("--height", type=int, default=240, help="Frame height")
    parser.add_argument("--input", type=str, default=None, help="Image folder to use instead of a camera")
    parser.add_argument("--replay", type=str, default=None, metavar="SNAPSHOT",
                        help="Match every --input frame against this image and save results")
    parser.add_argument("--output", type=str, default="output", help="Output directory for --replay")
    parser.add_argument("--torch_device", type=str, default="cuda", help="Torch device (cuda/cpu)")

    parser.add_argument("--invert_horizontal", action="store_true", help="Flip live image horizontally")
    parser.add_argument("--invert_vertical", action="store_true", help="Flip live image vertically")
    parser.add_argument("--grayscale", action="store_true", help="Match on luminance images")
    parser.add_argument("--noise", action="store_true", help="Add salt-and-pepper noise to the live image")
    parser.add_argument("--gaussian_smooth", type=int, default=defaults.gaussian_smooth,
                        help="Gaussian kernel size for the live image (0 disables)")
    parser.add_argument("--threshold", type=float, default=defaults.good_matching_threshold,
                        help="Good matching distance ratio")
    parser.add_argument("--all_matches", action="store_true", help="Draw all matches, not only good ones")
    parser.add_argument("--no_homography", action="store_true", help="Disable the homography overlay")
    parser.add_argument("--features", choices=FEATURE_VARIANTS, default=defaults.feature_variant,
                        help="Feature extractor")
    parser.add_argument("--matcher", choices=MATCHING_STRATEGIES, default=defaults.matching_strategy,
                        help="Descriptor matcher")
    parser.add_argument("--interval", type=int, default=defaults.tick_interval_ms,
                        help="Pipeline interval in milliseconds")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def config_from_args(args) -> TrackerConfig:
    return TrackerConfig(
        invert_horizontal=args.invert_horizontal,
        invert_vertical=args.invert_vertical,
        grayscale=args.grayscale,
        noise=args.noise,
        gaussian_smooth=args.gaussian_smooth,
        good_matching_threshold=args.threshold,
        use_good_matching_only=not args.all_matches,
        use_homography=not args.no_homography,
        feature_variant=args.features,
        matching_strategy=args.matcher,
        tick_interval_ms=args.interval,
    )


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = Settings(config_from_args(args))
    except ValueError as e:
        print(f"Error: {e}")
        return 2

    frame_size = (args.width, args.height)
    if args.replay and not args.input:
        print("Error: --replay needs --input")
        return 2

    try:
        if args.input:
            source = ImageSequenceSource(args.input, frame_size, loop=not args.replay).open()
        else:
            source = CameraSource(args.device, frame_size).open()
        snapshot = load_image(args.replay, frame_size) if args.replay else None
    except StartupError as e:
        print(f"Failed to initialize the frame source, the program will be closed.\n\n{e}")
        return 1

    extractor = FeatureExtractor(device=args.torch_device)
    matcher = FeatureMatcher(device=args.torch_device)

    try:
        if args.replay:
            run_replay(source, snapshot, settings, extractor, matcher, args.output)
        else:
            run_live(source, settings, extractor, matcher)
    finally:
        source.release()
    return 0


if __name__ == '__main__':
    sys.exit(main())
