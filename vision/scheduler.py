"""
Timer-driven execution of the frame pipeline.

Two independent periodic tasks: the pipeline tick (tick_interval_ms) and a
1 s frame-rate task that publishes and resets the shared frame counter.
"""

import logging
import threading
import time

from data_classes.data_classes import Settings
from vision.errors import TickError
from vision.pipeline import FramePipeline

logger = logging.getLogger(__name__)

FPS_INTERVAL = 1.0


class FrameCounter:
    def __init__(self):
        self._count = 0
        self._lock = threading.Lock()

    def increment(self) -> int:
        with self._lock:
            self._count += 1
            return self._count

    def reset(self) -> int:
        """Zero the counter and return the value it held"""
        with self._lock:
            count, self._count = self._count, 0
            return count

    @property
    def value(self) -> int:
        with self._lock:
            return self._count


class PeriodicTask:
    """
    Runs callback on its own thread every interval seconds.

    interval may be a number or a zero-argument callable, re-read after every
    run. Runs never overlap: deadlines missed while the callback is busy are
    skipped.
    """

    def __init__(self, name: str, interval, callback):
        self.name = name
        self.interval = interval
        self.callback = callback
        self._stop = threading.Event()
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _interval(self) -> float:
        return self.interval() if callable(self.interval) else self.interval

    def start(self):
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = None):
        """Signal the loop and wait for the current run to finish"""
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None

    def _loop(self):
        next_run = time.monotonic() + self._interval()
        while not self._stop.wait(max(0.0, next_run - time.monotonic())):
            self.callback()

            interval = self._interval()
            next_run += interval
            now = time.monotonic()
            if next_run <= now:
                skipped = int((now - next_run) // interval) + 1
                next_run += skipped * interval
                logger.debug("%s: skipped %d deadline(s)", self.name, skipped)


class Tracker:
    """Drives a FramePipeline from the two periodic tasks and reports results"""

    def __init__(self, pipeline: FramePipeline, settings: Settings = None,
                 on_result=None, on_error=None, on_fps=None):
        """
        Args:
            pipeline: The frame pipeline to tick
            settings: Shared settings, defaults to the pipeline's
            on_result: Called with each TickResult
            on_error: Called with the exception of a failed tick
            on_fps: Called once per second with the number of ticks run
        """
        self.pipeline = pipeline
        self.settings = settings or pipeline.settings
        self.on_result = on_result
        self.on_error = on_error
        self.on_fps = on_fps

        self.counter = FrameCounter()
        self.fps = 0
        self.last_result = None
        self.last_error = None

        self.main_task = PeriodicTask(
            'pipeline', lambda: self.settings.current.tick_interval_ms / 1000.0, self.process_frame
        )
        self.fps_task = PeriodicTask('fps', FPS_INTERVAL, self.publish_fps)

    @property
    def running(self) -> bool:
        return self.main_task.running

    def start(self):
        logger.info("Tracking started (%d ms interval)", self.settings.current.tick_interval_ms)
        self.main_task.start()
        self.fps_task.start()

    def stop(self):
        self.main_task.stop()
        self.fps_task.stop()
        logger.info("Tracking stopped")

    def take_snapshot(self):
        return self.pipeline.take_snapshot()

    def process_frame(self):
        """One pipeline tick; errors are logged and reported, never raised"""
        self.counter.increment()
        try:
            result = self.pipeline.tick()
        except TickError as e:
            logger.exception("Tick failed: %s", e)
            self._report(e)
            return None
        except Exception as e:
            logger.exception("Unexpected error in tick")
            self._report(e)
            return None

        if result is not None:
            self.last_result = result
            if self.on_result is not None:
                self.on_result(result)
        return result

    def publish_fps(self):
        self.fps = self.counter.reset()
        if self.on_fps is not None:
            self.on_fps(self.fps)

    def _report(self, error: Exception):
        self.last_error = error
        if self.on_error is not None:
            self.on_error(error)

    def dispose(self):
        self.stop()
        release = getattr(self.pipeline.source, 'release', None)
        if release is not None:
            release()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *args):
        self.dispose()
