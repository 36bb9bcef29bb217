"""
Error taxonomy for the tracker.

TickError subclasses abort the current tick and are reported, the next tick
still runs. StartupError ends the session. HomographyError never leaves the
pipeline.
"""


class TrackerError(Exception):
    """Base class for all tracker errors"""


class TickError(TrackerError):
    """Aborts the current tick; reported, next tick unaffected"""


class UnsupportedVariant(TickError, ValueError):
    def __init__(self, variant):
        self.variant = variant
        super().__init__(f"Unknown feature variant: {variant!r}. Use 'sift' or 'disk'")


class UnsupportedStrategy(TickError, ValueError):
    def __init__(self, strategy):
        self.strategy = strategy
        super().__init__(f"Unknown matching strategy: {strategy!r}. Use 'exact' or 'approximate'")


class FrameSourceError(TickError, RuntimeError):
    """The frame source did not deliver a frame"""


class StartupError(TrackerError, RuntimeError):
    """The frame source could not be acquired at initialization"""


class HomographyError(TrackerError):
    """Estimation failed on degenerate or insufficient correspondences"""
