"""Exceptions raised while planning and generating tile pyramids."""


class CoordinateError(ValueError):
    """Coordinates outside the tiling scheme or the Mercator range."""


class GenerationError(RuntimeError):
    """A tile could not be generated."""


class DemFetchError(GenerationError):
    """The DEM tile backing a contour tile could not be fetched or decoded."""


class TileCancelledError(GenerationError):
    """Tile generation was cancelled before it finished."""


class WorkerError(GenerationError):
    """A worker process exited with a non-zero status."""
