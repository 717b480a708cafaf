"""Shared test fixtures."""

import logging
import threading
from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from contourgen.errors import GenerationError
from contourgen.models.contour import ContourOptions, FixedIncrement
from contourgen.models.job import GenerationSettings
from contourgen.models.tile import BoundingBox


class RecordingTileService:
    """Tile service that records requested tiles and returns fake bytes."""

    def __init__(self, fail_on=()):
        self.calls = []
        self.fail_on = set(fail_on)
        self._lock = threading.Lock()

    def fetch_tile(self, tile, cancel_event=None):
        with self._lock:
            self.calls.append(tile)
        if tile in self.fail_on:
            raise GenerationError(f"boom {tile.tile_id}")
        return f"tile {tile.tile_id}".encode()


def _encode_mapbox_png(elevation) -> bytes:
    """Encode an elevation grid as a Mapbox Terrain-RGB PNG."""
    value = np.round((np.asarray(elevation, dtype=np.float64) + 10000) * 10).astype(np.int64)
    rgb = np.stack([(value >> 16) & 255, (value >> 8) & 255, value & 255], axis=-1).astype(np.uint8)
    buf = BytesIO()
    Image.fromarray(rgb).save(buf, format="PNG")
    return buf.getvalue()


def _encode_terrarium_png(elevation) -> bytes:
    """Encode an elevation grid as a Terrarium PNG."""
    value = np.asarray(elevation, dtype=np.float64) + 32768
    whole = np.floor(value)
    rgb = np.stack(
        [whole // 256, whole % 256, np.floor((value - whole) * 256)],
        axis=-1,
    ).astype(np.uint8)
    buf = BytesIO()
    Image.fromarray(rgb).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo handlers installed by CLI commands so caplog keeps working."""
    yield
    package_logger = logging.getLogger("contourgen")
    package_logger.handlers.clear()
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def sample_bbox():
    """Box straddling the equator and the prime meridian."""
    return BoundingBox(min_lon=-10, min_lat=-10, max_lon=10, max_lat=10)


@pytest.fixture
def settings(tmp_path):
    """Generation settings writing into a temporary directory."""
    return GenerationSettings(
        dem_url="https://dem.example.com/{z}/{x}/{y}.png",
        output_max_zoom=3,
        output_dir=tmp_path / "output",
        batch_size=4,
        contour=ContourOptions(levels=FixedIncrement(value=100)),
    )


@pytest.fixture
def tile_service():
    return RecordingTileService()


@pytest.fixture
def make_tile_service():
    """Factory for recording tile services that fail on chosen tiles."""
    return RecordingTileService


@pytest.fixture
def mapbox_png():
    """Encoder turning an elevation grid into Terrain-RGB PNG bytes."""
    return _encode_mapbox_png


@pytest.fixture
def terrarium_png():
    """Encoder turning an elevation grid into Terrarium PNG bytes."""
    return _encode_terrarium_png


@pytest.fixture
def gradient_grid():
    """256x256 elevations rising west to east from 50 m to 950 m."""
    return np.tile(np.linspace(50, 950, 256, dtype=np.float32), (256, 1))
