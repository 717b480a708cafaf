"""DEM tile fetching, decoding and caching.

DEM tiles come either from an HTTP URL template (``https://host/{z}/{x}/{y}.png``)
or from a local PMTiles archive (``pmtiles:///data/dem.pmtiles``). Tiles are
decoded from RGB-encoded PNG/WebP into float elevation grids.
"""

import logging
import re
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from concurrent.futures import Future
from io import BytesIO
from pathlib import Path
from typing import BinaryIO, Optional

import httpx
import numpy as np
from PIL import Image, UnidentifiedImageError
from pmtiles.reader import MmapSource, Reader

from ..errors import DemFetchError, TileCancelledError
from ..models.contour import Encoding
from ..models.tile import Tile
from ..utils.tile_utils import extract_zxy

logger = logging.getLogger(__name__)

PMTILES_PATTERN = re.compile(r"^pmtiles://", re.IGNORECASE)

# URL template used to address tiles inside an archive
ARCHIVE_URL_PATTERN = "/{z}/{x}/{y}"


def is_pmtiles_url(dem_url: str) -> bool:
    """Whether ``dem_url`` points at a PMTiles archive."""
    return bool(PMTILES_PATTERN.match(dem_url))


def format_tile_url(pattern: str, tile: Tile) -> str:
    """Fill the {z}/{x}/{y} placeholders of a URL template."""
    return (
        pattern.replace("{z}", str(tile.z))
        .replace("{x}", str(tile.x))
        .replace("{y}", str(tile.y))
    )


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise TileCancelledError("Image processing was aborted.")


def decode_dem(
    data: bytes,
    encoding: Encoding,
    cancel_event: Optional[threading.Event] = None,
) -> np.ndarray:
    """
    Decode an RGB-encoded elevation tile.

    Args:
        data: Compressed image bytes (PNG, WebP, ...)
        encoding: Elevation encoding of the RGB channels
        cancel_event: Checked between steps; decoding stops once it is set

    Returns:
        2D float32 array of elevations in meters
    """
    _check_cancelled(cancel_event)
    try:
        with Image.open(BytesIO(data)) as img:
            rgba = np.asarray(img.convert("RGBA"), dtype=np.float32)
    except (UnidentifiedImageError, OSError) as e:
        raise DemFetchError(f"Could not decode DEM image: {e}") from e
    _check_cancelled(cancel_event)

    r, g, b = rgba[:, :, 0], rgba[:, :, 1], rgba[:, :, 2]
    if Encoding(encoding) == Encoding.MAPBOX:
        elevation = -10000.0 + (r * 256.0 * 256.0 + g * 256.0 + b) * 0.1
    else:
        elevation = r * 256.0 + g + b / 256.0 - 32768.0

    _check_cancelled(cancel_event)
    return elevation.astype(np.float32)


class TileSource(ABC):
    """Raw DEM tile bytes addressed by URL."""

    @abstractmethod
    def get_tile(self, url: str) -> bytes:
        """Return the compressed tile at ``url``."""

    def close(self) -> None:
        pass


class HttpTileSource(TileSource):
    """Fetches DEM tiles over HTTP."""

    def __init__(self, timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def get_tile(self, url: str) -> bytes:
        try:
            response = self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise DemFetchError(f"Failed to fetch {url}: {e}") from e
        return response.content

    def close(self) -> None:
        self._client.close()


class PMTilesSource(TileSource):
    """Reads DEM tiles out of a local PMTiles archive.

    The archive is opened once and only read afterwards, so one instance can
    be shared by every worker thread of a run.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._file: BinaryIO = open(self.path, "rb")
        self._reader = Reader(MmapSource(self._file))
        logger.debug("Opened PMTiles archive %s", self.path)

    def read_tile(self, tile: Tile) -> Optional[bytes]:
        """Return the tile bytes, or None if the archive has no such tile."""
        return self._reader.get(tile.z, tile.x, tile.y)

    def get_tile(self, url: str) -> bytes:
        tile = extract_zxy(url)
        if tile is None:
            raise DemFetchError(f"Could not extract zxy from {url}")

        data = self.read_tile(tile)
        if not data:
            raise DemFetchError(f"No tile returned for {url}")
        return data

    def close(self) -> None:
        self._file.close()


def open_tile_source(dem_url: str, timeout: float = 10.0) -> TileSource:
    """Open the tile source matching ``dem_url``."""
    if is_pmtiles_url(dem_url):
        return PMTilesSource(Path(PMTILES_PATTERN.sub("", dem_url)))
    return HttpTileSource(timeout=timeout)


class DemService:
    """Serves decoded DEM tiles with an in-memory LRU cache."""

    def __init__(
        self,
        dem_url: str,
        encoding: Encoding = Encoding.MAPBOX,
        max_zoom: int = 8,
        cache_size: int = 100,
        timeout: float = 10.0,
        source: Optional[TileSource] = None,
    ):
        """
        Initialize DEM service.

        Args:
            dem_url: URL template with {z}/{x}/{y} or a pmtiles:// path
            encoding: Elevation encoding of the source tiles
            max_zoom: Deepest zoom available from the source
            cache_size: Number of decoded tiles to keep
            timeout: HTTP timeout in seconds
            source: Pre-opened tile source (opened from dem_url if omitted)
        """
        self.dem_url = dem_url
        self.encoding = Encoding(encoding)
        self.max_zoom = max_zoom
        self.cache_size = cache_size
        self.url_pattern = ARCHIVE_URL_PATTERN if is_pmtiles_url(dem_url) else dem_url
        self._source = source or open_tile_source(dem_url, timeout=timeout)
        self._cache: OrderedDict[Tile, np.ndarray] = OrderedDict()
        self._lock = threading.Lock()
        self._pending: dict[Tile, Future] = {}

    def get_elevation(
        self,
        tile: Tile,
        cancel_event: Optional[threading.Event] = None,
    ) -> np.ndarray:
        """
        Get the decoded elevation grid of a source tile.

        Concurrent requests for a tile that is not cached yet share a single
        fetch; a request whose fetch was cancelled by another caller retries.

        Args:
            tile: Tile at or below the source max zoom
            cancel_event: Cancellation flag for this request

        Returns:
            2D elevation array
        """
        while True:
            with self._lock:
                cached = self._cache.get(tile)
                if cached is not None:
                    self._cache.move_to_end(tile)
                    return cached
                pending = self._pending.get(tile)
                owner = pending is None
                if owner:
                    pending = Future()
                    self._pending[tile] = pending

            if owner:
                return self._fetch(tile, pending, cancel_event)

            try:
                return pending.result()
            except TileCancelledError:
                _check_cancelled(cancel_event)

    def _fetch(self, tile: Tile, pending: Future, cancel_event: Optional[threading.Event]) -> np.ndarray:
        try:
            _check_cancelled(cancel_event)
            url = format_tile_url(self.url_pattern, tile)
            logger.debug("Fetching DEM tile %s", url)
            data = self._source.get_tile(url)
            elevation = decode_dem(data, self.encoding, cancel_event)
        except Exception as e:
            with self._lock:
                self._pending.pop(tile, None)
            pending.set_exception(e)
            raise

        with self._lock:
            self._pending.pop(tile, None)
            self._cache[tile] = elevation
            self._cache.move_to_end(tile)
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)

        pending.set_result(elevation)
        return elevation

    def close(self):
        """Close the underlying tile source."""
        self._source.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
