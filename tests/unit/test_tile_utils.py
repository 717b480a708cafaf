"""Tests for tile math and quad-tree expansion."""

import pytest

from contourgen.errors import CoordinateError
from contourgen.models.tile import BoundingBox, Tile, TileRange
from contourgen.utils.tile_utils import (
    bbox_tiles,
    expand_pyramid,
    extract_zxy,
    lat_to_tile_y,
    lon_to_tile_x,
    pyramid_size,
    tile_range_for_bounds,
    world_tiles,
)

WORLD = BoundingBox(min_lon=-180, min_lat=-85.0511, max_lon=180, max_lat=85.0511)


class TestTile:
    """Test the Tile record."""

    def test_children_order(self):
        assert Tile(1, 0, 1).children() == (
            Tile(2, 0, 2),
            Tile(2, 1, 2),
            Tile(2, 0, 3),
            Tile(2, 1, 3),
        )

    def test_parent_and_ancestor(self):
        tile = Tile(5, 19, 12)
        assert tile.parent() == Tile(4, 9, 6)
        assert tile.ancestor(2) == Tile(2, 2, 1)
        assert tile.ancestor(5) == tile

    def test_rejects_index_outside_grid(self):
        with pytest.raises(CoordinateError):
            Tile(1, 2, 0)
        with pytest.raises(CoordinateError):
            Tile(-1, 0, 0)

    def test_root_has_no_parent(self):
        with pytest.raises(CoordinateError):
            Tile(0, 0, 0).parent()

    def test_tile_id(self):
        assert Tile(5, 3, 2).tile_id == "5/3/2"


class TestCoordinateConversion:
    """Test lon/lat to tile index conversion."""

    def test_lon_to_tile_x(self):
        assert lon_to_tile_x(-180, 3) == 0
        assert lon_to_tile_x(0, 3) == 4
        assert lon_to_tile_x(179.99, 3) == 7

    def test_lat_to_tile_y_grows_southwards(self):
        assert lat_to_tile_y(80, 4) < lat_to_tile_y(0, 4) < lat_to_tile_y(-80, 4)
        assert lat_to_tile_y(0.001, 1) == 0
        assert lat_to_tile_y(-0.001, 1) == 1

    @pytest.mark.parametrize("zoom", [0, 1, 3, 6])
    def test_whole_world_covers_grid(self, zoom):
        n = 2 ** zoom
        assert tile_range_for_bounds(WORLD, zoom) == TileRange(zoom, 0, 0, n - 1, n - 1)

    def test_range_around_equator(self, sample_bbox):
        assert tile_range_for_bounds(sample_bbox, 2) == TileRange(2, 1, 1, 2, 2)

    def test_range_is_never_inverted(self):
        for bounds in [(5, 45, 15, 55), (-120, -40, -100, -20), (170, -5, 180, 5)]:
            tile_range = tile_range_for_bounds(BoundingBox.from_tuple(bounds), 6)
            assert tile_range.min_x <= tile_range.max_x
            assert tile_range.min_y <= tile_range.max_y

    def test_point_box_yields_one_tile(self):
        point = BoundingBox(min_lon=13.4, min_lat=52.5, max_lon=13.4, max_lat=52.5)
        assert len(bbox_tiles(point, 10)) == 1

    def test_non_finite_coordinates_rejected(self):
        bbox = BoundingBox.model_construct(
            min_lon=float("nan"), min_lat=0.0, max_lon=10.0, max_lat=10.0
        )
        with pytest.raises(CoordinateError):
            tile_range_for_bounds(bbox, 3)

    def test_world_tiles_row_major(self):
        tiles = world_tiles(1)
        assert tiles == [Tile(1, 0, 0), Tile(1, 1, 0), Tile(1, 0, 1), Tile(1, 1, 1)]


class TestExpandPyramid:
    """Test quad-tree expansion."""

    def test_two_levels_below_root(self):
        root = Tile(1, 0, 0)
        tiles = expand_pyramid(root, 3)

        assert len(tiles) == 21
        assert tiles[0] == root
        assert len(set(tiles)) == 21
        assert all(t.ancestor(1) == root for t in tiles)

    def test_sorted_by_zoom_x_y(self):
        tiles = expand_pyramid(Tile(2, 1, 2), 4)
        assert tiles == sorted(tiles, key=lambda t: (t.z, t.x, t.y))

    def test_root_at_max_zoom(self):
        assert expand_pyramid(Tile(4, 3, 3), 4) == [Tile(4, 3, 3)]

    def test_leaves_are_at_max_zoom(self):
        tiles = expand_pyramid(Tile(0, 0, 0), 2)
        assert len(tiles) == 21
        leaves = [t for t in tiles if t.z == 2]
        assert sorted(leaves) == sorted(world_tiles(2))
        assert max(t.z for t in tiles) == 2

    def test_pyramid_size(self):
        assert pyramid_size(1, 3) == 21
        assert pyramid_size(4, 4) == 1
        assert pyramid_size(0, 2) == len(expand_pyramid(Tile(0, 0, 0), 2))


class TestExtractZxy:
    """Test parsing z/x/y out of URLs."""

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://tiles.example.com/dem/5/3/2.png", Tile(5, 3, 2)),
            ("/5/3/2", Tile(5, 3, 2)),
            ("pmtiles:///data/dem/12/2200/1343.webp", Tile(12, 2200, 1343)),
        ],
    )
    def test_valid_urls(self, url, expected):
        assert extract_zxy(url) == expected

    @pytest.mark.parametrize(
        "url",
        ["no-slashes", "5/3/2", "https://example.com/a/b/c.png", "/1/5/0"],
    )
    def test_invalid_urls(self, url):
        assert extract_zxy(url) is None
