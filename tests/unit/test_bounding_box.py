"""Tests for BoundingBox model."""

import pytest
from pydantic import ValidationError

from contourgen.models.tile import MERCATOR_MAX_LAT, BoundingBox


class TestBoundingBoxConstruction:
    """Test BoundingBox creation and validation."""

    def test_valid_construction(self, sample_bbox):
        assert sample_bbox.min_lon == -10
        assert sample_bbox.max_lat == 10

    def test_rejects_latitude_beyond_mercator_limit(self):
        with pytest.raises(ValidationError):
            BoundingBox(min_lon=0, min_lat=0, max_lon=10, max_lat=86)

    def test_rejects_longitude_out_of_range(self):
        with pytest.raises(ValidationError):
            BoundingBox(min_lon=-181, min_lat=0, max_lon=10, max_lat=10)

    def test_rejects_nan(self):
        with pytest.raises(ValidationError):
            BoundingBox(min_lon=float("nan"), min_lat=0, max_lon=10, max_lat=10)

    def test_rejects_inverted_box(self):
        with pytest.raises(ValidationError):
            BoundingBox(min_lon=10, min_lat=0, max_lon=-10, max_lat=10)
        with pytest.raises(ValidationError):
            BoundingBox(min_lon=0, min_lat=20, max_lon=10, max_lat=10)

    def test_accepts_boundary_values(self):
        bbox = BoundingBox(
            min_lon=-180, min_lat=-MERCATOR_MAX_LAT, max_lon=180, max_lat=MERCATOR_MAX_LAT
        )
        assert bbox.max_lon == 180


class TestBoundingBoxConversion:
    """Test tuple and string conversion."""

    def test_tuple_round_trip(self):
        bounds = (-5.0, 40.0, 5.0, 45.0)
        assert BoundingBox.from_tuple(bounds).to_tuple() == bounds

    def test_bounds_string(self, sample_bbox):
        assert sample_bbox.to_bounds_string() == "-10.000000,-10.000000,10.000000,10.000000"
