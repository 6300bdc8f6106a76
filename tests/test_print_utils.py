"""
Tests for print_utils module.

Run with: pytest tests/test_print_utils.py -v
"""

import math
import pytest
from shapely.geometry import Point

import print_utils
from print_errors import InvalidColorError
from print_utils import (
    Bounds,
    CoordinateTransformer,
    DPI_PER_DISTANCE_UNIT,
    METERS_PER_DEGREE,
    circle_to_polygon,
    color_as_array,
    color_zero_padding,
    get_absolute_url,
    get_print_extent,
    meters_per_unit,
    rgb_array_to_hex,
)


class TestBounds:
    """Tests for Bounds."""

    def test_from_extent(self):
        """Extents are ordered (min_x, min_y, max_x, max_y)."""
        bounds = Bounds.from_extent([10, 20, 110, 70])
        assert (bounds.min_x, bounds.min_y, bounds.max_x, bounds.max_y) == (10, 20, 110, 70)
        assert bounds.as_list() == [10, 20, 110, 70]

    def test_size_and_center(self):
        """Width, height and center of a print extent."""
        bounds = Bounds.from_extent([-50, -25, 150, 75])
        assert bounds.width == 200
        assert bounds.height == 100
        assert bounds.center == (50, 25)

    def test_intersects(self):
        """Overlapping and touching extents intersect."""
        bounds = Bounds.from_extent([0, 0, 100, 100])
        assert bounds.intersects((50, 50, 150, 150)) is True
        assert bounds.intersects((100, 100, 200, 200)) is True
        assert bounds.intersects((101, 0, 200, 100)) is False
        assert bounds.intersects((-50, -50, -1, -1)) is False


class TestGetPrintExtent:
    """Tests for get_print_extent."""

    def test_one_meter_page_at_scale_1000(self):
        """A page of one meter per side covers 1000 m at 1:1000."""
        page = [DPI_PER_DISTANCE_UNIT, DPI_PER_DISTANCE_UNIT]
        extent = get_print_extent(page, [2000, 3000], 1000)
        assert extent == pytest.approx([1500, 2500, 2500, 3500])

    def test_a4_page(self):
        """Test width and height of an A4 sized map frame."""
        extent = get_print_extent([595, 842], [0, 0], 25000)
        assert extent[2] - extent[0] == pytest.approx(595 / 72 * 0.0254 * 25000)
        assert extent[3] - extent[1] == pytest.approx(842 / 72 * 0.0254 * 25000)
        assert extent[0] == pytest.approx(-extent[2])


class TestColorAsArray:
    """Tests for color_as_array."""

    def test_hex(self):
        """Test long and short hex colors."""
        assert color_as_array("#ff0000") == [255, 0, 0, 1]
        assert color_as_array("#0f0") == [0, 255, 0, 1]

    def test_hex_with_alpha(self):
        """Test 8 digit hex, alpha is scaled to 0-1."""
        assert color_as_array("#0000ff80") == [0, 0, 255, pytest.approx(0.502, abs=1e-3)]

    def test_rgba_function(self):
        """Test css rgba() with a 0-1 alpha."""
        assert color_as_array("rgba(255, 255, 0, 0.5)") == [255, 255, 0, 0.5]
        assert color_as_array("rgb(10, 20, 30)") == [10, 20, 30, 1.0]

    def test_named_color(self):
        """Test css color names."""
        assert color_as_array("white") == [255, 255, 255, 1]

    def test_sequences(self):
        """Test list input with and without alpha."""
        assert color_as_array([1, 2, 3]) == [1, 2, 3, 1]
        assert color_as_array([1, 2, 3, 0.4]) == [1, 2, 3, 0.4]
        assert color_as_array((1, 2, 3)) == [1, 2, 3, 1]

    def test_invalid(self):
        """Test unparsable colors."""
        with pytest.raises(InvalidColorError):
            color_as_array("not-a-color")
        with pytest.raises(InvalidColorError):
            color_as_array("rgba(1, 2, 3, 0.5")
        with pytest.raises(InvalidColorError):
            color_as_array([1, 2])
        with pytest.raises(InvalidColorError):
            color_as_array(5)


class TestRgbArrayToHex:
    """Tests for rgb_array_to_hex and color_zero_padding."""

    def test_zero_padding(self):
        """Test single digit hex values are padded."""
        assert color_zero_padding("f") == "0f"
        assert color_zero_padding("ff") == "ff"

    def test_conversion(self):
        """Test conversion ignores alpha."""
        assert rgb_array_to_hex([255, 0, 0]) == "#ff0000"
        assert rgb_array_to_hex([0, 15, 255, 0.5]) == "#000fff"
        assert rgb_array_to_hex([12.0, 1, 2]) == "#0c0102"

    @pytest.mark.parametrize("rgb", [
        [256, 0, 0],
        [-1, 0, 0],
        [1.5, 0, 0],
        [0, "a", 0],
        [True, 0, 0],
    ])
    def test_out_of_range(self, rgb):
        """Test components that are not integers in 0-255."""
        with pytest.raises(InvalidColorError):
            rgb_array_to_hex(rgb)

    def test_error_is_value_error(self):
        """InvalidColorError can be caught as a ValueError."""
        with pytest.raises(ValueError):
            rgb_array_to_hex([300, 0, 0])


class TestCoordinateTransformer:
    """Tests for the CoordinateTransformer class."""

    def test_identity(self):
        """Test default transformer is the identity."""
        transformer = CoordinateTransformer()
        assert transformer.to_pixel(12, 34) == (12, 34)

    def test_compose_translate_scale(self):
        """Test translate then scale then translate."""
        transformer = CoordinateTransformer.compose(100, 50, 2, -2, 0, -10, -20)
        # ((10 - 10) * 2 + 100, (30 - 20) * -2 + 50)
        assert transformer.to_pixel(10, 30) == pytest.approx((100, 30))

    def test_compose_rotation(self):
        """Test a quarter turn."""
        transformer = CoordinateTransformer.compose(0, 0, 1, 1, math.pi / 2, 0, 0)
        x, y = transformer.to_pixel(10, 0)
        assert x == pytest.approx(0, abs=1e-10)
        assert y == pytest.approx(10)

    def test_to_map_roundtrip(self):
        """Test pixel to map conversion (inverse)."""
        transformer = CoordinateTransformer.compose(400, 300, 0.5, -0.5, 0.3, -1000, -2000)
        px, py = transformer.to_pixel(1234, 2345)
        x, y = transformer.to_map(px, py)
        assert x == pytest.approx(1234)
        assert y == pytest.approx(2345)

    def test_transform_geometry(self):
        """Test shapely geometries are transformed with the same matrix."""
        transformer = CoordinateTransformer.compose(100, 50, 2, -2, 0, -10, -20)
        point = transformer.transform_geometry(Point(10, 30))
        assert (point.x, point.y) == pytest.approx((100, 30))


class TestCircleToPolygon:
    """Tests for circle_to_polygon."""

    def test_default_sides(self):
        """Test 64 sided approximation."""
        polygon = circle_to_polygon(0, 0, 100)
        # Shapely closes the ring, so one extra coordinate
        assert len(polygon.exterior.coords) == 65
        assert polygon.area == pytest.approx(math.pi * 100 ** 2, rel=0.01)

    def test_first_vertex_on_x_axis(self):
        """Test vertices start at angle 0."""
        polygon = circle_to_polygon(10, 20, 5, sides=4)
        assert polygon.exterior.coords[0] == pytest.approx((15, 20))

    def test_module_override(self, monkeypatch):
        """Test the side count can be overridden at module level."""
        monkeypatch.setattr(print_utils, "CIRCLE_TO_POLYGON_SIDES", 8)
        polygon = circle_to_polygon(0, 0, 1)
        assert len(polygon.exterior.coords) == 9


class TestMetersPerUnit:
    """Tests for meters_per_unit."""

    def test_metric(self):
        """Test projected metric CRS."""
        assert meters_per_unit("EPSG:3857") == 1.0

    def test_geographic(self):
        """Test geographic CRS use the spherical degree length."""
        assert meters_per_unit("EPSG:4326") == pytest.approx(METERS_PER_DEGREE)

    def test_feet(self):
        """Test US survey feet."""
        assert meters_per_unit("EPSG:2263") == pytest.approx(0.3048, rel=1e-4)

    def test_unknown(self):
        """Test unknown CRS codes default to meters."""
        assert meters_per_unit("NOT:A_CRS") == 1.0


class TestGetAbsoluteUrl:
    """Tests for get_absolute_url."""

    def test_absolute_url_unchanged(self):
        """Test absolute URLs keep template placeholders."""
        url = "https://tile.openstreetmap.org/{z}/{x}/{y}.png"
        assert get_absolute_url(url) == url

    def test_relative_url(self):
        """Test relative URLs are resolved against the base."""
        assert get_absolute_url("wmts/{TileMatrix}.png", "https://example.com/app/") == \
            "https://example.com/app/wmts/{TileMatrix}.png"
