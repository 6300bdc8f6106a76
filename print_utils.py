"""
Utility classes and functions for print spec encoding.

This module provides the reusable pieces the encoders share: extent
handling, print-extent computation, colour normalisation, affine
coordinate-to-pixel transforms and circle approximation.
"""

import math
from dataclasses import dataclass
from typing import Tuple, List, Optional, Sequence, Union
from urllib.parse import urljoin, quote, unquote

import numpy as np
from PIL import ImageColor
from pyproj import CRS
from pyproj.exceptions import CRSError
from shapely.affinity import affine_transform
from shapely.geometry import Polygon

from print_errors import InvalidColorError

# === Constants ===

# "Standardized rendering pixel size" of 0.28 mm, see the OGC WMTS standard
WMTS_PIXEL_SIZE = 0.28e-3
DOTS_PER_INCH = 72
METERS_PER_INCH = 0.0254             # international yard definition
DPI_PER_DISTANCE_UNIT = DOTS_PER_INCH / METERS_PER_INCH

# Circles have no print representation, they are sent as N-sided polygons
CIRCLE_TO_POLYGON_SIDES = 64

DEFAULT_PROJECTION = "EPSG:3857"

# Meters per degree on the sphere used by web mapping clients
METERS_PER_DEGREE = 2 * math.pi * 6370997 / 360

Color = Union[str, Sequence[float]]


@dataclass
class Bounds:
    """A print or source extent in map units.

    Extents travel through the encoders as [min_x, min_y, max_x, max_y]
    lists; Bounds gives them names.
    """
    min_x: float
    max_x: float
    min_y: float
    max_y: float

    @classmethod
    def from_extent(cls, extent: Sequence[float]) -> 'Bounds':
        min_x, min_y, max_x, max_y = extent
        return cls(min_x=min_x, max_x=max_x, min_y=min_y, max_y=max_y)

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.min_x + self.max_x) / 2, (self.min_y + self.max_y) / 2)

    def intersects(self, other: Sequence[float]) -> bool:
        """True if the other extent overlaps or touches this one."""
        min_x, min_y, max_x, max_y = other
        return (min_x <= self.max_x and max_x >= self.min_x and
                min_y <= self.max_y and max_y >= self.min_y)

    def as_list(self) -> List[float]:
        return [self.min_x, self.min_y, self.max_x, self.max_y]


def get_print_extent(
    map_page_size: Sequence[float],
    center: Sequence[float],
    scale: float
) -> List[float]:
    """Calculate the extent that fits a page at the given scale.

    Args:
        map_page_size: Page size of the map frame in points (width, height)
        center: Map coordinate of the extent center
        scale: Scale denominator used for the print

    Returns:
        Extent as [min_x, min_y, max_x, max_y] in meters
    """
    half_width, half_height = (
        (side / DPI_PER_DISTANCE_UNIT) * scale / 2 for side in map_page_size
    )
    return [
        center[0] - half_width,
        center[1] - half_height,
        center[0] + half_width,
        center[1] + half_height,
    ]


# === Colors ===

def _parse_rgba_function(color: str) -> Optional[List[float]]:
    """Parse css 'rgb(r, g, b)' / 'rgba(r, g, b, a)' with a 0-1 alpha."""
    lowered = color.strip().lower()
    if not (lowered.startswith("rgb(") or lowered.startswith("rgba(")):
        return None
    if not lowered.endswith(")"):
        raise InvalidColorError(color)
    inner = lowered[lowered.index("(") + 1:lowered.rindex(")")]
    parts = [p.strip() for p in inner.replace("/", ",").split(",") if p.strip()]
    if len(parts) not in (3, 4):
        raise InvalidColorError(color)
    try:
        rgb = [float(p) for p in parts[:3]]
        alpha = float(parts[3]) if len(parts) == 4 else 1.0
    except ValueError:
        raise InvalidColorError(color)
    rgb = [int(c) if c.is_integer() else c for c in rgb]
    return rgb + [alpha]


def color_as_array(color: Color) -> List[float]:
    """Normalize a color to an [r, g, b, a] list.

    Accepts css strings (hex, rgb()/rgba(), named colors) and 3 or 4 element
    sequences. Alpha is returned in the 0-1 range and defaults to 1.

    Raises:
        InvalidColorError: If the color cannot be parsed
    """
    if isinstance(color, str):
        parsed = _parse_rgba_function(color)
        if parsed is not None:
            return parsed
        try:
            values = ImageColor.getrgb(color)
        except ValueError:
            raise InvalidColorError(color)
        if len(values) == 4:
            return [values[0], values[1], values[2], round(values[3] / 255, 3)]
        return [values[0], values[1], values[2], 1]

    try:
        components = list(color)
    except TypeError:
        raise InvalidColorError(color)
    if len(components) == 3:
        return components + [1]
    if len(components) == 4:
        return components
    raise InvalidColorError(color)


def color_zero_padding(hex_value: str) -> str:
    """Prepend a zero to single digit hex values."""
    return f"0{hex_value}" if len(hex_value) == 1 else hex_value


def _is_byte(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    if isinstance(value, float) and not value.is_integer():
        return False
    return 0 <= value <= 255


def rgb_array_to_hex(rgb: Sequence[float]) -> str:
    """Convert an [r, g, b(, a)] color to '#rrggbb'.

    The alpha component is ignored, opacity is carried separately.

    Raises:
        InvalidColorError: If a component is not an integer in 0-255
    """
    r, g, b = rgb[0], rgb[1], rgb[2]
    if not (_is_byte(r) and _is_byte(g) and _is_byte(b)):
        raise InvalidColorError(f"({r},{g},{b})")
    hex_r = color_zero_padding(format(int(r), "x"))
    hex_g = color_zero_padding(format(int(g), "x"))
    hex_b = color_zero_padding(format(int(b), "x"))
    return f"#{hex_r}{hex_g}{hex_b}"


# === Transforms ===

class CoordinateTransformer:
    """Affine transform from map coordinates to canvas pixel coordinates.

    Stored as a 3x3 homogeneous matrix. Pixel Y grows downward, so
    map-to-pixel transforms carry a negative Y scale.
    """

    def __init__(self, matrix: Optional[np.ndarray] = None):
        self.matrix = np.identity(3) if matrix is None else np.asarray(matrix, dtype=float)

    @classmethod
    def compose(
        cls,
        dx1: float,
        dy1: float,
        sx: float,
        sy: float,
        angle: float,
        dx2: float,
        dy2: float
    ) -> 'CoordinateTransformer':
        """Compose translate(dx1, dy1) * scale(sx, sy) * rotate(angle) * translate(dx2, dy2).

        The (dx2, dy2) translation is applied first, angle is in radians.
        """
        sin = math.sin(angle)
        cos = math.cos(angle)
        translate_after = np.array([[1, 0, dx1], [0, 1, dy1], [0, 0, 1]], dtype=float)
        scale = np.array([[sx, 0, 0], [0, sy, 0], [0, 0, 1]], dtype=float)
        rotate = np.array([[cos, -sin, 0], [sin, cos, 0], [0, 0, 1]], dtype=float)
        translate_before = np.array([[1, 0, dx2], [0, 1, dy2], [0, 0, 1]], dtype=float)
        return cls(translate_after @ scale @ rotate @ translate_before)

    def to_pixel(self, x: float, y: float) -> Tuple[float, float]:
        px, py, _ = self.matrix @ np.array([x, y, 1.0])
        return (float(px), float(py))

    def to_map(self, px: float, py: float) -> Tuple[float, float]:
        x, y, _ = np.linalg.inv(self.matrix) @ np.array([px, py, 1.0])
        return (float(x), float(y))

    def affine_params(self) -> List[float]:
        """The [a, b, d, e, xoff, yoff] list taken by shapely.affinity.affine_transform."""
        m = self.matrix
        return [m[0, 0], m[0, 1], m[1, 0], m[1, 1], m[0, 2], m[1, 2]]

    def transform_geometry(self, geometry):
        return affine_transform(geometry, self.affine_params())


# === Geometry ===

def circle_to_polygon(
    center_x: float,
    center_y: float,
    radius: float,
    sides: Optional[int] = None
) -> Polygon:
    """Approximate a circle by a regular polygon.

    Args:
        center_x: Circle center X in map coordinates
        center_y: Circle center Y in map coordinates
        radius: Circle radius in map units
        sides: Number of polygon sides (defaults to CIRCLE_TO_POLYGON_SIDES)

    Returns:
        Closed shapely Polygon with `sides` vertices
    """
    sides = sides or CIRCLE_TO_POLYGON_SIDES
    points = []
    for i in range(sides):
        angle = 2 * math.pi * i / sides
        points.append((
            center_x + radius * math.cos(angle),
            center_y + radius * math.sin(angle),
        ))
    return Polygon(points)


def meters_per_unit(projection: str) -> float:
    """Meters per map unit of a CRS.

    Geographic CRSs use the spherical degree length so that scale
    denominators match what web map clients compute.

    Args:
        projection: CRS code such as "EPSG:3857"

    Returns:
        Meters per unit, 1 for unknown CRS codes
    """
    try:
        crs = CRS.from_user_input(projection)
    except CRSError:
        return 1.0
    if crs.is_geographic:
        return METERS_PER_DEGREE
    axis_info = crs.axis_info
    if axis_info and axis_info[0].unit_conversion_factor:
        return axis_info[0].unit_conversion_factor
    return 1.0


def get_absolute_url(url: str, base_url: Optional[str] = None) -> str:
    """Resolve a possibly relative URL against a base URL.

    Unsafe characters are percent-encoded the way browsers do when
    resolving an anchor href, while template placeholders like {z} are kept.
    """
    encoded = quote(url, safe=":/?#[]@!$&'()*+,;=%{}")
    if base_url:
        encoded = urljoin(base_url, encoded)
    return unquote(encoded)
