"""
Style objects attached to vector features and layers.

A feature resolves to zero, one or many Style objects. Each Style is a
composite of optional fill, stroke, image (circle marker or icon) and text
sub-styles. Styles are plain dataclasses compared by identity, so the
print encoder can tell shared sub-style instances apart from equal copies.
"""

from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

Color = Union[str, Sequence[float]]
Scale = Union[float, Tuple[float, float]]

ICON_ANCHOR_FRACTION = "fraction"
ICON_ANCHOR_PIXELS = "pixels"


@dataclass(eq=False)
class Fill:
    """Fill of polygons, circle markers and text."""
    color: Optional[Color] = None


@dataclass(eq=False)
class Stroke:
    """Outline of lines, polygons, circle markers; halo of text.

    Attributes:
        color: Stroke color
        width: Stroke width in pixels
        line_dash: Dash pattern, e.g. [10, 5]
        line_cap: 'butt', 'round' or 'square'
        line_join: 'bevel', 'round' or 'miter'
    """
    color: Optional[Color] = None
    width: Optional[float] = None
    line_dash: Optional[List[float]] = None
    line_cap: Optional[str] = None
    line_join: Optional[str] = None


@dataclass(eq=False)
class ImageStyle:
    """Base class for point symbols."""
    opacity: float = 1
    rotation: float = 0           # radians, clockwise
    scale: Scale = 1

    def get_scale_factor(self) -> float:
        """Scale as a single number (mean of an (x, y) scale)."""
        scale = self.scale
        if isinstance(scale, (tuple, list)):
            return (scale[0] + scale[1]) / 2
        if scale is None:
            return 1
        return scale


@dataclass(eq=False)
class CircleStyle(ImageStyle):
    """Circle marker drawn at point geometries."""
    radius: float = 5
    fill: Optional[Fill] = None
    stroke: Optional[Stroke] = None


@dataclass(eq=False)
class Icon(ImageStyle):
    """External graphic drawn at point geometries.

    Attributes:
        src: Graphic URL
        size: Graphic size in pixels (width, height)
        anchor: Anchor position, in fraction of size or pixels
        anchor_origin: 'top-left', 'top-right', 'bottom-left' or 'bottom-right'
        anchor_x_units: 'fraction' or 'pixels'
        anchor_y_units: 'fraction' or 'pixels'
        image: Optional decoded PIL image, used when rasterizing
    """
    src: Optional[str] = None
    size: Optional[Tuple[float, float]] = None
    anchor: Tuple[float, float] = (0.5, 0.5)
    anchor_origin: str = "top-left"
    anchor_x_units: str = ICON_ANCHOR_FRACTION
    anchor_y_units: str = ICON_ANCHOR_FRACTION
    image: Any = None

    def has_default_anchor(self) -> bool:
        """True if the icon is anchored at its center."""
        return (
            tuple(self.anchor) == (0.5, 0.5) and
            self.anchor_origin == "top-left" and
            self.anchor_x_units == ICON_ANCHOR_FRACTION and
            self.anchor_y_units == ICON_ANCHOR_FRACTION
        )

    def get_anchor(self) -> Optional[Tuple[float, float]]:
        """Anchor in unscaled pixels from the top-left corner.

        Returns:
            (x, y) anchor, or None if the size is unknown and the anchor
            is expressed in fractions
        """
        x, y = self.anchor
        size = self.size
        if self.anchor_x_units == ICON_ANCHOR_FRACTION or self.anchor_y_units == ICON_ANCHOR_FRACTION:
            if size is None:
                return None
        if self.anchor_x_units == ICON_ANCHOR_FRACTION:
            x = x * size[0]
        if self.anchor_y_units == ICON_ANCHOR_FRACTION:
            y = y * size[1]

        if self.anchor_origin != "top-left":
            if size is None:
                return None
            if self.anchor_origin.endswith("right"):
                x = size[0] - x
            if self.anchor_origin.startswith("bottom"):
                y = size[1] - y
        return (x, y)


@dataclass(eq=False)
class Text:
    """Label drawn at the feature geometry.

    Attributes:
        text: Label content
        font: CSS font string, e.g. 'bold 12px sans-serif'
        offset_x: Horizontal offset in pixels
        offset_y: Vertical offset in pixels
        fill: Text color
        stroke: Halo
    """
    text: Optional[str] = None
    font: Optional[str] = None
    offset_x: float = 0
    offset_y: float = 0
    rotation: float = 0
    scale: Optional[float] = None
    fill: Optional[Fill] = None
    stroke: Optional[Stroke] = None


@dataclass(eq=False)
class Style:
    """Composite feature style.

    Attributes:
        fill: Polygon fill
        stroke: Line / polygon outline
        image: Point symbol (CircleStyle or Icon)
        text: Label
        geometry: Geometry to render instead of the feature geometry. Either a
            geometry, the name of a feature property holding one, or a
            callable taking the feature.
        z_index: Rendering order inside a layer
    """
    fill: Optional[Fill] = None
    stroke: Optional[Stroke] = None
    image: Optional[ImageStyle] = None
    text: Optional[Text] = None
    geometry: Any = None
    z_index: Optional[int] = None

    def get_geometry_for(self, feature) -> Any:
        """Resolve the override geometry for a feature (None if not set)."""
        geometry = self.geometry
        if geometry is None:
            return None
        if isinstance(geometry, str):
            return feature.get(geometry)
        if callable(geometry):
            return geometry(feature)
        return geometry


StyleLike = Union[Style, List[Style], None]
StyleFunction = Callable[[Any, float], StyleLike]


def to_style_function(style: Union[StyleLike, StyleFunction]) -> Optional[StyleFunction]:
    """Normalize a style, list of styles or style function to a style function."""
    if style is None:
        return None
    if callable(style) and not isinstance(style, Style):
        return style

    def style_function(feature, resolution):
        return style
    return style_function


def normalize_styles(style_data: StyleLike) -> List[Style]:
    """Turn a style function result into a list of styles, dropping empties."""
    if not style_data:
        return []
    if not isinstance(style_data, (list, tuple)):
        style_data = [style_data]
    return [style for style in style_data if style]
