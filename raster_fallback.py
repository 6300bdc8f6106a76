"""
Raster fallback for vector layers.

Layers flagged to print as an image are painted with Pillow on an offscreen
canvas covering the print extent, re-composited at the layer opacity and
embedded in the spec as a base64 PNG data URL.

The two canvases are module-level and reused between calls, so only one
raster encode may run at a time.
"""

import base64
import logging
import math
from io import BytesIO
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from PIL import Image, ImageDraw, ImageFont

from map_model import Circle, Feature, LayerState
from map_styles import CircleStyle, Icon, Style, StyleFunction, normalize_styles
from print_errors import InvalidColorError
from print_utils import Bounds, CoordinateTransformer, color_as_array

logger = logging.getLogger(__name__)

IMAGE_FORMAT = "image/png"

RGBA = Tuple[int, int, int, int]


def to_pil_color(color) -> Optional[RGBA]:
    """Convert a style color to an (r, g, b, a) tuple with 0-255 alpha.

    Returns None (and logs) for colors that cannot be parsed.
    """
    if color is None:
        return None
    try:
        r, g, b, a = color_as_array(color)
    except InvalidColorError as e:
        logger.warning("Not painting with %s", e)
        return None
    return (int(r), int(g), int(b), int(round(a * 255)))


class VectorContext:
    """Paints pixel-space geometries on a canvas with the current style."""

    def __init__(self, canvas: 'OffscreenCanvas'):
        self.canvas = canvas
        self.draw = ImageDraw.Draw(canvas.image, "RGBA")
        self.style: Optional[Style] = None

    def set_style(self, style: Style):
        self.style = style

    def draw_geometry(self, geometry):
        """Paint a geometry already transformed to pixel coordinates."""
        style = self.style
        if style is None or geometry is None or geometry.is_empty:
            return

        geom_type = geometry.geom_type
        if geom_type in ("Polygon", "MultiPolygon"):
            polygons = [geometry] if geom_type == "Polygon" else list(geometry.geoms)
            for polygon in polygons:
                self._draw_polygon(polygon, style)
        elif geom_type in ("LineString", "MultiLineString"):
            lines = [geometry] if geom_type == "LineString" else list(geometry.geoms)
            for line in lines:
                self._draw_line(list(line.coords), style.stroke)
        elif geom_type in ("Point", "MultiPoint"):
            points = [geometry] if geom_type == "Point" else list(geometry.geoms)
            for point in points:
                self._draw_point(point.x, point.y, style)
        elif geom_type == "GeometryCollection":
            for part in geometry.geoms:
                self.draw_geometry(part)
            return

        if style.text is not None and style.text.text:
            anchor = geometry.representative_point()
            self._draw_text(anchor.x, anchor.y, style.text)

    def _draw_polygon(self, polygon, style: Style):
        if polygon.is_empty:
            return
        fill = to_pil_color(style.fill.color) if style.fill is not None else None
        if fill is not None:
            # Holes are cut through a mask so the fill blends with what is below
            mask = Image.new("L", self.canvas.image.size, 0)
            mask_draw = ImageDraw.Draw(mask)
            mask_draw.polygon(list(polygon.exterior.coords), fill=255)
            for interior in polygon.interiors:
                mask_draw.polygon(list(interior.coords), fill=0)
            overlay = Image.new("RGBA", self.canvas.image.size, fill[:3] + (0,))
            overlay.putalpha(mask.point(lambda v: v * fill[3] // 255))
            self.canvas.image.alpha_composite(overlay)

        if style.stroke is not None:
            self._draw_line(list(polygon.exterior.coords), style.stroke)
            for interior in polygon.interiors:
                self._draw_line(list(interior.coords), style.stroke)

    def _draw_line(self, coords: List[Tuple[float, float]], stroke):
        if stroke is None or len(coords) < 2:
            return
        color = to_pil_color(stroke.color)
        if color is None:
            return
        width = max(1, int(round(stroke.width if stroke.width is not None else 1)))
        joint = "curve" if stroke.line_join == "round" else None
        self.draw.line(coords, fill=color, width=width, joint=joint)

    def _draw_point(self, x: float, y: float, style: Style):
        image = style.image
        if isinstance(image, CircleStyle):
            radius = image.radius * image.get_scale_factor()
            fill = to_pil_color(image.fill.color) if image.fill is not None else None
            outline = None
            width = 1
            if image.stroke is not None:
                outline = to_pil_color(image.stroke.color)
                if image.stroke.width is not None:
                    width = max(1, int(round(image.stroke.width)))
            self.draw.ellipse(
                [x - radius, y - radius, x + radius, y + radius],
                fill=fill, outline=outline, width=width,
            )
        elif isinstance(image, Icon) and image.image is not None:
            self._draw_icon(x, y, image)

    def _draw_icon(self, x: float, y: float, icon: Icon):
        graphic = icon.image.convert("RGBA")
        scale = icon.get_scale_factor()
        if icon.size is not None:
            size = (max(1, int(round(icon.size[0] * scale))), max(1, int(round(icon.size[1] * scale))))
            graphic = graphic.resize(size)
        if icon.opacity is not None and icon.opacity < 1:
            graphic.putalpha(graphic.getchannel("A").point(lambda a: int(round(a * icon.opacity))))
        anchor = icon.get_anchor()
        if anchor is None:
            anchor_x, anchor_y = graphic.width / 2, graphic.height / 2
        else:
            anchor_x, anchor_y = anchor[0] * scale, anchor[1] * scale
        layer = Image.new("RGBA", self.canvas.image.size, (0, 0, 0, 0))
        layer.paste(graphic, (int(round(x - anchor_x)), int(round(y - anchor_y))))
        self.canvas.image.alpha_composite(layer)

    def _draw_text(self, x: float, y: float, text):
        font = ImageFont.load_default()
        fill = to_pil_color(text.fill.color) if text.fill is not None else (0, 0, 0, 255)
        left, top, right, bottom = self.draw.textbbox((0, 0), text.text, font=font)
        position = (
            x + text.offset_x - (right - left) / 2,
            y + text.offset_y - (bottom - top) / 2,
        )
        kwargs: Dict[str, Any] = {}
        if text.stroke is not None and isinstance(font, ImageFont.FreeTypeFont):
            halo = to_pil_color(text.stroke.color)
            if halo is not None:
                kwargs["stroke_width"] = int(round(text.stroke.width or 1))
                kwargs["stroke_fill"] = halo
        self.draw.text(position, text.text, font=font, fill=fill, **kwargs)


class OffscreenCanvas:
    """Reusable RGBA canvas."""

    def __init__(self):
        self.image: Optional[Image.Image] = None

    @property
    def width(self) -> int:
        return self.image.width if self.image is not None else 0

    @property
    def height(self) -> int:
        return self.image.height if self.image is not None else 0

    def resize(self, width: int, height: int):
        """Resize and clear the canvas."""
        self.image = Image.new("RGBA", (max(1, width), max(1, height)), (0, 0, 0, 0))

    def get_context(self) -> Optional[VectorContext]:
        if self.image is None:
            return None
        return VectorContext(self)

    def to_data_url(self) -> str:
        buffer = BytesIO()
        self.image.save(buffer, format="PNG")
        encoded = base64.b64encode(buffer.getvalue()).decode("utf-8")
        return f"data:{IMAGE_FORMAT};base64,{encoded}"


scratch_canvas = OffscreenCanvas()
scratch_opacity_canvas = OffscreenCanvas()


def as_opacity(canvas: OffscreenCanvas, opacity: float) -> OffscreenCanvas:
    """Copy a canvas onto the opacity scratch canvas at the given opacity."""
    scratch_opacity_canvas.resize(canvas.width, canvas.height)
    layer = canvas.image.copy()
    layer.putalpha(layer.getchannel("A").point(lambda a: int(round(a * opacity))))
    scratch_opacity_canvas.image.alpha_composite(layer)
    return scratch_opacity_canvas


def create_coordinate_to_pixel_transform(
    print_extent: Sequence[float],
    resolution: float,
    size: Sequence[float]
) -> CoordinateTransformer:
    """Map coordinates to canvas pixels for an extent drawn at a resolution.

    The extent center lands on the canvas center; pixel Y grows downward.
    """
    center_x, center_y = Bounds.from_extent(print_extent).center
    return CoordinateTransformer.compose(
        size[0] / 2, size[1] / 2,
        1 / resolution, -1 / resolution,
        0,
        -center_x, -center_y,
    )


def draw_features_to_context(
    features: Iterable[Feature],
    style_function: Optional[StyleFunction],
    resolution: float,
    transform: CoordinateTransformer,
    context: VectorContext,
    additional_draw: Optional[Callable[[VectorContext, Any], None]] = None
):
    """Paint features with each of their styles, in order.

    Args:
        features: Features to paint
        style_function: Layer style function, nothing is painted without one
        resolution: Resolution passed to the style function
        transform: Map to pixel transform
        context: Drawing context of the target canvas
        additional_draw: Called with (context, pixel geometry) after a styled feature is painted
    """
    if style_function is None:
        return
    for feature in features:
        geometry = feature.geometry
        if geometry is None:
            continue
        if isinstance(geometry, Circle):
            geometry = geometry.to_polygon()
        geometry = transform.transform_geometry(geometry)

        styles = normalize_styles(style_function(feature, resolution))
        if not styles:
            continue
        for style in styles:
            context.set_style(style)
            context.draw_geometry(geometry)
        if additional_draw is not None:
            additional_draw(context, geometry)


def encode_as_image_layer(
    layer_state: LayerState,
    resolution: float,
    customizer,
    additional_draw: Optional[Callable[[VectorContext, Any], None]] = None
) -> Dict[str, Any]:
    """Rasterize a vector layer over the print extent.

    Returns:
        An 'image' layer fragment with the PNG embedded as a data URL. The
        fragment opacity is 1, the layer opacity is baked into the pixels.

    Raises:
        RuntimeError: If the offscreen canvas provides no drawing context
    """
    layer = layer_state.layer
    print_extent = customizer.print_extent
    bounds = Bounds.from_extent(print_extent)
    size = (bounds.width / resolution, bounds.height / resolution)

    scratch_canvas.resize(int(math.ceil(size[0])), int(math.ceil(size[1])))
    context = scratch_canvas.get_context()
    if context is None:
        raise RuntimeError("Offscreen canvas has no 2D drawing context")

    transform = create_coordinate_to_pixel_transform(print_extent, resolution, size)
    source = layer.get_source()
    features = source.get_features() if source is not None else []
    draw_features_to_context(
        features,
        layer.get_style_function(),
        resolution,
        transform,
        context,
        additional_draw,
    )

    image_layer = {
        "type": "image",
        "extent": list(print_extent),
        "imageFormat": IMAGE_FORMAT,
        "opacity": 1,
        "name": layer.name,
        "baseURL": as_opacity(scratch_canvas, layer_state.opacity).to_data_url(),
    }
    customizer.image_layer(layer_state, image_layer)
    return image_layer
