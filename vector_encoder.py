"""
vector_encoder.py - Encode vector layers as GeoJSON plus print style rules

Each feature in the print extent is written once as GeoJSON and tagged with
the ids of the styles it resolves to. Styles are deduplicated by a deep
identity key, and each id (or comma-joined combination of ids for features
with several styles) maps to one rule of the layer's style table:

    {
        "version": 2,
        "[_print_style = '1']": {"symbolizers": [...]},
        "[_print_style = '1,2']": {"symbolizers": [...]},
    }
"""

import dataclasses
import logging
import math
from typing import Any, Dict, List, Optional, Tuple

from shapely.geometry import mapping
from shapely.geometry.base import BaseGeometry

from map_model import Circle, Feature, LayerState
from map_styles import CircleStyle, Fill, Icon, ImageStyle, Stroke, Style, Text, normalize_styles
from print_errors import InvalidColorError, PrintEncoderError, UnsupportedGeometryError
from print_utils import color_as_array, rgb_array_to_hex

logger = logging.getLogger(__name__)

FEATURE_STYLE_PROP = "_print_style"
STYLE_TABLE_VERSION = 2


class PrintStyleType:
    """Symbolizer categories understood by the print service."""
    LINE_STRING = "LineString"
    POINT = "Point"
    POLYGON = "Polygon"


# Multi* geometries share the category of their parts
PRINT_STYLE_TYPES = {
    "LineString": PrintStyleType.LINE_STRING,
    "Point": PrintStyleType.POINT,
    "Polygon": PrintStyleType.POLYGON,
    "MultiLineString": PrintStyleType.LINE_STRING,
    "MultiPoint": PrintStyleType.POINT,
    "MultiPolygon": PrintStyleType.POLYGON,
}

SCALAR_TYPES = (bool, int, float, str)


def get_print_style_type(geometry_type: str) -> str:
    """Map a geometry type to its symbolizer category.

    Raises:
        UnsupportedGeometryError: For types without a category (e.g. GeometryCollection)
    """
    try:
        return PRINT_STYLE_TYPES[geometry_type]
    except KeyError:
        raise UnsupportedGeometryError(geometry_type)


def style_key(style_ids) -> str:
    """Rule key selecting features tagged with the given style id(s)."""
    keys = ",".join(style_ids) if isinstance(style_ids, (list, tuple)) else style_ids
    return f"[{FEATURE_STYLE_PROP} = '{keys}']"


def feature_type_priority(geojson_feature: Dict[str, Any]) -> int:
    """Sort key placing points after every other geometry."""
    geometry = geojson_feature.get("geometry")
    if geometry and geometry.get("type") == "Point":
        return 1
    return 0


def _as_lists(value):
    """Recursively turn coordinate tuples into lists."""
    if isinstance(value, (list, tuple)):
        return [_as_lists(v) for v in value]
    return value


def geometry_to_geojson(geometry) -> Dict[str, Any]:
    """GeoJSON geometry object for a shapely geometry."""
    geojson = dict(mapping(geometry))
    if "coordinates" in geojson:
        geojson["coordinates"] = _as_lists(geojson["coordinates"])
    if "geometries" in geojson:
        geojson["geometries"] = [
            {**g, "coordinates": _as_lists(g["coordinates"])} for g in geojson["geometries"]
        ]
    return geojson


def write_feature_object(feature: Feature) -> Dict[str, Any]:
    """GeoJSON feature object; geometry valued properties are left out."""
    properties = {
        key: value for key, value in feature.properties.items()
        if not isinstance(value, (BaseGeometry, Circle))
    }
    geojson = {
        "type": "Feature",
        "geometry": geometry_to_geojson(feature.geometry) if feature.geometry is not None else None,
        "properties": properties,
    }
    if feature.id is not None:
        geojson["id"] = feature.id
    return geojson


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class VectorEncoder:
    """Encodes one vector layer.

    One instance is used per layer encode: the style identity cache lives on
    the instance and is never shared across layers or passes.
    """

    def __init__(self, layer_state: LayerState, customizer):
        self.layer_state = layer_state
        self.layer = layer_state.layer
        self.customizer = customizer
        self._deep_ids: Dict[str, int] = {}
        self._last_deep_id = 0
        # id(obj) -> (obj, uid); holding obj keeps its id from being reused
        self._object_uids: Dict[int, Tuple[Any, int]] = {}
        self._last_object_uid = 0

    def encode_vector_layer(self, resolution: float) -> Optional[Dict[str, Any]]:
        """Encode the layer's features in the print extent.

        Args:
            resolution: Print resolution passed to style functions

        Returns:
            A 'geojson' layer fragment, or None if nothing would be printed
        """
        source = self.layer.get_source()
        if source is None:
            return None

        features = source.get_features_in_extent(self.customizer.print_extent)
        geojson_features: List[Dict[str, Any]] = []
        style_table: Dict[str, Any] = {"version": STYLE_TABLE_VERSION}

        for feature in features:
            try:
                self.encode_feature(feature, resolution, geojson_features, style_table)
            except PrintEncoderError as e:
                logger.warning("Skipping feature %s of layer %s: %s", feature.id, self.layer.name, e)

        # A style table without rules is rejected by the print service
        if not geojson_features or len(style_table) <= 1:
            return None

        geojson_features.sort(key=feature_type_priority)

        return {
            "geoJson": {
                "type": "FeatureCollection",
                "features": geojson_features,
            },
            "opacity": self.layer_state.opacity,
            "style": style_table,
            "type": "geojson",
            "name": self.layer.name,
        }

    def encode_feature(
        self,
        feature: Feature,
        resolution: float,
        geojson_features: List[Dict[str, Any]],
        style_table: Dict[str, Any]
    ):
        """Append the GeoJSON for one feature and register its styles."""
        style_function = feature.get_style_function() or self.layer.get_style_function()
        if style_function is None:
            return
        styles = normalize_styles(style_function(feature, resolution))
        if not styles:
            return

        if isinstance(feature.geometry, Circle):
            feature = self._circle_as_polygon(feature)

        original_geojson = write_feature_object(feature)
        is_original_added = False

        for style in styles:
            geometry = style.get_geometry_for(feature)
            if geometry is not None:
                if isinstance(geometry, Circle):
                    geometry = geometry.to_polygon()
                styled_feature = feature.clone()
                styled_feature.geometry = geometry
                geojson_feature = write_feature_object(styled_feature)
                geojson_features.append(geojson_feature)
            else:
                geojson_feature = original_geojson
                geometry = feature.geometry
                if geometry is None:
                    continue
                if not self.customizer.geometry_filter(geometry):
                    continue
                if not is_original_added:
                    geojson_features.append(geojson_feature)
                    is_original_added = True

            self.add_vector_style(style_table, geojson_feature, geometry.geom_type, style)

    @staticmethod
    def _circle_as_polygon(feature: Feature) -> Feature:
        polygon_feature = feature.clone()
        polygon_feature.id = feature.id
        polygon_feature.geometry = feature.geometry.to_polygon()
        return polygon_feature

    # === Style identity ===

    def _get_object_uid(self, obj: Any) -> int:
        entry = self._object_uids.get(id(obj))
        if entry is None or entry[0] is not obj:
            self._last_object_uid += 1
            entry = (obj, self._last_object_uid)
            self._object_uids[id(obj)] = entry
        return entry[1]

    @staticmethod
    def _iter_fields(obj: Any):
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return [(f.name, getattr(obj, f.name)) for f in dataclasses.fields(obj)]
        if isinstance(obj, (list, tuple)):
            return list(enumerate(obj))
        if isinstance(obj, dict):
            return list(obj.items())
        return []

    def get_deep_style_uid(self, style: Style) -> str:
        """Identity of a style for deduplication within this encoder.

        The key concatenates every scalar field of the style graph and a
        per-instance token for each nested mutable object, so styles with the
        same scalars that share the same sub-style instances get the same id.
        Tuples are treated as values.
        """
        todo = [(style, False)]
        key = ""
        while todo:
            obj, tokenize = todo.pop()
            if tokenize:
                key += f"_k{self._get_object_uid(obj)}"
            for name, value in self._iter_fields(obj):
                if value is None:
                    continue
                if isinstance(value, SCALAR_TYPES):
                    key += f"_{name}:{value}"
                else:
                    todo.append((value, not isinstance(value, tuple)))

        if key not in self._deep_ids:
            self._last_deep_id += 1
            self._deep_ids[key] = self._last_deep_id
        return str(self._deep_ids[key])

    # === Style rules ===

    def add_vector_style(
        self,
        style_table: Dict[str, Any],
        geojson_feature: Dict[str, Any],
        geometry_type: str,
        style: Style
    ):
        """Register the rule for a style and tag the feature with its id.

        A feature that already carries style ids gets a combined rule whose
        symbolizers are those of its previous rule followed by this style's.
        """
        style_id = self.get_deep_style_uid(style)
        key = style_key(style_id)
        if key in style_table:
            has_symbolizer = True
        else:
            style_object = self.encode_vector_style(geometry_type, style)
            has_symbolizer = bool(style_object["symbolizers"])
            if has_symbolizer:
                style_table[key] = style_object

        if not has_symbolizer:
            return

        if geojson_feature.get("properties") is None:
            geojson_feature["properties"] = {}
        self.customizer.feature(self.layer_state, geojson_feature)

        existing_style_ids = geojson_feature["properties"].get(FEATURE_STYLE_PROP)
        if existing_style_ids:
            style_ids = existing_style_ids.split(",") + [style_id]
            style_table[style_key(style_ids)] = {
                "symbolizers": [
                    *style_table[style_key(existing_style_ids)]["symbolizers"],
                    *style_table[key]["symbolizers"],
                ]
            }
            geojson_feature["properties"][FEATURE_STYLE_PROP] = ",".join(style_ids)
        else:
            geojson_feature["properties"][FEATURE_STYLE_PROP] = style_id

    def encode_vector_style(self, geometry_type: str, style: Style) -> Dict[str, List[Dict[str, Any]]]:
        """Build the symbolizers of a style for one geometry type.

        Unsupported geometry types give an empty symbolizer list. A bad
        colour drops only the symbolizer it belongs to.
        """
        symbolizers: List[Dict[str, Any]] = []
        try:
            style_type = get_print_style_type(geometry_type)
        except UnsupportedGeometryError as e:
            logger.debug("%s", e)
            return {"symbolizers": symbolizers}

        if style_type == PrintStyleType.POLYGON:
            if style.fill is not None:
                self._encode_symbolizer(self.encode_vector_style_polygon, symbolizers, style.fill, style.stroke)
        elif style_type == PrintStyleType.LINE_STRING:
            if style.stroke is not None:
                self._encode_symbolizer(self.encode_vector_style_line, symbolizers, style.stroke)
        elif style_type == PrintStyleType.POINT:
            if style.image is not None:
                self._encode_symbolizer(self.encode_vector_style_point, symbolizers, style.image)

        if style.text is not None:
            self._encode_symbolizer(self.encode_vector_style_text, symbolizers, style.text)

        return {"symbolizers": symbolizers}

    def _encode_symbolizer(self, encode, symbolizers: List[Dict[str, Any]], *args):
        try:
            encode(symbolizers, *args)
        except InvalidColorError as e:
            logger.warning("Dropping symbolizer of layer %s: %s", self.layer.name, e)

    # === Symbolizers ===

    def encode_vector_style_fill(self, symbolizer: Dict[str, Any], fill: Fill):
        if fill.color is not None:
            rgba = color_as_array(fill.color)
            symbolizer["fillColor"] = rgb_array_to_hex(rgba)
            symbolizer["fillOpacity"] = rgba[3]

    def encode_vector_style_stroke(self, symbolizer: Dict[str, Any], stroke: Stroke):
        if stroke.color is not None:
            rgba = color_as_array(stroke.color)
            symbolizer["strokeColor"] = rgb_array_to_hex(rgba)
            symbolizer["strokeOpacity"] = rgba[3]
        if stroke.line_dash is not None:
            symbolizer["strokeDashstyle"] = " ".join(_format_number(d) for d in stroke.line_dash)
        if stroke.width is not None:
            symbolizer["strokeWidth"] = stroke.width
        if stroke.line_cap:
            symbolizer["strokeLinecap"] = stroke.line_cap
        if stroke.line_join:
            symbolizer["strokeLinejoin"] = stroke.line_join

    def encode_vector_style_polygon(self, symbolizers: List[Dict[str, Any]], fill: Fill,
                                    stroke: Optional[Stroke]):
        symbolizer = {"type": "polygon"}
        self.encode_vector_style_fill(symbolizer, fill)
        if stroke is not None:
            self.encode_vector_style_stroke(symbolizer, stroke)
        symbolizers.append(symbolizer)

    def encode_vector_style_line(self, symbolizers: List[Dict[str, Any]], stroke: Stroke):
        symbolizer = {"type": "line"}
        self.encode_vector_style_stroke(symbolizer, stroke)
        self.customizer.line(self.layer_state, symbolizer, stroke)
        symbolizers.append(symbolizer)

    def encode_vector_style_point(self, symbolizers: List[Dict[str, Any]], image: ImageStyle):
        symbolizer = None
        if isinstance(image, CircleStyle):
            symbolizer = {
                "type": "point",
                "pointRadius": image.radius * image.get_scale_factor(),
            }
            if image.fill is not None:
                self.encode_vector_style_fill(symbolizer, image.fill)
            if image.stroke is not None:
                self.encode_vector_style_stroke(symbolizer, image.stroke)
        elif isinstance(image, Icon) and image.src is not None:
            symbolizer = {
                "type": "point",
                "externalGraphic": image.src,
            }
            if image.opacity is not None:
                symbolizer["graphicOpacity"] = image.opacity
            if image.size is not None:
                scale = image.get_scale_factor()
                if scale is None or math.isnan(scale):
                    scale = 1
                width = image.size[0] * scale
                height = image.size[1] * scale
                # The print service reads graphicWidth as the graphic height
                symbolizer["graphicWidth"] = height
                self.add_graphic_offset(symbolizer, image, width, height, scale)
            rotation = image.rotation
            if rotation is None or math.isnan(rotation):
                rotation = 0
            symbolizer["rotation"] = math.degrees(rotation)

        if symbolizer is not None:
            self.customizer.point(self.layer_state, symbolizer, image)
            symbolizers.append(symbolizer)

    @staticmethod
    def add_graphic_offset(symbolizer: Dict[str, Any], icon: Icon, width: float,
                           height: float, scale: float = 1):
        """Shift the graphic so that its anchor, not its center, sits on the point."""
        if icon.has_default_anchor():
            return
        anchor = icon.get_anchor()
        if anchor is None:
            return
        symbolizer["graphicXOffset"] = width / 2 - anchor[0] * scale
        symbolizer["graphicYOffset"] = height / 2 - anchor[1] * scale

    def encode_vector_style_text(self, symbolizers: List[Dict[str, Any]], text: Text):
        label = text.text
        if not label:
            return
        symbolizer = {
            "type": "text",
            "label": label,
            "fontFamily": text.font if text.font else "sans-serif",
            "labelXOffset": text.offset_x,
            "labelYOffset": text.offset_y,
            "labelAlign": "cm",
        }
        if text.fill is not None:
            self.encode_vector_style_fill(symbolizer, text.fill)
            if "fillColor" in symbolizer:
                symbolizer["fontColor"] = symbolizer["fillColor"]
        if text.stroke is not None:
            if text.stroke.color:
                rgba = color_as_array(text.stroke.color)
                symbolizer["haloColor"] = rgb_array_to_hex(rgba)
                symbolizer["haloOpacity"] = rgba[3]
            if text.stroke.width is not None:
                symbolizer["haloRadius"] = text.stroke.width
        self.customizer.text(self.layer_state, symbolizer, text)
        symbolizers.append(symbolizer)
