"""
Read-only map model consumed by the print encoder.

The encoder only reads from these objects: view center, resolution and
rotation, the layer tree with per-layer visibility, opacity, z-index and
resolution range, and each layer's source. Sources are a closed set of
kinds; the print encoder dispatches on SourceKind, never on class.
"""

import copy
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from shapely.geometry.base import BaseGeometry

from map_styles import StyleFunction, StyleLike, to_style_function
from print_utils import Bounds, DEFAULT_PROJECTION, circle_to_polygon

OSM_URL = "https://tile.openstreetmap.org/{z}/{x}/{y}.png"


class SourceKind(Enum):
    """Capability of a layer source, used to pick the layer encoder."""
    BASE_RASTER = "base_raster"            # XYZ / OSM tiles
    TILED_MATRIX_SET = "tiled_matrix_set"  # WMTS
    DYNAMIC_IMAGE = "dynamic_image"        # tiled or single image WMS
    VECTOR_FEATURES = "vector_features"
    VECTOR_TILE = "vector_tile"


# === Geometry ===

@dataclass(eq=False)
class Circle:
    """Circle geometry (center and radius in map units).

    Circles have no GeoJSON representation and are converted to polygons
    before they are written to a print spec.
    """
    center: Tuple[float, float]
    radius: float

    geom_type = "Circle"

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        x, y = self.center
        return (x - self.radius, y - self.radius, x + self.radius, y + self.radius)

    @property
    def is_empty(self) -> bool:
        return False

    def to_polygon(self, sides: Optional[int] = None):
        """Approximate the circle as a regular polygon."""
        return circle_to_polygon(self.center[0], self.center[1], self.radius, sides)


Geometry = Union[BaseGeometry, Circle]


@dataclass(eq=False)
class Feature:
    """A geometry with properties and an optional own style.

    Attributes:
        geometry: shapely geometry or Circle
        properties: Attribute mapping written as GeoJSON properties
        id: Optional feature id
        style: Style, list of styles or style function overriding the layer style
    """
    geometry: Optional[Geometry] = None
    properties: Dict[str, Any] = field(default_factory=dict)
    id: Optional[Union[str, int]] = None
    style: Union[StyleLike, StyleFunction] = None

    def get(self, key: str, default: Any = None) -> Any:
        return self.properties.get(key, default)

    def get_style_function(self) -> Optional[StyleFunction]:
        return to_style_function(self.style)

    def clone(self) -> 'Feature':
        """Copy of the feature with its own properties dict and no id."""
        geometry = copy.copy(self.geometry) if isinstance(self.geometry, Circle) else self.geometry
        return Feature(
            geometry=geometry,
            properties=dict(self.properties),
            style=self.style,
        )


# === Sources ===

class Source:
    """Base class of all layer sources."""
    kind: Optional[SourceKind] = None

    def __init__(self, projection: str = DEFAULT_PROJECTION):
        self.projection = projection


class XYZSource(Source):
    """Tiles addressed by a {z}/{x}/{y} URL template."""
    kind = SourceKind.BASE_RASTER

    def __init__(self, urls: Union[str, Sequence[str]], projection: str = DEFAULT_PROJECTION):
        super().__init__(projection)
        self.urls = [urls] if isinstance(urls, str) else list(urls)

    def get_urls(self) -> List[str]:
        return self.urls


class OSMSource(XYZSource):
    """OpenStreetMap tiles."""

    def __init__(self, url: str = OSM_URL):
        super().__init__([url])


@dataclass
class TileRange:
    """Inclusive range of tile indices at one zoom level."""
    min_x: int
    max_x: int
    min_y: int
    max_y: int


class WMTSTileGrid:
    """Tile matrix set of a WMTS source.

    Args:
        resolutions: Resolution (map units per pixel) per matrix level
        matrix_ids: Matrix identifier per level
        origin: Top-left corner shared by all levels
        origins: Top-left corner per level (overrides origin)
        tile_size: Tile size shared by all levels, int or (width, height)
        tile_sizes: Tile size per level (overrides tile_size)
        extent: Extent covered by the grid, used to derive tile ranges
        full_tile_ranges: Explicit tile range per level
    """

    def __init__(
        self,
        resolutions: Sequence[float],
        matrix_ids: Sequence[str],
        origin: Optional[Sequence[float]] = None,
        origins: Optional[Sequence[Sequence[float]]] = None,
        tile_size: Union[int, Sequence[int]] = 256,
        tile_sizes: Optional[Sequence[Union[int, Sequence[int]]]] = None,
        extent: Optional[Sequence[float]] = None,
        full_tile_ranges: Optional[Sequence[TileRange]] = None,
    ):
        if origin is None and origins is None:
            raise ValueError("A WMTS tile grid needs an origin or origins")
        self.resolutions = list(resolutions)
        self.matrix_ids = list(matrix_ids)
        self.origin = origin
        self.origins = origins
        self.tile_size = tile_size
        self.tile_sizes = tile_sizes
        self.extent = extent
        self.full_tile_ranges = full_tile_ranges

    def get_matrix_ids(self) -> List[str]:
        return self.matrix_ids

    def get_resolution(self, z: int) -> float:
        return self.resolutions[z]

    def get_origin(self, z: int) -> List[float]:
        if self.origins is not None:
            return list(self.origins[z])
        return list(self.origin)

    def get_tile_size(self, z: int) -> List[int]:
        size = self.tile_sizes[z] if self.tile_sizes is not None else self.tile_size
        if isinstance(size, (int, float)):
            return [size, size]
        return list(size)

    def get_full_tile_range(self, z: int) -> TileRange:
        """Tile range covering the grid extent at level z."""
        if self.full_tile_ranges is not None:
            return self.full_tile_ranges[z]
        if self.extent is None:
            raise ValueError("WMTS tile grid has neither tile ranges nor an extent")
        origin_x, origin_y = self.get_origin(z)
        tile_width, tile_height = self.get_tile_size(z)
        resolution = self.get_resolution(z)
        span_x = resolution * tile_width
        span_y = resolution * tile_height
        min_x, min_y, max_x, max_y = self.extent
        return TileRange(
            min_x=math.floor((min_x - origin_x) / span_x),
            max_x=math.ceil((max_x - origin_x) / span_x) - 1,
            min_y=math.floor((origin_y - max_y) / span_y),
            max_y=math.ceil((origin_y - min_y) / span_y) - 1,
        )


class WMTSSource(Source):
    """Tiles from a WMTS service."""
    kind = SourceKind.TILED_MATRIX_SET

    def __init__(
        self,
        urls: Union[str, Sequence[str]],
        layer: str,
        matrix_set: str,
        tile_grid: Optional[WMTSTileGrid] = None,
        format: str = "image/jpeg",
        style: str = "",
        version: str = "1.0.0",
        request_encoding: str = "KVP",
        dimensions: Optional[Dict[str, Any]] = None,
        projection: str = DEFAULT_PROJECTION,
    ):
        super().__init__(projection)
        self.urls = [urls] if isinstance(urls, str) else list(urls or [])
        self.layer = layer
        self.matrix_set = matrix_set
        self.tile_grid = tile_grid
        self.format = format
        self.style = style
        self.version = version
        self.request_encoding = request_encoding
        self.dimensions = dict(dimensions or {})

    def get_urls(self) -> List[str]:
        return self.urls

    def get_tile_grid(self) -> Optional[WMTSTileGrid]:
        return self.tile_grid


class WMSSource(Source):
    """Images rendered on request by a WMS service.

    Attributes:
        url: Service URL, may carry extra query parameters
        params: WMS request parameters (LAYERS, FORMAT, VERSION, STYLES, ...)
        server_type: 'mapserver', 'geoserver' or 'qgis'
    """
    kind = SourceKind.DYNAMIC_IMAGE
    tiled = False

    def __init__(
        self,
        url: str,
        params: Dict[str, Any],
        server_type: Optional[str] = None,
        projection: str = DEFAULT_PROJECTION,
    ):
        super().__init__(projection)
        self.url = url
        self.params = dict(params)
        self.server_type = server_type

    def get_url(self) -> str:
        return self.url

    def get_params(self) -> Dict[str, Any]:
        return self.params


class ImageWMSSource(WMSSource):
    """Single image WMS source."""


class TileWMSSource(WMSSource):
    """Tiled WMS source."""
    tiled = True


class VectorSource(Source):
    """In-memory collection of features."""
    kind = SourceKind.VECTOR_FEATURES

    def __init__(self, features: Optional[Iterable[Feature]] = None,
                 projection: str = DEFAULT_PROJECTION):
        super().__init__(projection)
        self.features: List[Feature] = list(features or [])

    def add_feature(self, feature: Feature):
        self.features.append(feature)

    def add_features(self, features: Iterable[Feature]):
        self.features.extend(features)

    def get_features(self) -> List[Feature]:
        return list(self.features)

    def get_features_in_extent(self, extent: Sequence[float]) -> List[Feature]:
        """Features whose geometry bounds intersect the extent, in insertion order."""
        bounds = Bounds.from_extent(extent)
        matching = []
        for feature in self.features:
            geometry = feature.geometry
            if geometry is None or geometry.is_empty:
                continue
            if bounds.intersects(geometry.bounds):
                matching.append(feature)
        return matching


class VectorTileSource(Source):
    """Vector tiles (MVT), rendered by an external tile compositor."""
    kind = SourceKind.VECTOR_TILE

    def __init__(self, urls: Union[str, Sequence[str]], projection: str = DEFAULT_PROJECTION):
        super().__init__(projection)
        self.urls = [urls] if isinstance(urls, str) else list(urls)

    def get_urls(self) -> List[str]:
        return self.urls


# === Layers ===

@dataclass(eq=False)
class LayerState:
    """Snapshot of one layer's effective rendering state.

    Resolution range is half-open: [min_resolution, max_resolution).
    """
    layer: 'Layer'
    opacity: float = 1
    visible: bool = True
    z_index: Optional[int] = None
    min_resolution: float = 0
    max_resolution: float = math.inf
    managed: bool = True


@dataclass(eq=False)
class BaseLayer:
    """Properties shared by layers and layer groups."""
    opacity: float = 1
    visible: bool = True
    z_index: Optional[int] = None
    min_resolution: float = 0
    max_resolution: float = math.inf
    properties: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.properties.get(key, default)

    def set(self, key: str, value: Any):
        self.properties[key] = value

    @property
    def name(self) -> Optional[str]:
        return self.properties.get("name")


@dataclass(eq=False)
class Layer(BaseLayer):
    """A map layer with a source and, for vector layers, a default style."""
    source: Optional[Source] = None
    style: Union[StyleLike, StyleFunction] = None

    def get_source(self) -> Optional[Source]:
        return self.source

    def get_style_function(self) -> Optional[StyleFunction]:
        return to_style_function(self.style)

    def get_layer_state(self) -> LayerState:
        return LayerState(
            layer=self,
            opacity=self.opacity,
            visible=self.visible,
            z_index=self.z_index,
            min_resolution=self.min_resolution,
            max_resolution=self.max_resolution,
        )

    def get_layer_states_array(self) -> List[LayerState]:
        return [self.get_layer_state()]


@dataclass(eq=False)
class LayerGroup(BaseLayer):
    """Ordered group of layers, later layers are drawn above earlier ones."""
    layers: List[Union[Layer, 'LayerGroup']] = field(default_factory=list)

    def get_layers(self) -> List[Union[Layer, 'LayerGroup']]:
        return self.layers

    def get_layer_states_array(self) -> List[LayerState]:
        """Flatten the tree into layer states.

        Group opacity multiplies down the tree, visibility is and-ed,
        resolution ranges are intersected and layers without a z-index
        inherit the group's.
        """
        states = []
        for child in self.layers:
            for state in child.get_layer_states_array():
                state.opacity *= self.opacity
                state.visible = state.visible and self.visible
                state.min_resolution = max(state.min_resolution, self.min_resolution)
                state.max_resolution = min(state.max_resolution, self.max_resolution)
                if state.z_index is None:
                    state.z_index = self.z_index
                states.append(state)
        return states


# === Map ===

@dataclass
class View:
    """Current view of the map.

    Attributes:
        center: View center in projection units
        resolution: Map units per pixel
        rotation: Rotation in radians
        projection: CRS code of the view
    """
    center: Optional[Tuple[float, float]] = None
    resolution: Optional[float] = None
    rotation: float = 0
    projection: str = DEFAULT_PROJECTION

    def get_center(self) -> Optional[Tuple[float, float]]:
        return self.center

    def get_projection(self) -> str:
        return self.projection

    def get_rotation(self) -> float:
        return self.rotation


class Map:
    """A view plus a root layer group."""

    def __init__(self, layers: Optional[Union[LayerGroup, Sequence[Union[Layer, LayerGroup]]]] = None,
                 view: Optional[View] = None):
        if isinstance(layers, LayerGroup):
            self.layer_group = layers
        else:
            self.layer_group = LayerGroup(layers=list(layers or []))
        self.view = view or View()

    def get_layer_group(self) -> LayerGroup:
        return self.layer_group

    def get_view(self) -> View:
        return self.view

    def add_layer(self, layer: Union[Layer, LayerGroup]):
        self.layer_group.layers.append(layer)
