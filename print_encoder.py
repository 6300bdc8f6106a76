"""
Print spec encoder - converts a map to a MapFish print v3 spec.

The map's layer tree is flattened, filtered, ordered topmost first and each
layer is dispatched on the kind of its source:

    BASE_RASTER       -> 'osm' fragment
    TILED_MATRIX_SET  -> 'wmts' fragment with the full matrix set
    DYNAMIC_IMAGE     -> 'wms' fragment
    VECTOR_FEATURES   -> 'geojson' fragment, or an embedded 'image' when the
                         layer has the print_as_image property
    VECTOR_TILE       -> 'image' fragments from an external MVT encoder

Usage:
    from print_customizer import BaseCustomizer
    from print_encoder import PrintEncoder
    from print_utils import get_print_extent

    extent = get_print_extent(map_page_size, view.center, scale)
    spec = PrintEncoder().create_spec(
        map, scale=25000, print_resolution=resolution, dpi=254,
        layout="A4 portrait", format="pdf", custom_attributes={},
        customizer=BaseCustomizer(extent),
    )
"""

import logging
import math
from typing import Any, Dict, List, Optional, Union
from urllib.parse import parse_qsl, urlsplit, urlunsplit

import raster_fallback
from map_model import LayerGroup, LayerState, Map, SourceKind
from print_customizer import BaseCustomizer
from print_errors import PrintEncoderError
from print_utils import Bounds, get_absolute_url
from tile_matrix import get_wmts_matrices, get_wmts_url
from vector_encoder import VectorEncoder

logger = logging.getLogger(__name__)

Fragment = Dict[str, Any]
EncodedLayer = Union[Fragment, List[Fragment], None]

# Source params that have their own field in a WMS fragment
WMS_RESERVED_PARAMS = ("LAYERS", "FORMAT", "SERVERTYPE", "VERSION", "STYLES")
DEFAULT_WMS_VERSION = "1.3.0"
DEFAULT_WMS_FORMAT = "image/png"

# Shortest data URL carrying an actual image ('data:,' is an empty canvas)
MIN_DATA_URL_LENGTH = 6


class PrintEncoder:
    """Converts maps and layers to MapFish print v3 spec fragments.

    Args:
        mvt_encoder: Renders vector tile layers to images. Must provide
            encode_mvt_layer(options) returning a list of {baseURL, extent, ...}
            dicts. Vector tile layers are skipped without it.
    """

    def __init__(self, mvt_encoder=None):
        self.mvt_encoder = mvt_encoder

    def create_spec(
        self,
        map: Map,
        scale: float,
        print_resolution: float,
        dpi: int,
        layout: str,
        format: str,
        custom_attributes: Optional[Dict[str, Any]],
        customizer: BaseCustomizer,
        pdf_a: Optional[bool] = None
    ) -> Dict[str, Any]:
        """Build a complete print spec.

        Custom attributes are merged into the attributes after the map.
        """
        map_spec = self.encode_map(map, scale, print_resolution, dpi, customizer, pdf_a=pdf_a)
        attributes = {
            "map": map_spec,
            "datasource": [],
        }
        attributes.update(custom_attributes or {})
        return {
            "attributes": attributes,
            "format": format,
            "layout": layout,
        }

    def encode_map(
        self,
        map: Map,
        scale: float,
        print_resolution: float,
        dpi: int,
        customizer: BaseCustomizer,
        pdf_a: Optional[bool] = None
    ) -> Dict[str, Any]:
        """Encode the view and layers of a map."""
        view = map.get_view()
        center = view.get_center()
        layers = self.encode_layer_group(map.get_layer_group(), print_resolution, customizer)

        spec = {
            "center": list(center) if center is not None else None,
            "dpi": dpi,
            "layers": layers,
            "projection": view.get_projection(),
            "rotation": math.degrees(view.get_rotation()),
            "scale": scale,
        }
        if pdf_a is not None:
            spec["pdfA"] = pdf_a
        return spec

    def encode_layer_group(
        self,
        layer_group: LayerGroup,
        print_resolution: float,
        customizer: BaseCustomizer
    ) -> List[Fragment]:
        """Encode every layer of a group, topmost layer first.

        A layer that fails to encode is logged and left out.
        """
        layer_states = [
            state for state in layer_group.get_layer_states_array()
            if customizer.layer_filter(state)
        ]
        # Stable ascending sort then reverse, not a descending sort: of two
        # layers with the same z-index, the one added later comes first.
        layer_states.sort(key=lambda state: state.z_index or 0)
        layer_states.reverse()

        layers: List[Fragment] = []
        for layer_state in layer_states:
            try:
                encoded = self.encode_layer_state(layer_state, print_resolution, customizer)
            except PrintEncoderError as e:
                logger.warning("Skipping layer %s: %s", layer_state.layer.name, e)
                continue
            if not encoded:
                continue
            if isinstance(encoded, list):
                layers.extend(encoded)
            else:
                layers.append(encoded)
        return layers

    def encode_layer_state(
        self,
        layer_state: LayerState,
        print_resolution: float,
        customizer: BaseCustomizer
    ) -> EncodedLayer:
        """Encode one layer, or return None if it is not printed."""
        if (
            not layer_state.visible or
            print_resolution < layer_state.min_resolution or
            print_resolution >= layer_state.max_resolution
        ):
            return None

        layer = layer_state.layer
        source = layer.get_source()
        kind = source.kind if source is not None else None

        if kind == SourceKind.VECTOR_TILE:
            return self.encode_mvt_layer_state(layer_state, print_resolution, customizer)
        if kind == SourceKind.TILED_MATRIX_SET:
            return self.encode_tile_wmts_layer(layer_state, customizer)
        if kind == SourceKind.BASE_RASTER:
            return self.encode_osm_layer_state(layer_state, customizer)
        if kind == SourceKind.DYNAMIC_IMAGE:
            return self.encode_wms_layer_state(layer_state, customizer)
        if kind == SourceKind.VECTOR_FEATURES:
            if layer.get("print_as_image"):
                return self.encode_as_image_layer(layer_state, print_resolution, customizer)
            encoded = VectorEncoder(layer_state, customizer).encode_vector_layer(print_resolution)
            render_as_svg = layer.get("render_as_svg")
            if encoded is not None and render_as_svg is not None:
                encoded["renderAsSvg"] = render_as_svg
            return encoded

        logger.debug("No encoder for layer %s (source %r)", layer.name, source)
        return None

    def encode_osm_layer_state(self, layer_state: LayerState, customizer: BaseCustomizer) -> Fragment:
        layer = layer_state.layer
        source = layer.get_source()
        return {
            "type": "osm",
            "baseURL": source.get_urls()[0],
            "opacity": layer_state.opacity,
            "name": layer.name,
        }

    def encode_tile_wmts_layer(self, layer_state: LayerState, customizer: BaseCustomizer) -> Fragment:
        """Encode a WMTS layer with the full matrix set of its source.

        Raises:
            MissingMatrixDescriptorError: If the source has no tile grid or URL
        """
        layer = layer_state.layer
        source = layer.get_source()
        dimension_params = dict(source.dimensions)

        wmts_layer = {
            "type": "wmts",
            "baseURL": get_wmts_url(source),
            "dimensions": list(dimension_params),
            "dimensionParams": dimension_params,
            "imageFormat": source.format,
            "name": layer.name,
            "layer": source.layer,
            "matrices": get_wmts_matrices(source),
            "matrixSet": source.matrix_set,
            "opacity": layer_state.opacity,
            "requestEncoding": source.request_encoding,
            "style": source.style,
            "version": source.version,
        }
        customizer.wmts_layer(layer_state, wmts_layer, source)
        return wmts_layer

    def encode_wms_layer_state(self, layer_state: LayerState, customizer: BaseCustomizer) -> Fragment:
        """Encode a tiled or single image WMS layer.

        Query parameters of the source URL and every source param without a
        dedicated field are passed on as customParams.
        """
        layer = layer_state.layer
        source = layer.get_source()
        params = source.get_params()
        upper_params = {key.upper(): value for key, value in params.items()}

        parts = urlsplit(source.get_url())
        base_url = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))

        custom_params: Dict[str, Any] = {"TRANSPARENT": True}
        custom_params.update(parse_qsl(parts.query))
        for key, value in params.items():
            if key.upper() not in WMS_RESERVED_PARAMS:
                custom_params[key] = value

        layers = upper_params.get("LAYERS", "")
        styles = upper_params.get("STYLES")
        wms_layer = {
            "type": "wms",
            "baseURL": get_absolute_url(base_url),
            "imageFormat": upper_params.get("FORMAT", DEFAULT_WMS_FORMAT),
            "layers": layers.split(",") if isinstance(layers, str) else list(layers),
            "customParams": custom_params,
            "serverType": source.server_type or upper_params.get("SERVERTYPE"),
            "opacity": layer_state.opacity,
            "version": upper_params.get("VERSION", DEFAULT_WMS_VERSION),
            "styles": styles.split(",") if isinstance(styles, str) else list(styles or [""]),
            "useNativeAngle": layer.get("use_native_angle", True),
            "name": layer.name,
        }
        customizer.wms_layer(layer_state, wms_layer, source)
        return wms_layer

    def encode_mvt_layer_state(
        self,
        layer_state: LayerState,
        print_resolution: float,
        customizer: BaseCustomizer
    ) -> Optional[List[Fragment]]:
        """Encode a vector tile layer as a list of image fragments."""
        layer = layer_state.layer
        if self.mvt_encoder is None:
            logger.warning("No MVT encoder configured, skipping vector tile layer %s", layer.name)
            return None

        bounds = Bounds.from_extent(customizer.print_extent)
        options = {
            "layer": layer,
            "print_extent": customizer.print_extent,
            "tile_resolution": print_resolution,
            "style_resolution": print_resolution,
            "canvas_size": [bounds.width / print_resolution, bounds.height / print_resolution],
        }
        results = self.mvt_encoder.encode_mvt_layer(options)

        image_layers = []
        for result in results:
            if len(result.get("baseURL") or "") <= MIN_DATA_URL_LENGTH:
                continue
            image_layer = {
                "type": "image",
                "name": layer.name,
                "opacity": 1,
                "imageFormat": "image/png",
                **result,
            }
            customizer.image_layer(layer_state, image_layer)
            image_layers.append(image_layer)
        return image_layers

    def encode_as_image_layer(
        self,
        layer_state: LayerState,
        resolution: float,
        customizer: BaseCustomizer,
        additional_draw=None
    ) -> Fragment:
        """Rasterize a vector layer, see raster_fallback.encode_as_image_layer."""
        return raster_fallback.encode_as_image_layer(layer_state, resolution, customizer, additional_draw)
