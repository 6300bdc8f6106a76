"""
Hook set used to customize print spec encoding.

Subclass BaseCustomizer and override the hooks you need. Filters return
True to keep a layer or geometry; the other hooks receive the fragment
that was just built and may modify it in place. Every default is a no-op.

Usage:
    class NoLabels(BaseCustomizer):
        def text(self, layer_state, symbolizer, text_style):
            symbolizer["label"] = ""

    customizer = NoLabels(print_extent=[0, 0, 1000, 1000])
"""

from typing import Any, Dict, Sequence

from print_utils import Bounds


class BaseCustomizer:
    """Default, permissive hook set.

    Attributes:
        print_extent: Extent [min_x, min_y, max_x, max_y] covered by the printed map
    """

    def __init__(self, print_extent: Sequence[float]):
        self.print_extent = list(print_extent)

    @property
    def print_bounds(self) -> Bounds:
        return Bounds.from_extent(self.print_extent)

    def layer_filter(self, layer_state) -> bool:
        """Return False to leave a layer out of the print."""
        return True

    def geometry_filter(self, geometry) -> bool:
        """Return False to leave a feature geometry out of the print."""
        return True

    def feature(self, layer_state, geojson_feature: Dict[str, Any]):
        """Called when a style rule is attached to a GeoJSON feature."""

    def line(self, layer_state, symbolizer: Dict[str, Any], stroke):
        """Called after a line symbolizer is built."""

    def point(self, layer_state, symbolizer: Dict[str, Any], image):
        """Called after a point symbolizer is built."""

    def text(self, layer_state, symbolizer: Dict[str, Any], text_style):
        """Called after a text symbolizer is built."""

    def wmts_layer(self, layer_state, wmts_layer: Dict[str, Any], source):
        """Called after a WMTS layer fragment is built."""

    def wms_layer(self, layer_state, wms_layer: Dict[str, Any], source):
        """Called after a WMS layer fragment is built."""

    def image_layer(self, layer_state, image_layer: Dict[str, Any]):
        """Called after an image layer fragment is built."""
