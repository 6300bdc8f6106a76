"""
WMTS matrix set descriptors.

The print service re-requests WMTS tiles itself, so it needs the full matrix
set of the source: one descriptor per zoom level with the scale denominator,
tile size, origin and number of tiles.
"""

import logging
from typing import Any, Dict, List

from map_model import WMTSSource
from print_errors import MissingMatrixDescriptorError
from print_utils import WMTS_PIXEL_SIZE, get_absolute_url, meters_per_unit

logger = logging.getLogger(__name__)


def get_wmts_matrices(source: WMTSSource) -> List[Dict[str, Any]]:
    """Build the matrix descriptors of a WMTS source.

    scaleDenominator = resolution (in meters) / 0.28 mm, the standardized
    rendering pixel size. matrixSize is the inclusive width and height of the
    level's full tile range.

    Args:
        source: WMTS source with a tile grid

    Returns:
        List of {identifier, scaleDenominator, tileSize, topLeftCorner, matrixSize}

    Raises:
        MissingMatrixDescriptorError: If the source has no tile grid or matrix ids
    """
    tile_grid = source.get_tile_grid()
    if tile_grid is None:
        raise MissingMatrixDescriptorError(layer_name=source.layer)

    matrix_ids = tile_grid.get_matrix_ids()
    if not matrix_ids:
        raise MissingMatrixDescriptorError(
            "WMTS tile grid has no matrix ids", layer_name=source.layer
        )

    unit_meters = meters_per_unit(source.projection)
    matrices = []
    for z, identifier in enumerate(matrix_ids):
        try:
            tile_range = tile_grid.get_full_tile_range(z)
        except (IndexError, ValueError) as e:
            raise MissingMatrixDescriptorError(
                f"No tile range for matrix {identifier}: {e}", layer_name=source.layer
            )
        resolution_meters = tile_grid.get_resolution(z) * unit_meters
        matrices.append({
            "identifier": identifier,
            "scaleDenominator": resolution_meters / WMTS_PIXEL_SIZE,
            "tileSize": tile_grid.get_tile_size(z),
            "topLeftCorner": tile_grid.get_origin(z),
            "matrixSize": [
                tile_range.max_x - tile_range.min_x + 1,
                tile_range.max_y - tile_range.min_y + 1,
            ],
        })

    logger.debug("Built %d WMTS matrices for layer %s", len(matrices), source.layer)
    return matrices


def get_wmts_url(source: WMTSSource) -> str:
    """First URL of a WMTS source, made absolute.

    Raises:
        MissingMatrixDescriptorError: If the source has no URL
    """
    urls = source.get_urls()
    if not urls:
        raise MissingMatrixDescriptorError(
            "WMTS source has no URL", layer_name=source.layer
        )
    return get_absolute_url(urls[0])
