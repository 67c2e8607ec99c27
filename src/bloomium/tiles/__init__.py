"""Web-map tile math, colormaps and pyramid rendering."""

from bloomium.tiles.colormap import LayerKind, anomaly_rgba, bloom_rgba, colorize
from bloomium.tiles.mercator import enumerate_tiles, lonlat_to_tile, tile_bounds
from bloomium.tiles.render import encode_png, render_tile, tile_path, write_pyramid

__all__ = [
    "LayerKind",
    "anomaly_rgba",
    "bloom_rgba",
    "colorize",
    "encode_png",
    "enumerate_tiles",
    "lonlat_to_tile",
    "render_tile",
    "tile_bounds",
    "tile_path",
    "write_pyramid",
]
