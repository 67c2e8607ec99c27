"""
Bloomium: weekly bloom-probability tiles from Sentinel-2 imagery.

Subpackages:
- bloomium.raster  -> band reading, alignment, SCL masking
- bloomium.tiles   -> web-map tile math, colormaps, pyramid rendering
- bloomium.worker  -> per-AOI job orchestration and CLI
"""

__version__ = "0.1.0"
