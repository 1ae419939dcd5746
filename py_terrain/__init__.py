"""
py-terrain: chunked procedural terrain height fields.

Blends fractal noise, radial influence zones and heightmap images into
per-vertex elevations over a lattice of terrain chunks.
"""

__version__ = "0.1.0"
