"""
HTTP service exposing the terrain chunk lattice.
"""
