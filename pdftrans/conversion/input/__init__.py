"""Input conversion: PDF rasterization."""
