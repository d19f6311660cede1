"""Raster processing stages.

Pure, synchronous numpy code: geometry, band decoding, index computation,
downsampling, statistics, 3x3 aggregation and transport encoding.
"""
