"""Satellite vegetation-index ingestion pipeline.

Selects a Sentinel-2 scene for an area of interest from one of several
imagery providers, decodes reflectance bands, computes NDVI/NDMI grids,
and returns statistics, a 3x3 zonal summary and transport-encoded grids.
"""

__version__ = "0.1.0"
