"""Data models and schemas.

Defines the data structures used throughout the pipeline:
- imagery: Scenes, rasters, grids, masks and their summaries
- request: Raw and normalised ingest requests
- result: Pydantic wire schema for results and error payloads
- outcome: The ``IngestOutcome`` sum type returned by ``ingest()``
"""
