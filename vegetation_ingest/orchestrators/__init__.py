"""Ingest orchestration: provider fallback, scene selection and finalization."""
