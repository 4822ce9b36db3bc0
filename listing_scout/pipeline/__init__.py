# File: listing_scout/pipeline/__init__.py
"""listing_scout.pipeline: batch export, external transform hand-off and import."""

from .batches import ImportSummary, resolve_result_files, write_batches

__all__ = ["ImportSummary", "resolve_result_files", "write_batches"]
