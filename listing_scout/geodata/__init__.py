# File: listing_scout/geodata/__init__.py
"""listing_scout.geodata: tag-based map features turned into candidate businesses."""

from .overpass import OSM_TAGS, TAG_CATEGORY_RULES, GeodataError, GeodataResult, OverpassClient

__all__ = ["OSM_TAGS", "TAG_CATEGORY_RULES", "GeodataError", "GeodataResult", "OverpassClient"]
