# File: listing_scout/parser/__init__.py
"""listing_scout.parser: HTML page extraction, opening hours and sitemap seeds."""
