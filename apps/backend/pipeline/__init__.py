"""
Document processing and persistence for the jobs scraper.

Intent classification, PDF discovery and text extraction, field heuristics
for recruitment notices, PDF asset caching, and the job store.
"""

__version__ = "1.0.0"
