"""
Media ingest and processing orchestrator.

Turns freshly uploaded images and videos into processed, moderated,
searchable assets.
"""

__version__ = "0.1.0"
