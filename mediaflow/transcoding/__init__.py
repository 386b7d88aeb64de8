"""Transcoding Adapter."""
