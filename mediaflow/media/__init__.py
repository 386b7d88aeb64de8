"""Image and video adapters plus the upload-facing media service."""
