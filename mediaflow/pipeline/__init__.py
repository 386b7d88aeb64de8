"""Post-upload processing: orchestrator, reconciliation and transcode sweep."""
