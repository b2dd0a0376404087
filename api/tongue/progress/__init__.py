"""Video-watch progress tracking."""
