"""Course enrollment."""
