"""Course and lesson access control."""
