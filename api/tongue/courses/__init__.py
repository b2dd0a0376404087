"""Course and lesson reference data."""
