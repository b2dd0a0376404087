"""Payment processor webhook boundary."""
