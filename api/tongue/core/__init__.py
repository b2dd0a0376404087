"""Shared infrastructure: persistence, logging, context, clock."""
