"""Opaque identity extraction from bearer tokens."""
