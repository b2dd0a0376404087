"""Offline durability for progress updates."""
