"""Persistence of collected security info."""
