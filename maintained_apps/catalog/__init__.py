"""Catalog loading and upstream version tracking."""
