"""Data models for the catalog and the security-info store."""
