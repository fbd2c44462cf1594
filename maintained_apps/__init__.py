"""maintained-apps tracker: catalog version tracking and installer signing-info collection."""

__version__ = "1.0.0"
