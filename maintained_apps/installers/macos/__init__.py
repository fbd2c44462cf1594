"""macOS installer drivers (disk image, package installer, zip archive)."""
