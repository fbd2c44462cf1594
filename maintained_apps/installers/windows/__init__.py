"""Windows installer drivers (MSI, EXE, zip archive)."""
