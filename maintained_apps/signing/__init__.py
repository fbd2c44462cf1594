"""Signing-metadata inspectors for located binaries."""

from __future__ import annotations

from ..config.collector_config import CollectorConfig
from ..models.schema import Platform
from .base import SigningInspector


def inspector_for(platform: Platform, config: CollectorConfig) -> SigningInspector:
    if platform is Platform.MACOS:
        from .macos import MacOSSigningInspector
        return MacOSSigningInspector(config)
    from .windows import WindowsSigningInspector
    return WindowsSigningInspector(config)
