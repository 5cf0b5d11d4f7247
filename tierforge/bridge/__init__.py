"""Bridges to external collaborators: build, scan, registry, compute platform."""

from tierforge.bridge.collaborators import (
    BuildCollaborator,
    BuildError,
    ComputePlatform,
    ComputePlatformError,
    RegistryCollaborator,
    ScanCollaborator,
)

__all__ = [
    "BuildCollaborator",
    "BuildError",
    "ComputePlatform",
    "ComputePlatformError",
    "RegistryCollaborator",
    "ScanCollaborator",
]
