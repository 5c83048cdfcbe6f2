"""Repository inspection."""

from .repo_inspector import (
    Inspection,
    ProjectType,
    detect_package_manager,
    detect_type,
    inspect,
)

__all__ = [
    "Inspection",
    "ProjectType",
    "detect_package_manager",
    "detect_type",
    "inspect",
]
