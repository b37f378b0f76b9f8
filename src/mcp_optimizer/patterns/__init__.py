"""Per-agent integration patterns."""

from .catalog import PatternCatalog

__all__ = ["PatternCatalog"]
