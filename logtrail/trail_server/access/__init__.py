"""Access resolution for tenant-scoped requests."""

from .resolver import AccessResolver, ApplicationContext

__all__ = ["AccessResolver", "ApplicationContext"]
