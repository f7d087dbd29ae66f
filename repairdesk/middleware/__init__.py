"""HTTP middleware for the RepairDesk API."""

from .rbac import RBACMiddleware

__all__ = ["RBACMiddleware"]
