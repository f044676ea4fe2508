"""API routers for the auction engine."""

from . import auctions, organizations, tasks, users

__all__ = ["auctions", "organizations", "tasks", "users"]
