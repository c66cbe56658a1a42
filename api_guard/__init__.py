"""API Guard - request pipeline for the user-management API.

Note: Import `create_app` directly from `api_guard.main` to avoid circular imports.
"""

__all__ = ["main", "api", "core", "clients", "stores", "observability"]
