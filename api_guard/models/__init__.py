"""Models Package.

Value objects shared by the pipeline stages and their external collaborators.
"""

from api_guard.models.domain import AuditEntry, AuthUser

__all__ = [
    "AuditEntry",
    "AuthUser",
]
