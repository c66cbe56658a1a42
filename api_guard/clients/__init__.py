"""
Clients Package.

Adapters for the hosted identity service and the audit table.
"""

from api_guard.clients.audit_sink import AuditSink, InMemoryAuditSink, SupabaseAuditSink
from api_guard.clients.http import create_http_client
from api_guard.clients.identity import IdentityProvider, SupabaseIdentityClient

__all__ = [
    "create_http_client",
    "AuditSink",
    "InMemoryAuditSink",
    "SupabaseAuditSink",
    "IdentityProvider",
    "SupabaseIdentityClient",
]
