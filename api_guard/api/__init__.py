"""
API Package.

Request/response context, pipeline stages, the framework adapter and routes.
"""
