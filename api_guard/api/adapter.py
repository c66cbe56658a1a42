"""
Framework Adapter - runs pipelines inside Starlette/FastAPI routes.

`endpoint(handler, pipeline)` returns a Starlette endpoint that, per request:

1. binds a correlation id (incoming X-Request-ID or a new UUID);
2. builds an ApiRequest (parsed body, query, client host) and an ApiResponse;
3. runs the pipeline-wrapped handler;
4. renders the ApiResponse as a Starlette response, with the response's
   background work attached as a background task, and echoes X-Request-ID.

Handler exceptions propagate to the framework's own error handling.
"""

import json
import logging
import uuid
from typing import Any, Optional

from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from api_guard.api.context import ApiRequest, ApiResponse, Handler
from api_guard.api.middleware.composer import Pipeline
from api_guard.observability.logging import correlation_id_context


logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _parse_body(raw: bytes, content_type: str) -> Any:
    if not raw:
        return None
    text = raw.decode("utf-8", errors="replace")
    if "json" in content_type:
        try:
            return json.loads(text)
        except ValueError:
            logger.debug("Request declared JSON but body did not parse, keeping raw text")
    return text


def _query_params(request: Request) -> dict[str, Any]:
    params: dict[str, Any] = {}
    for key in request.query_params.keys():
        values = request.query_params.getlist(key)
        params[key] = values[0] if len(values) == 1 else values
    return params


async def build_api_request(request: Request) -> ApiRequest:
    """Translate a Starlette request into an ApiRequest."""
    raw = await request.body()
    return ApiRequest(
        method=request.method,
        path=request.url.path,
        headers=dict(request.headers),
        query_params=_query_params(request),
        body=_parse_body(raw, request.headers.get("content-type", "")),
        client_host=request.client.host if request.client else None,
    )


def render_response(response: ApiResponse) -> Response:
    """Translate an ApiResponse into a Starlette response."""
    background = BackgroundTask(response.run_background)

    if response.is_json:
        rendered: Response = JSONResponse(
            content=response.body,
            status_code=response.status_code,
            background=background,
        )
    else:
        rendered = Response(
            content=response.body if response.finished else None,
            status_code=response.status_code,
            media_type=response.media_type,
            background=background,
        )

    for name, value in response.headers.items():
        rendered.headers[name] = value
    return rendered


def endpoint(handler: Handler, pipeline: Optional[Pipeline] = None):
    """
    Build a Starlette endpoint running `handler` inside `pipeline`.

    Example:
        >>> router.add_api_route(
        ...     "/api/users/me",
        ...     endpoint(get_profile, registry.default_pipeline().then(gate)),
        ...     methods=["GET"],
        ... )
    """
    wrapped = pipeline.wrap(handler) if pipeline is not None else handler

    async def guarded_endpoint(request: Request) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        with correlation_id_context(request_id):
            api_request = await build_api_request(request)
            api_response = ApiResponse()
            await wrapped(api_request, api_response)

            rendered = render_response(api_response)
            rendered.headers[REQUEST_ID_HEADER] = request_id
            return rendered

    guarded_endpoint.__name__ = getattr(handler, "__name__", "guarded_endpoint")
    guarded_endpoint.__doc__ = getattr(handler, "__doc__", None)
    return guarded_endpoint
