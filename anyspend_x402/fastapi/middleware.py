import fnmatch
import logging
import re
from typing import Callable

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.background import BackgroundTasks
from starlette.concurrency import run_in_threadpool

from ..config import RouteConfig
from ..server import RESULT_PAYMENT_VERIFIED, RequestContext, x402ResourceServer

logger = logging.getLogger(__name__)


def path_is_match(path: str | list[str], request_path: str) -> bool:
    """Check whether a request path is gated.

    Patterns are exact paths, globs ("/api/*") or regular expressions
    prefixed with "regex:".
    """
    patterns = [path] if isinstance(path, str) else path
    for pattern in patterns:
        if pattern.startswith("regex:"):
            if re.match(pattern[len("regex:") :], request_path):
                return True
        elif pattern == request_path or fnmatch.fnmatchcase(request_path, pattern):
            return True
    return False


def require_payment(
    server: x402ResourceServer,
    route: RouteConfig,
    path: str | list[str] = "*",
):
    """Generate a FastAPI middleware that gates payments for an endpoint.

    Args:
        server (x402ResourceServer): Configured resource server. Its
            settlement policy decides whether settlement happens before the
            response is sent or in a background task afterwards.
        route (RouteConfig): Price, asset, network and recipient of the resource.
        path (str | list[str], optional): Path(s) to gate with payments. Defaults to "*" for all paths.

    Returns:
        Callable: FastAPI middleware function that checks for valid payment before processing requests
    """

    async def middleware(request: Request, call_next: Callable):
        # Skip if the path is not the same as the path in the middleware
        if not path_is_match(path, request.url.path):
            return await call_next(request)

        context = RequestContext(
            path=request.url.path,
            method=request.method,
            headers=request.headers,
            url=str(request.url),
        )

        # Facilitator calls are blocking; keep them off the event loop
        result = await run_in_threadpool(server.process_request, context, route)

        if result.type != RESULT_PAYMENT_VERIFIED or result.session is None:
            return JSONResponse(content=result.body, status_code=result.status, headers=result.headers)

        session = result.session
        request.state.payment_session = session
        request.state.verify_response = session.verify_response

        # Process the request
        response = await call_next(request)

        # Early return without settling if the handler failed
        if response.status_code >= 400:
            return response

        if server.config.settlement == "deferred":
            tasks = BackgroundTasks()
            if response.background is not None:
                tasks.add_task(response.background)
            tasks.add_task(server.process_settlement, session)
            response.background = tasks
            headers = server.payment_response_headers(session.verify_response)
        else:
            settlement = await run_in_threadpool(server.process_settlement, session)
            headers = server.payment_response_headers(settlement)

        response.headers.update(headers)
        return response

    return middleware
