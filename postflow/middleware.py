import time
import uuid
from urllib.parse import parse_qs

import structlog
from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send
from structlog.contextvars import bind_contextvars, clear_contextvars

logger = structlog.get_logger("http")


class RequestIdMiddleware:
    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID"):
        self.app = app
        self.header_name = header_name

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive=receive)
        start = time.time()
        req_id = request.headers.get(self.header_name.lower()) or str(uuid.uuid4())
        bind_contextvars(request_id=req_id, path=request.url.path, method=scope["method"])
        status_code = 500

        async def send_with_request_id(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                headers = MutableHeaders(scope=message)
                headers.append(self.header_name, req_id)
            await send(message)

        # unhandled errors are logged by the application's exception handler
        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            duration_ms = int((time.time() - start) * 1000)
            logger.info("http_request_finished", status=status_code, duration_ms=duration_ms)
            clear_contextvars()


class MethodOverrideMiddleware:
    """
    Let HTML forms reach PATCH/DELETE routes.

    A POST carrying ?_method=PATCH (or DELETE/PUT) in its query string is
    dispatched as that method.
    """

    allowed_methods = {"PATCH", "DELETE", "PUT"}

    def __init__(self, app: ASGIApp, param_name: str = "_method"):
        self.app = app
        self.param_name = param_name

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["method"] == "POST":
            query = parse_qs(scope.get("query_string", b"").decode("latin-1"))
            override = (query.get(self.param_name) or [""])[0].upper()
            if override in self.allowed_methods:
                scope = dict(scope, method=override)
        await self.app(scope, receive, send)
