from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """
    Rejects requests whose declared body is larger than ``max_body_bytes``.

    Job requests carry JSON only (URLs, names, subtitle text), so anything
    larger than a few megabytes is refused before the body is read.
    """

    def __init__(self, app, max_body_bytes: int = 10 * 1024 * 1024):
        super().__init__(app)
        self.max_body_bytes = max_body_bytes

    async def dispatch(self, request: Request, call_next):
        declared = request.headers.get("content-length")
        if declared is not None:
            try:
                size = int(declared)
            except ValueError:
                return JSONResponse(status_code=400, content={"success": False, "error": "Invalid Content-Length header"})
            if size > self.max_body_bytes:
                return JSONResponse(
                    status_code=413,
                    content={"success": False, "error": f"Request body exceeds {self.max_body_bytes} bytes"},
                )
        return await call_next(request)
