from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

# Docs and schema stay reachable without a token
PUBLIC_PREFIXES = (
    "/docs",
    "/openapi",
    "/redoc",
)


class AuthMiddleware(BaseHTTPMiddleware):
    """Reject /api/ requests that carry no Bearer token.

    Token validity and ownership are checked by the route handlers.
    """

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if path.startswith(PUBLIC_PREFIXES) or not path.startswith("/api/"):
            return await call_next(request)

        if request.headers.get("Authorization", "").startswith("Bearer "):
            return await call_next(request)

        return JSONResponse(status_code=401, content={"detail": "Not authenticated"})
