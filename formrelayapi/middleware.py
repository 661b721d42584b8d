import logging
import re
import time
from typing import Callable
from urllib.parse import urlencode

from fastapi import Request
from fastapi.responses import RedirectResponse

from formrelayapi.ratelimit import edge_auth_counter, get_client_ip
from formrelayapi.security import ReadOnlyCookies, SessionClient

logger = logging.getLogger(__name__)

PROTECTED_ROUTES = ("/dashboard", "/forms", "/profile", "/settings")
AUTH_ROUTES = ("/auth/signin", "/auth/signup")
WATCHED_PREFIXES = ("/auth/confirm", "/api/auth/")
DEFAULT_LANDING = "/dashboard"

SKIP_PATHS = re.compile(
    r"^/(_next/static|_next/image|favicon\.ico|static/)|\.(svg|png|jpg|jpeg|gif|webp)$",
    re.IGNORECASE,
)

CONTENT_SECURITY_POLICY = "; ".join(
    [
        "default-src 'self'",
        "script-src 'self' 'unsafe-inline' 'unsafe-eval'",
        "style-src 'self' 'unsafe-inline'",
        "img-src 'self' data: https:",
        "font-src 'self' data:",
        "connect-src 'self' https://*.supabase.co wss://*.supabase.co",
        "frame-ancestors 'none'",
    ]
)

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "X-XSS-Protection": "1; mode=block",
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
}


def add_security_headers(response):
    for name, value in SECURITY_HEADERS.items():
        response.headers[name] = value
    return response


async def edge_filter(request: Request, call_next: Callable):
    path = request.url.path
    if SKIP_PATHS.search(path):
        return await call_next(request)

    user = SessionClient(ReadOnlyCookies(request)).get_user()

    if user is None and path.startswith(PROTECTED_ROUTES):
        return add_security_headers(
            RedirectResponse(f"/auth/signin?{urlencode({'from': path})}", status_code=302)
        )

    if user is not None and path.startswith(AUTH_ROUTES):
        from_param = request.query_params.get("from")
        safe = from_param and from_param.startswith("/") and not from_param.startswith("//")
        target = from_param if safe else DEFAULT_LANDING
        return add_security_headers(RedirectResponse(target, status_code=302))

    if path.startswith(WATCHED_PREFIXES):
        ip = get_client_ip(request)
        logger.info(f"Auth request from IP: {ip}, path: {path}")
        if edge_auth_counter.hit(ip):
            logger.warning(f"Auth request rate above threshold from IP: {ip}")

    response = await call_next(request)
    return add_security_headers(response)


async def log_requests(request: Request, call_next: Callable):
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time
    logger.info(
        f"Method: {request.method} Path: {request.url.path} "
        f"Status: {response.status_code} Duration: {duration:.2f}s"
    )
    return response
