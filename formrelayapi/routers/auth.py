import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, RedirectResponse

from formrelayapi.config import DevConfig, config
from formrelayapi.i18n import DEFAULT_LANGUAGE, SUPPORTED_LANGUAGES
from formrelayapi.models.user import User
from formrelayapi.ratelimit import confirm_limiter, get_client_ip
from formrelayapi.security import (
    OTP_TYPES,
    AuthError,
    CurrentUser,
    ReadWriteCookies,
    ResponseCookies,
    SessionClient,
)

logger = logging.getLogger(__name__)

# Mounted under /api/auth
router = APIRouter()
# Mounted under /auth; targets of links in auth emails
confirm_router = APIRouter()

TOKEN_HASH_MIN_LENGTH = 10
TOKEN_HASH_MAX_LENGTH = 200


@router.post("/signout", status_code=200)
async def signout(request: Request):
    response = JSONResponse({"success": True})
    await SessionClient(ResponseCookies(request, response)).sign_out()
    return response


@router.get("/user", response_model=User, status_code=200)
async def get_session_user(current_user: CurrentUser):
    return current_user


def detect_language(request: Request) -> str:
    lang = request.query_params.get("lang") or request.query_params.get("language")
    if lang in SUPPORTED_LANGUAGES:
        return lang
    accept_language = request.headers.get("accept-language")
    if accept_language:
        if "en" in accept_language:
            return "en-US"
        if "zh" in accept_language:
            return "zh-CN"
    return DEFAULT_LANGUAGE


def _origin(request: Request) -> str:
    return f"{request.url.scheme}://{request.url.netloc}"


def _base_url(request: Request) -> str:
    return (config.APP_URL or _origin(request)).rstrip("/")


def _success_base_url(request: Request) -> str:
    if isinstance(config, DevConfig):
        return _origin(request)
    forwarded_host = request.headers.get("x-forwarded-host")
    if forwarded_host:
        return f"https://{forwarded_host}"
    return _base_url(request)


def error_redirect(request: Request, reason: str, lang: str = DEFAULT_LANGUAGE, **extra: Optional[str]) -> RedirectResponse:
    params = {"error": reason, **{k: v for k, v in extra.items() if v is not None}, "lang": lang}
    return RedirectResponse(f"{_base_url(request)}/auth/auth-code-error?{urlencode(params)}")


@confirm_router.get("/confirm")
async def confirm(request: Request):
    token_hash = request.query_params.get("token_hash")
    otp_type = request.query_params.get("type")
    ip = get_client_ip(request)

    if confirm_limiter.hit(ip):
        logger.warning(f"Rate limit exceeded for IP: {ip}")
        return error_redirect(request, "rate_limited")

    if not token_hash or not otp_type:
        logger.warning(
            f"Missing required parameters - IP: {ip}, token_hash: {bool(token_hash)}, type: {bool(otp_type)}"
        )
        return error_redirect(request, "missing_params")

    if not TOKEN_HASH_MIN_LENGTH <= len(token_hash) <= TOKEN_HASH_MAX_LENGTH:
        logger.warning(f"Invalid token_hash format - IP: {ip}")
        return error_redirect(request, "invalid_token")

    if otp_type not in OTP_TYPES:
        logger.warning(f"Invalid type parameter - IP: {ip}, type: {otp_type}")
        return error_redirect(request, "invalid_type")

    lang = detect_language(request)

    # Session cookies are written onto the redirect, whose target is settled afterwards.
    response = RedirectResponse(_success_base_url(request))
    try:
        await SessionClient(ReadWriteCookies(request, response)).verify_otp(token_hash, otp_type)
    except AuthError as e:
        logger.warning(f"OTP verification failed - IP: {ip}, error: {e}")
    except Exception as e:
        logger.error(f"Error during OTP verification: {e}")
    else:
        logger.info(f"Successful OTP verification - IP: {ip}")
        response.headers["location"] = f"{_success_base_url(request)}/auth/success?{urlencode({'lang': lang})}"
        return response

    return error_redirect(request, "verification_failed", lang, token_hash=token_hash, type=otp_type)
