import logging
from typing import Annotated, Optional, Protocol, runtime_checkable

import httpx
from fastapi import Depends, HTTPException, Request, Response, status
from jose import ExpiredSignatureError, JWTError, jwt

from formrelayapi.config import config
from formrelayapi.models.user import User

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
OTP_TYPES = ("email", "signup", "invite", "magiclink", "recovery", "email_change")


class AuthError(Exception):
    pass


def create_unauthorized_exception(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


@runtime_checkable
class CookieReader(Protocol):
    def get(self, name: str) -> Optional[str]: ...


@runtime_checkable
class CookieWriter(Protocol):
    def set(self, name: str, value: str, max_age: Optional[int] = None) -> None: ...

    def remove(self, name: str) -> None: ...


class ReadOnlyCookies:
    """Cookies of the incoming request; route handlers cannot write them."""

    def __init__(self, request: Request):
        self._request = request

    def get(self, name: str) -> Optional[str]:
        return self._request.cookies.get(name)


class ResponseCookies(ReadOnlyCookies):
    """Reads the incoming request, writes onto the outgoing response."""

    def __init__(self, request: Request, response: Response):
        super().__init__(request)
        self._response = response

    def set(self, name: str, value: str, max_age: Optional[int] = None) -> None:
        self._response.set_cookie(
            name,
            value,
            max_age=max_age,
            httponly=True,
            secure=self._request.url.scheme == "https",
            samesite="lax",
            path="/",
        )

    def remove(self, name: str) -> None:
        self._response.delete_cookie(name, path="/")


class ReadWriteCookies(ResponseCookies):
    """Like ResponseCookies, but later reads observe writes made during the same request."""

    def __init__(self, request: Request, response: Response):
        super().__init__(request, response)
        self._pending: dict[str, Optional[str]] = {}

    def get(self, name: str) -> Optional[str]:
        if name in self._pending:
            return self._pending[name]
        return super().get(name)

    def set(self, name: str, value: str, max_age: Optional[int] = None) -> None:
        self._pending[name] = value
        super().set(name, value, max_age=max_age)

    def remove(self, name: str) -> None:
        self._pending[name] = None
        super().remove(name)


def get_user_for_token(token: str) -> User:
    if not config.SUPABASE_JWT_SECRET:
        raise create_unauthorized_exception("Authentication is not configured")
    try:
        payload = jwt.decode(
            token,
            config.SUPABASE_JWT_SECRET,
            algorithms=[ALGORITHM],
            audience=config.SUPABASE_JWT_AUDIENCE,
        )
    except ExpiredSignatureError as e:
        raise create_unauthorized_exception("Token has expired") from e
    except JWTError as e:
        raise create_unauthorized_exception("Invalid token") from e

    user_id = payload.get("sub")
    if user_id is None:
        raise create_unauthorized_exception("Token is missing 'sub' field")

    metadata = payload.get("user_metadata") or {}
    return User(
        id=user_id,
        email=payload.get("email"),
        name=metadata.get("name") or metadata.get("full_name"),
        role=payload.get("role"),
    )


class SessionClient:
    """Session access against the auth provider through an explicit cookie capability."""

    def __init__(self, cookies: CookieReader):
        self.cookies = cookies

    def _writer(self) -> CookieWriter:
        if not isinstance(self.cookies, CookieWriter):
            raise TypeError(f"{type(self.cookies).__name__} cannot write session cookies")
        return self.cookies

    def _auth_url(self, path: str) -> str:
        if not config.SUPABASE_URL:
            raise AuthError("SUPABASE_URL is not configured")
        return f"{config.SUPABASE_URL.rstrip('/')}/auth/v1/{path}"

    def access_token(self, authorization: Optional[str] = None) -> Optional[str]:
        if authorization and authorization.lower().startswith("bearer "):
            token = authorization.split(" ", 1)[1].strip()
            if token:
                return token
        return self.cookies.get(config.SESSION_COOKIE_NAME)

    def get_user(self, authorization: Optional[str] = None) -> Optional[User]:
        token = self.access_token(authorization)
        if not token:
            return None
        try:
            return get_user_for_token(token)
        except HTTPException as e:
            logger.debug(f"Session rejected: {e.detail}")
            return None

    async def verify_otp(self, token_hash: str, type: str) -> User:
        writer = self._writer()
        async with httpx.AsyncClient(timeout=10) as client:
            r = await client.post(
                self._auth_url("verify"),
                json={"token_hash": token_hash, "type": type},
                headers={"apikey": config.SUPABASE_ANON_KEY or ""},
            )
        if r.status_code >= 400:
            raise AuthError(f"verify failed with status {r.status_code}: {r.text[:200]}")
        session = r.json()
        access_token = session.get("access_token")
        if not access_token:
            raise AuthError("verify response did not include a session")
        writer.set(config.SESSION_COOKIE_NAME, access_token, max_age=session.get("expires_in"))
        if session.get("refresh_token"):
            writer.set(config.REFRESH_COOKIE_NAME, session["refresh_token"], max_age=60 * 60 * 24 * 30)
        return get_user_for_token(access_token)

    async def sign_out(self) -> None:
        writer = self._writer()
        token = self.cookies.get(config.SESSION_COOKIE_NAME)
        if token and config.SUPABASE_URL:
            try:
                async with httpx.AsyncClient(timeout=10) as client:
                    await client.post(
                        self._auth_url("logout"),
                        headers={
                            "apikey": config.SUPABASE_ANON_KEY or "",
                            "Authorization": f"Bearer {token}",
                        },
                    )
            except httpx.HTTPError as e:
                logger.warning(f"Auth provider logout failed: {e}")
        writer.remove(config.SESSION_COOKIE_NAME)
        writer.remove(config.REFRESH_COOKIE_NAME)


async def get_current_user(request: Request) -> User:
    client = SessionClient(ReadOnlyCookies(request))
    token = client.access_token(request.headers.get("Authorization"))
    if not token:
        raise create_unauthorized_exception("Unauthorized")
    return get_user_for_token(token)


CurrentUser = Annotated[User, Depends(get_current_user)]
