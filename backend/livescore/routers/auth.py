import os
from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Header, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from ..config import rate_limits_disabled
from ..exceptions import http_problem


def get_jwt_secret() -> str:
  secret = os.getenv("JWT_SECRET")
  if not secret:
    raise RuntimeError("JWT_SECRET environment variable is required")
  if len(secret) < 32 or secret.lower() in {"secret", "changeme", "default"}:
    raise RuntimeError(
        "JWT_SECRET must be at least 32 characters and not a common default"
    )
  return secret


JWT_ALG = "HS256"
ACCESS_TOKEN_COOKIE = "access_token"


def _get_client_ip(request: Request) -> str:
  forwarded = request.headers.get("X-Forwarded-For")
  if forwarded:
    parts = [ip.strip() for ip in forwarded.split(",") if ip.strip()]
    if parts:
      return parts[-1]
  real_ip = request.headers.get("X-Real-IP")
  if real_ip:
    return real_ip
  return request.client.host if request.client else ""


limiter = Limiter(key_func=_get_client_ip, enabled=not rate_limits_disabled())


def scoring_rate_limit() -> str:
  if rate_limits_disabled():
    return "1000/second"
  return "60/minute"


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
  detail = exc.detail if isinstance(exc.detail, str) else ""
  if detail:
    message = f"rate limit exceeded: {detail}"
  else:
    message = "rate limit exceeded: please wait before submitting another request."
  return JSONResponse(
      status_code=429,
      content={
          "detail": message,
          "code": "rate_limit_exceeded",
      },
  )


@dataclass(frozen=True)
class CurrentUser:
  """Identity carried by a verified access token.

  Tokens are issued elsewhere; this service only needs the subject and
  whether it holds admin rights.
  """

  id: str
  is_admin: bool = False
  username: str | None = None

  def can_referee(self, referee_id: str | None) -> bool:
    return self.is_admin or (referee_id is not None and referee_id == self.id)


def _extract_bearer_token(request: Request, authorization: str | None) -> str:
  if authorization and authorization.lower().startswith("bearer "):
    return authorization.split(" ", 1)[1]

  cookie_token = request.cookies.get(ACCESS_TOKEN_COOKIE)
  if cookie_token:
    return cookie_token

  raise http_problem(
      status_code=401,
      detail="missing token",
      code="auth_missing_token",
  )


def _decode(token: str) -> dict[str, Any]:
  try:
    return jwt.decode(token, get_jwt_secret(), algorithms=[JWT_ALG])
  except jwt.ExpiredSignatureError:
    raise http_problem(
        status_code=401,
        detail="token expired",
        code="auth_token_expired",
    )
  except jwt.PyJWTError:
    raise http_problem(
        status_code=401,
        detail="invalid token",
        code="auth_invalid_token",
    )


async def get_current_user(
    request: Request,
    authorization: str | None = Header(None),
) -> CurrentUser:
  payload = _decode(_extract_bearer_token(request, authorization))
  uid = payload.get("sub")
  if not isinstance(uid, str) or not uid:
    raise http_problem(
        status_code=401,
        detail="invalid token",
        code="auth_invalid_token",
    )
  return CurrentUser(
      id=uid,
      is_admin=payload.get("is_admin") is True,
      username=payload.get("username"),
  )
