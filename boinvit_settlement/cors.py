"""
Dynamic CORS Middleware

Allowed origins come from the app_config table (key "allowed_origins"),
cached in Redis, with the ALLOWED_ORIGINS setting as fallback. Every response
carries Access-Control-Allow-Origin: the caller's origin when it is allowed,
otherwise the first allowed origin. OPTIONS preflights are answered directly.
"""

import logging
from typing import Callable, Optional

from fastapi import Request
from sqlalchemy.orm import Session
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import PlainTextResponse, Response

from .cache import get_allowed_origins_cached, invalidate_allowed_origins_cache, set_allowed_origins_cached
from .config import ALLOWED_ORIGINS, CORS_CACHE_TTL
from .database import SessionLocal
from .models import AppConfig

logger = logging.getLogger(__name__)

ALLOWED_ORIGINS_CONFIG_KEY = "allowed_origins"

CORS_ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type, x-paystack-signature"
CORS_ALLOW_METHODS = "GET, POST, OPTIONS"


def load_allowed_origins(session_factory: Callable[[], Session] = SessionLocal) -> list[str]:
    """Allow-list from cache, then the config store, then the fallback setting"""
    cached_origins = get_allowed_origins_cached()
    if cached_origins:
        return cached_origins

    origins: Optional[list[str]] = None
    db = session_factory()
    try:
        row = db.query(AppConfig).filter(AppConfig.key == ALLOWED_ORIGINS_CONFIG_KEY).first()
        if row and isinstance(row.value, list):
            origins = [str(o).strip().rstrip("/") for o in row.value if str(o).strip()]
    except Exception as e:
        logger.warning(f"⚠️ Could not read allowed origins from config store: {e}")
    finally:
        db.close()

    if not origins:
        return list(ALLOWED_ORIGINS)

    set_allowed_origins_cached(origins, CORS_CACHE_TTL)
    return origins


def update_allowed_origins(db: Session, origins: list[str]) -> AppConfig:
    """Replace the stored allow-list and drop the cached copy"""
    row = db.query(AppConfig).filter(AppConfig.key == ALLOWED_ORIGINS_CONFIG_KEY).first()
    if row is None:
        row = AppConfig(key=ALLOWED_ORIGINS_CONFIG_KEY)
        db.add(row)
    row.value = origins
    db.commit()
    db.refresh(row)
    invalidate_allowed_origins_cache()
    logger.info(f"🌐 Allowed origins updated: {origins}")
    return row


def resolve_allowed_origin(origin: Optional[str], allowed: list[str]) -> str:
    if origin and origin.rstrip("/") in allowed:
        return origin
    return allowed[0] if allowed else ALLOWED_ORIGINS[0]


class DynamicCORSMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds CORS headers to all responses.

    Headers added:
    - Access-Control-Allow-Origin: validated origin or the default
    - Access-Control-Allow-Headers: fixed API header list
    - Access-Control-Allow-Methods: GET, POST, OPTIONS
    - Vary: Origin
    """

    def __init__(self, app, origins_loader: Optional[Callable[[], list[str]]] = None):
        super().__init__(app)
        self.origins_loader = origins_loader or load_allowed_origins

    def _apply_headers(self, request: Request, response: Response) -> Response:
        origin = request.headers.get("origin")
        try:
            allowed = self.origins_loader()
        except Exception as e:
            logger.error(f"❌ Failed to load allowed origins: {e}")
            allowed = list(ALLOWED_ORIGINS)

        allow_origin = resolve_allowed_origin(origin, allowed)
        if origin and allow_origin != origin:
            logger.debug(f"🚫 Origin not allowed: {origin}")

        response.headers["Access-Control-Allow-Origin"] = allow_origin
        response.headers["Access-Control-Allow-Headers"] = CORS_ALLOW_HEADERS
        response.headers["Access-Control-Allow-Methods"] = CORS_ALLOW_METHODS
        response.headers["Vary"] = "Origin"
        return response

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.method == "OPTIONS":
            return self._apply_headers(request, PlainTextResponse("ok", status_code=200))

        response = await call_next(request)
        return self._apply_headers(request, response)
