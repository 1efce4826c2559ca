"""
Security event audit trail

Every gate failure, rate-limit trip and settlement outcome is appended to the
security_events table. Writing the audit row must never abort the request that
triggered it, so failures here are logged and swallowed.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from .database import SessionLocal
from .models import SecurityEvent

logger = logging.getLogger(__name__)

# Event types
WEBHOOK_RATE_LIMIT = "WEBHOOK_RATE_LIMIT"
MISSING_WEBHOOK_SIGNATURE = "MISSING_WEBHOOK_SIGNATURE"
INVALID_WEBHOOK_SIGNATURE = "INVALID_WEBHOOK_SIGNATURE"
WEBHOOK_INVALID_JSON = "WEBHOOK_INVALID_JSON"
WEBHOOK_VALIDATION_FAILED = "WEBHOOK_VALIDATION_FAILED"
UNHANDLED_WEBHOOK_EVENT = "UNHANDLED_WEBHOOK_EVENT"
DUPLICATE_WEBHOOK_IGNORED = "DUPLICATE_WEBHOOK_IGNORED"
INVALID_BUSINESS_PAYMENT = "INVALID_BUSINESS_PAYMENT"
BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"
INVALID_PAYMENT_METADATA = "INVALID_PAYMENT_METADATA"
CLIENT_PAYMENT_SUCCESS = "CLIENT_PAYMENT_SUCCESS"
WEBHOOK_PROCESSED_SUCCESS = "WEBHOOK_PROCESSED_SUCCESS"
SETTLEMENT_PARTIAL = "SETTLEMENT_PARTIAL"
CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
WEBHOOK_ERROR = "WEBHOOK_ERROR"


class SecurityEventLogger:
    """Appends audit rows using its own short-lived session"""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def log(
        self,
        event_type: str,
        description: str,
        metadata: Optional[dict[str, Any]] = None,
        severity: str = "info",
    ) -> bool:
        """Write one event. Returns False (never raises) when the write fails."""
        payload = dict(metadata or {})
        payload.setdefault("timestamp", datetime.utcnow().isoformat())

        try:
            db = self.session_factory()
        except Exception as e:
            logger.error(f"❌ Failed to open session for security event {event_type}: {e}")
            return False

        try:
            db.add(
                SecurityEvent(
                    event_type=event_type,
                    description=description,
                    severity=severity,
                    event_metadata=payload,
                )
            )
            db.commit()
            logger.debug(f"🛡️ Security event logged: {event_type}")
            return True
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Failed to log security event {event_type}: {e}")
            return False
        finally:
            db.close()


def get_security_logger(request: Request) -> SecurityEventLogger:
    """FastAPI dependency: one logger per application"""
    security_logger = getattr(request.app.state, "security_logger", None)
    if security_logger is None:
        security_logger = SecurityEventLogger()
        request.app.state.security_logger = security_logger
    return security_logger
