"""
Service layer: create, read and purge preview tokens.
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from signage.core.db import session_scope, utc_now
from signage.core.errors import TransientIOError, ValidationError
from signage.plugins.previews.models import PreviewToken

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600


def create_preview(config: Dict[str, Any], ttl_seconds: int = DEFAULT_TTL_SECONDS) -> PreviewToken:
    """Store config under a fresh token that stops resolving after ttl_seconds."""
    if not isinstance(config, dict):
        raise ValidationError("Preview config must be a JSON object")
    if ttl_seconds <= 0:
        raise ValidationError("Preview TTL must be positive", details={"ttl_seconds": ttl_seconds})
    now = utc_now()
    record = PreviewToken(
        token=secrets.token_urlsafe(12),
        config=config,
        created_at=now,
        expires_at=now + timedelta(seconds=ttl_seconds),
    )
    try:
        with session_scope() as session:
            session.add(record)
    except SQLAlchemyError as e:
        logger.error(f"Error creating preview: {e}")
        raise TransientIOError("Failed to create preview") from e
    logger.debug(f"Created preview {record.token} expiring at {record.expires_at}")
    return record


def get_preview(token: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """Return the stored config, or None if the token is unknown or expired (expired rows are removed)."""
    now = now or utc_now()
    try:
        with session_scope() as session:
            record = session.get(PreviewToken, token)
            if record is None:
                return None
            if record.expires_at <= now:
                session.delete(record)
                logger.info(f"Preview {token} expired at {record.expires_at}")
                return None
            return record.config
    except SQLAlchemyError as e:
        logger.error(f"Error reading preview {token}: {e}")
        raise TransientIOError("Failed to fetch preview") from e


def purge_expired_previews(now: Optional[datetime] = None) -> int:
    now = now or utc_now()
    with session_scope() as session:
        result = session.execute(delete(PreviewToken).where(PreviewToken.expires_at <= now))
        purged = result.rowcount or 0
    if purged:
        logger.info(f"Purged {purged} expired previews")
    return purged
