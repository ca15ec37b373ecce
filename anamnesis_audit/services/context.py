"""Best-effort request context captured alongside audit entries and snapshots."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    ip_address: str | None = None
    user_agent: str | None = None
    session_id: str | None = None
    path: str | None = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str] | None, path: str | None = None) -> RequestContext:
        """
        Extract client IP, user agent and session id from request headers.

        Missing or malformed headers never raise; the field is left empty.
        """
        if not headers:
            return cls(path=path)
        try:
            lowered = {str(k).lower(): v for k, v in headers.items()}
            forwarded = lowered.get("x-forwarded-for") or ""
            ip = forwarded.split(",")[0].strip() or lowered.get("x-real-ip") or None
            user_agent = lowered.get("user-agent")
            return cls(
                ip_address=ip,
                user_agent=user_agent[:512] if user_agent else None,
                session_id=lowered.get("x-session-id") or None,
                path=path,
            )
        except (AttributeError, TypeError):
            logger.debug("Unreadable request headers, recording empty context")
            return cls(path=path)
