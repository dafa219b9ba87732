"""OCSF (Open Cybersecurity Schema Framework) event logging.

Emits structured security events for the session lifecycle. Events are
logged to the ``ocsf`` logger as JSON; consumers attach their own handlers
(CloudWatch JSON formatter, Firehose, structlog, etc.).

Raw session ids never appear in an event; only a short SHA-256 fingerprint.

Usage::

    from authsession import ocsf
    ocsf.session_event(
        activity_id=ocsf.AuthActivity.LOGON,
        status_id=ocsf.Status.SUCCESS,
        user_id="u1",
        session_id=session_id,
        message="Session created",
    )
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from .session.models import UserId, fingerprint

logger = logging.getLogger("ocsf")


class EventClass:
    AUTHENTICATION = 3001


class AuthActivity:
    LOGON = 1
    LOGOFF = 2
    SERVICE_TICKET = 4  # Session rotation
    OTHER = 99  # Superseded / expired / store failures


class Status:
    SUCCESS = 1
    FAILURE = 2


class Severity:
    INFORMATIONAL = 1
    LOW = 2
    MEDIUM = 3
    HIGH = 4
    CRITICAL = 5


_ACTIVITY_NAMES = {
    AuthActivity.LOGON: "Logon",
    AuthActivity.LOGOFF: "Logoff",
    AuthActivity.SERVICE_TICKET: "Service Ticket",
    AuthActivity.OTHER: "Other",
}

_SEVERITY_NAMES = {
    Severity.INFORMATIONAL: "Informational",
    Severity.LOW: "Low",
    Severity.MEDIUM: "Medium",
    Severity.HIGH: "High",
    Severity.CRITICAL: "Critical",
}

_PRODUCT = {
    "name": "authsession",
    "version": "0.1.0",
    "vendor_name": "authsession",
}


def emit(event: dict[str, Any]) -> None:
    """Log an OCSF event as JSON. Serialization problems are logged, not raised."""
    try:
        logger.info(json.dumps(event, default=str))
    except (TypeError, ValueError) as exc:
        logger.warning("Dropped unserializable OCSF event: %s", exc)


def session_event(
    *,
    activity_id: int,
    status_id: int,
    severity_id: int = Severity.INFORMATIONAL,
    user_id: UserId | None = None,
    session_id: str | None = None,
    message: str = "",
    extra_metadata: dict[str, Any] | None = None,
) -> None:
    """Emit an OCSF Authentication (3001) event for a session transition."""
    event: dict[str, Any] = {
        "class_uid": EventClass.AUTHENTICATION,
        "class_name": "Authentication",
        "activity_id": activity_id,
        "activity_name": _ACTIVITY_NAMES.get(activity_id, "Unknown"),
        "severity_id": severity_id,
        "severity": _SEVERITY_NAMES.get(severity_id, "Unknown"),
        "status_id": status_id,
        "status": "Success" if status_id == Status.SUCCESS else "Failure",
        "time": int(time.time() * 1000),
        "metadata": {
            "product": _PRODUCT,
            **(extra_metadata or {}),
        },
        "message": message,
    }
    if user_id is not None:
        event["actor"] = {
            "user": {
                "uid": str(user_id),
                "type_id": 1,
                "type": "User",
            }
        }
    if session_id:
        event["session"] = {"uid": fingerprint(session_id)}
    emit(event)
