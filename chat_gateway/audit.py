"""
Audit logging. Security-relevant events only; no tokens, secrets, or request bodies.
"""
import logging

from fastapi import Request
from sqlalchemy.orm import Session

from chat_gateway.models import AuditLog

logger = logging.getLogger(__name__)

EVENT_TOKEN_ISSUED = "token_issued"
EVENT_TOKEN_DENIED = "token_denied"
EVENT_AUTH_REJECTED = "auth_rejected"

OUTCOME_SUCCESS = "success"
OUTCOME_FAIL = "fail"


def get_client_ip(request: Request | None) -> str | None:
    """Client IP if available (request.client.host). Forwarding headers are not trusted."""
    if request is None or request.client is None:
        return None
    return getattr(request.client, "host", None)


def log_audit(
    db: Session,
    event_type: str,
    *,
    grant_type: str | None = None,
    subject: str | None = None,
    role: str | None = None,
    reason: str | None = None,
    ip: str | None = None,
    outcome: str = OUTCOME_SUCCESS,
) -> None:
    """Append one audit record."""
    db.add(
        AuditLog(
            event_type=event_type,
            grant_type=grant_type,
            subject=subject,
            role=role,
            reason=reason,
            ip=ip,
            outcome=outcome,
        )
    )
    db.commit()


def query_audit_logs(
    db: Session,
    *,
    limit: int = 100,
    event_type: str | None = None,
    outcome: str | None = None,
) -> list[dict]:
    """Most recent first; limit capped at 500."""
    q = db.query(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    if event_type:
        q = q.filter(AuditLog.event_type == event_type)
    if outcome:
        q = q.filter(AuditLog.outcome == outcome)
    rows = q.limit(min(max(1, limit), 500)).all()
    return [
        {
            "created_at": r.created_at.isoformat() if r.created_at else None,
            "event_type": r.event_type,
            "grant_type": r.grant_type,
            "subject": r.subject,
            "role": r.role,
            "reason": r.reason,
            "ip": r.ip,
            "outcome": r.outcome,
        }
        for r in rows
    ]
