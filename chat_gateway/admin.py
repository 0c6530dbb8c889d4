"""
Read-only audit log listing. Requires an access token with the admin role.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from chat_gateway.audit import query_audit_logs
from chat_gateway.auth import AccessTokenClaims, RequireAdmin
from chat_gateway.database import get_db

router = APIRouter(tags=["audit"])


@router.get("/audit")
def list_audit_logs(
    limit: int = 100,
    event_type: str | None = None,
    outcome: str | None = None,
    claims: AccessTokenClaims = RequireAdmin,
    db: Session = Depends(get_db),
):
    """Recent audit events, most recent first. No tokens or secrets."""
    return query_audit_logs(db, limit=limit, event_type=event_type, outcome=outcome)
