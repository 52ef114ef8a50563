"""
Audit trail for dispatch actions.

Entries are append-only and hashed (SHA-256 over canonical JSON plus a
secret), so a row edited after the fact no longer verifies.
"""
import hashlib
import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import AuditLog, utcnow


def _canonical(
    entity_type: str,
    entity_id: int,
    action: str,
    actor_id: Optional[str],
    actor_role: Optional[str],
    source: Optional[str],
    timestamp_utc: datetime,
    changes: Optional[Dict],
    context: Optional[Dict],
) -> str:
    data = {
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "action": action,
        "actor_id": actor_id,
        "actor_role": actor_role,
        "source": source,
        # SQLite hands datetimes back naive; hash the wall-clock value only
        "timestamp_utc": timestamp_utc.replace(tzinfo=None).isoformat(),
        "changes": changes,
        "context": context,
    }
    data = {k: v for k, v in data.items() if v is not None}
    return json.dumps(data, sort_keys=True, default=str)


def _digest(canonical_json: str, secret: str) -> str:
    return hashlib.sha256(f"{canonical_json}:{secret}".encode()).hexdigest()


def create_audit_log(
    db: Session,
    entity_type: str,
    entity_id: int,
    action: str,
    actor_id: Optional[str] = None,
    actor_role: Optional[str] = None,
    source: Optional[str] = None,
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    integrity_secret: Optional[str] = None,
) -> AuditLog:
    """
    Add an audit entry to the caller's transaction.

    Flushed, not committed: the entry becomes visible together with the
    state change it describes, or not at all.

    Args:
        entity_type: order|time_slot|job_completion|subcontractor
        action: CLAIM|CANCEL|COMPLETE|TRANSITION|STATUS_OVERRIDE|DELETE
        actor_role: dispatcher|subcontractor|system
        changes_json: Before/after diff
        context: Related ids and statuses
        integrity_secret: Defaults to AUDIT_SECRET; no hash when empty
    """
    secret = settings.audit_secret if integrity_secret is None else integrity_secret
    timestamp_utc = utcnow()
    actor_id = str(actor_id) if actor_id is not None else None
    source = source or "system"
    changes_json = _jsonable(changes_json)
    context = _jsonable(context)

    integrity_hash = None
    if secret:
        integrity_hash = _digest(
            _canonical(entity_type, entity_id, action, actor_id, actor_role, source, timestamp_utc, changes_json, context),
            secret,
        )

    entry = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        actor_role=actor_role,
        source=source,
        changes_json=changes_json,
        timestamp_utc=timestamp_utc,
        context=context,
        integrity_hash=integrity_hash,
    )
    db.add(entry)
    db.flush()
    return entry


def verify_audit_log(entry: AuditLog, integrity_secret: Optional[str] = None) -> bool:
    """True if the stored hash still matches the entry's contents."""
    secret = settings.audit_secret if integrity_secret is None else integrity_secret
    if not secret or not entry.integrity_hash:
        return False
    expected = _digest(
        _canonical(
            entry.entity_type,
            entry.entity_id,
            entry.action,
            entry.actor_id,
            entry.actor_role,
            entry.source,
            entry.timestamp_utc,
            entry.changes_json,
            entry.context,
        ),
        secret,
    )
    return expected == entry.integrity_hash


def get_audit_logs(
    db: Session,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[AuditLog]:
    """Audit entries, newest first."""
    query = db.query(AuditLog)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == entity_id)
    return (
        query.order_by(AuditLog.timestamp_utc.desc(), AuditLog.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )


def compute_diff(before: Dict, after: Dict) -> Dict:
    """Before/after pairs for the keys whose values differ."""
    diff = {}
    for key in set(before) | set(after):
        if before.get(key) != after.get(key):
            diff[key] = {"before": before.get(key), "after": after.get(key)}
    return diff


def _jsonable(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    # JSON columns cannot hold datetimes/dates
    if data is None:
        return None
    return json.loads(json.dumps(data, default=str))
