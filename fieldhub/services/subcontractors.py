"""
Subcontractor registry. Email uniqueness is checked up front for a friendly
error and enforced by the store's UNIQUE constraint.
"""
from typing import Any, List, Mapping, Optional

import structlog
from sqlalchemy import desc, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import NotFoundError, UniquenessError
from ..models.models import Subcontractor, utcnow
from .validation import SUBCONTRACTOR_RULES, validate_create, validate_update

logger = structlog.get_logger(__name__)


def get_subcontractor(db: Session, subcontractor_id: int, lock: bool = False) -> Subcontractor:
    query = db.query(Subcontractor).filter(Subcontractor.id == subcontractor_id)
    if lock:
        query = query.with_for_update()
    subcontractor = query.first()
    if not subcontractor:
        raise NotFoundError("Subcontractor not found", code="SUBCONTRACTOR_NOT_FOUND")
    return subcontractor


def _ensure_email_free(db: Session, email: str, exclude_id: Optional[int] = None) -> None:
    query = db.query(Subcontractor.id).filter(Subcontractor.email == email)
    if exclude_id is not None:
        query = query.filter(Subcontractor.id != exclude_id)
    if query.first():
        raise UniquenessError("Email already exists", code="EMAIL_EXISTS", field="email")


def _commit_unique(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent write of the same email
        db.rollback()
        raise UniquenessError("Email already exists", code="EMAIL_EXISTS", field="email")


def create_subcontractor(db: Session, payload: Mapping[str, Any]) -> Subcontractor:
    data = validate_create(SUBCONTRACTOR_RULES, payload)
    _ensure_email_free(db, data["email"])

    subcontractor = Subcontractor(**data, created_at=utcnow())
    db.add(subcontractor)
    _commit_unique(db)
    db.refresh(subcontractor)
    logger.info(
        "subcontractor_created",
        subcontractor_id=subcontractor.id,
        max_daily_jobs=subcontractor.max_daily_jobs,
    )
    return subcontractor


def update_subcontractor(db: Session, subcontractor_id: int, payload: Mapping[str, Any]) -> Subcontractor:
    """Partial update; capacity and active-flag changes apply from the next claim on."""
    data = validate_update(SUBCONTRACTOR_RULES, payload)
    subcontractor = get_subcontractor(db, subcontractor_id, lock=True)

    if "email" in data and data["email"] != subcontractor.email:
        _ensure_email_free(db, data["email"], exclude_id=subcontractor.id)

    for field, value in data.items():
        setattr(subcontractor, field, value)
    subcontractor.updated_at = utcnow()

    _commit_unique(db)
    db.refresh(subcontractor)
    logger.info("subcontractor_updated", subcontractor_id=subcontractor.id, fields=sorted(data))
    return subcontractor


def list_subcontractors(
    db: Session,
    active: Optional[bool] = None,
    service_area: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Subcontractor]:
    query = db.query(Subcontractor)

    if active is not None:
        query = query.filter(Subcontractor.active == active)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Subcontractor.name.ilike(pattern), Subcontractor.email.ilike(pattern)))

    query = query.order_by(desc(Subcontractor.rating), Subcontractor.name.asc(), Subcontractor.id.asc())

    if service_area:
        # service_areas is a JSON list; match in Python to stay portable across backends
        wanted = service_area.strip().lower()
        matches = [
            s for s in query.all()
            if any(area.lower() == wanted for area in (s.service_areas or []))
        ]
        return matches[offset:offset + limit]

    return query.limit(limit).offset(offset).all()
