# Overview: Service-layer operations for suppliers and customers; one soft-deletable registry for both.

"""
Counterparty registry.

Suppliers and customers are the same record shape with a different table.
PartyRegistry wraps either model with create / get / list / soft delete /
restore so orders always reference a live counterparty.
"""

from __future__ import annotations

import math

from sqlalchemy import or_

from ..errors import NotFoundError, ValidationError
from ..models import Customer, Supplier
from .concurrency import atomic
from orderledger.time_utils import utcnow

WRITABLE_FIELDS = {"code", "name", "contact_name", "phone", "email", "address"}


class PartyRegistry:
    def __init__(self, session, model):
        if model not in (Supplier, Customer):
            raise ValueError(f"Unsupported party model {model!r}")
        self.session = session
        self.model = model
        self.label = model.__name__

    def _clean(self, payload: dict, *, partial: bool) -> dict:
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        unknown = set(payload) - WRITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")
        patch = {k: (str(v).strip() if v is not None else None) for k, v in payload.items()}
        if not partial:
            for required in ("code", "name"):
                if not patch.get(required):
                    raise ValidationError(f"{required} is required")
        for required in ("code", "name"):
            if required in patch and not patch[required]:
                raise ValidationError(f"{required} cannot be blank")
        return patch

    def create(self, payload: dict):
        patch = self._clean(payload, partial=False)
        with atomic(self.session):
            if self.session.query(self.model).filter_by(code=patch["code"]).first() is not None:
                raise ValidationError(f"{self.label} code {patch['code']!r} already exists")
            party = self.model(**patch)
            self.session.add(party)
        return party

    def get(self, party_id: int, *, include_deleted: bool = False):
        party = self.session.get(self.model, party_id)
        if party is None or (party.is_deleted and not include_deleted):
            raise NotFoundError(f"{self.label} {party_id} not found")
        return party

    def update(self, party_id: int, payload: dict):
        patch = self._clean(payload, partial=True)
        with atomic(self.session):
            party = self.get(party_id)
            if "code" in patch and patch["code"] != party.code:
                if self.session.query(self.model).filter_by(code=patch["code"]).first() is not None:
                    raise ValidationError(f"{self.label} code {patch['code']!r} already exists")
            for key, value in patch.items():
                setattr(party, key, value)
        return party

    def list(self, *, page: int = 1, limit: int = 10, search: str | None = None,
             include_deleted: bool = False, max_limit: int = 100) -> dict:
        page = max(page or 1, 1)
        limit = max(1, min(limit or 10, max_limit))
        query = self.session.query(self.model)
        if not include_deleted:
            query = query.filter(self.model.is_deleted.is_(False))
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(self.model.name.ilike(pattern), self.model.code.ilike(pattern)))

        total = query.count()
        rows = query.order_by(self.model.name.asc(), self.model.id.asc()).offset((page - 1) * limit).limit(limit).all()
        total_pages = math.ceil(total / limit) if total else 0
        return {
            "data": [r.to_dict() for r in rows],
            "pagination": {
                "current_page": page,
                "per_page": limit,
                "total_pages": total_pages,
                "total_records": total,
                "has_next": page < total_pages,
                "has_prev": page > 1,
            },
        }

    def soft_delete(self, party_id: int):
        with atomic(self.session):
            party = self.get(party_id)
            party.is_deleted = True
            party.deleted_at = utcnow()
        return party

    def restore(self, party_id: int):
        with atomic(self.session):
            party = self.get(party_id, include_deleted=True)
            if not party.is_deleted:
                raise NotFoundError(f"{self.label} {party_id} is not deleted")
            party.is_deleted = False
            party.deleted_at = None
        return party
