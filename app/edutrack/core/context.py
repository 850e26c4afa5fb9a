from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request


ORG_WAREHOUSE = "warehouse"
ORG_COUNCIL = "council"
ORG_SCHOOL = "school"
ORG_SUPPLIER = "supplier"


@dataclass(frozen=True)
class Identity:
    """Caller identity as asserted by the external auth layer.

    The transfer core trusts these fields and never derives them.
    """

    user_id: str
    role: str
    warehouse_id: str | None = None
    council_id: str | None = None
    school_id: str | None = None

    def org_ref(self, org_type: str) -> str | None:
        if org_type == ORG_WAREHOUSE:
            return self.warehouse_id
        if org_type == ORG_COUNCIL:
            return self.council_id
        if org_type == ORG_SCHOOL:
            return self.school_id
        return None


def build_identity(
    *,
    user_id: str,
    role: str | None,
    warehouse_id: str | None = None,
    council_id: str | None = None,
    school_id: str | None = None,
) -> Identity:
    return Identity(
        user_id=str(user_id),
        role=(role or "").strip().lower(),
        warehouse_id=str(warehouse_id) if warehouse_id else None,
        council_id=str(council_id) if council_id else None,
        school_id=str(school_id) if school_id else None,
    )


def get_request_identity(request: Request) -> Identity | None:
    identity = getattr(request.state, "identity", None)
    if isinstance(identity, Identity):
        return identity
    return None
