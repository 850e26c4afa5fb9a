"""Capability table for transfer events.

Each ``(kind, event)`` grants a set of roles, refined by a scope predicate:
the actor's own warehouse, council or school must equal the transfer's
reference on the named side.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.edutrack.core.context import ORG_COUNCIL, ORG_SCHOOL, ORG_WAREHOUSE, Identity
from app.edutrack.core.error_catalog import AuthorizationError
from app.edutrack.core.metrics import metrics
from app.edutrack.repos.transfers import VisibilityRule
from app.edutrack.services.state_machine import (
    AMEND,
    CANCEL,
    COUNCIL_SHIPMENT,
    CREATE,
    DELIVER,
    DESTINATION,
    DIRECT_SHIPMENT,
    DISPATCH,
    DISTRIBUTION,
    KIND_DEFINITIONS,
    MARK_IN_TRANSIT,
    ORIGIN,
    RECEIVE,
    SUPPLIER_RECEIPT,
    VALIDATE,
    get_kind,
)

logger = logging.getLogger(__name__)


SUPER_ADMIN = "super_admin"
SYSTEM_ADMIN = "system_admin"
NATIONAL_MANAGER = "national_manager"
WAREHOUSE_MANAGER = "warehouse_manager"
LC_OFFICER = "lc_officer"
DISTRICT_OFFICER = "district_officer"
SCHOOL_REP = "school_rep"
VIEW_ONLY = "view_only"

ROLES = (
    SUPER_ADMIN,
    SYSTEM_ADMIN,
    NATIONAL_MANAGER,
    WAREHOUSE_MANAGER,
    LC_OFFICER,
    DISTRICT_OFFICER,
    SCHOOL_REP,
    VIEW_ONLY,
)

WAREHOUSE_STAFF = frozenset({NATIONAL_MANAGER, WAREHOUSE_MANAGER})
COUNCIL_OFFICERS = frozenset({LC_OFFICER, DISTRICT_OFFICER})
SCHOOL_STAFF = frozenset({SCHOOL_REP})
GLOBAL_READERS = frozenset({SUPER_ADMIN, SYSTEM_ADMIN, VIEW_ONLY})

ROLE_ORG_TYPES = {
    NATIONAL_MANAGER: ORG_WAREHOUSE,
    WAREHOUSE_MANAGER: ORG_WAREHOUSE,
    LC_OFFICER: ORG_COUNCIL,
    DISTRICT_OFFICER: ORG_COUNCIL,
    SCHOOL_REP: ORG_SCHOOL,
}

SENDER_EVENTS = (CREATE, AMEND, DISPATCH, MARK_IN_TRANSIT, DELIVER, CANCEL)


@dataclass(frozen=True)
class Capability:
    roles: frozenset[str]
    side: str


@dataclass(frozen=True)
class TransferRefs:
    """Origin and destination of a transfer that does not exist yet."""

    origin_ref: str
    destination_ref: str
    id: str | None = None
    status: str | None = None


def _kind_capabilities(sender: Capability, receiver: Capability, validator: Capability) -> dict[str, Capability]:
    table = {event: sender for event in SENDER_EVENTS}
    table[RECEIVE] = receiver
    table[VALIDATE] = validator
    return table


CAPABILITIES: dict[tuple[str, str], Capability] = {
    (kind, event): capability
    for kind, events in {
        SUPPLIER_RECEIPT: _kind_capabilities(
            Capability(WAREHOUSE_STAFF, DESTINATION),
            Capability(WAREHOUSE_STAFF, DESTINATION),
            Capability(frozenset({NATIONAL_MANAGER}), DESTINATION),
        ),
        DIRECT_SHIPMENT: _kind_capabilities(
            Capability(WAREHOUSE_STAFF, ORIGIN),
            Capability(SCHOOL_STAFF, DESTINATION),
            Capability(WAREHOUSE_STAFF, ORIGIN),
        ),
        COUNCIL_SHIPMENT: _kind_capabilities(
            Capability(WAREHOUSE_STAFF, ORIGIN),
            Capability(COUNCIL_OFFICERS, DESTINATION),
            Capability(WAREHOUSE_STAFF, ORIGIN),
        ),
        DISTRIBUTION: _kind_capabilities(
            Capability(COUNCIL_OFFICERS, ORIGIN),
            Capability(SCHOOL_STAFF, DESTINATION),
            Capability(COUNCIL_OFFICERS, ORIGIN),
        ),
    }.items()
    for event, capability in events.items()
}


def has_national_scope(actor: Identity) -> bool:
    return actor.role == NATIONAL_MANAGER and not actor.warehouse_id


def _side_ref(transfer, side: str) -> str | None:
    value = transfer.origin_ref if side == ORIGIN else transfer.destination_ref
    return str(value) if value is not None else None


class AuthorizationGate:
    def capability(self, kind: str, event: str) -> Capability | None:
        return CAPABILITIES.get((kind, event))

    def is_allowed(self, actor: Identity, kind: str, event: str, transfer) -> bool:
        if actor.role == SUPER_ADMIN:
            return True
        capability = self.capability(kind, event)
        if capability is None or actor.role not in capability.roles:
            return False
        org_type = get_kind(kind).side_type(capability.side)
        if org_type == ORG_WAREHOUSE and has_national_scope(actor):
            return True
        actor_ref = actor.org_ref(org_type)
        return actor_ref is not None and actor_ref == _side_ref(transfer, capability.side)

    def authorize(self, actor: Identity, kind: str, event: str, transfer) -> None:
        if self.is_allowed(actor, kind, event, transfer):
            return
        metrics.increment_authorization_denied(kind=kind, event=event)
        transfer_id = getattr(transfer, "id", None)
        logger.warning(
            "Authorization denied",
            extra={"kind": kind, "event": event, "role": actor.role, "actor_id": actor.user_id},
        )
        raise AuthorizationError(
            "role or organizational scope does not permit this event",
            transfer_id=str(transfer_id) if transfer_id else None,
            current_status=getattr(transfer, "status", None),
            kind=kind,
            event=event,
            role=actor.role,
        )

    def visibility_rules(self, actor: Identity) -> list[VisibilityRule] | None:
        """``None`` when the actor may read every transfer."""
        if actor.role in GLOBAL_READERS or has_national_scope(actor):
            return None
        org_type = ROLE_ORG_TYPES.get(actor.role)
        actor_ref = actor.org_ref(org_type) if org_type else None
        if not actor_ref:
            return []
        rules: list[VisibilityRule] = []
        for side in (ORIGIN, DESTINATION):
            kinds = frozenset(
                kind for kind, definition in KIND_DEFINITIONS.items() if definition.side_type(side) == org_type
            )
            if kinds:
                rules.append(VisibilityRule(kinds=kinds, side=side, ref=actor_ref))
        return rules

    def can_view(self, actor: Identity, transfer) -> bool:
        rules = self.visibility_rules(actor)
        if rules is None:
            return True
        return any(
            transfer.kind in rule.kinds and _side_ref(transfer, rule.side) == rule.ref for rule in rules
        )

    def ensure_can_view(self, actor: Identity, transfer) -> None:
        if self.can_view(actor, transfer):
            return
        raise AuthorizationError(
            "transfer is outside the actor's organizational scope",
            transfer_id=str(transfer.id),
            current_status=transfer.status,
            role=actor.role,
        )
