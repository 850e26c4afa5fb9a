"""Transition tables for every transfer kind.

All four hand-off workflows share one graph shape; each kind only renames
statuses and drops the steps it does not need. ``KIND_DEFINITIONS`` is the
single lookup keyed by ``(kind, status, event)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from app.edutrack.core.context import ORG_COUNCIL, ORG_SCHOOL, ORG_SUPPLIER, ORG_WAREHOUSE
from app.edutrack.core.error_catalog import InvalidTransitionError, ValidationError


SUPPLIER_RECEIPT = "SUPPLIER_RECEIPT"
DIRECT_SHIPMENT = "DIRECT_SHIPMENT"
COUNCIL_SHIPMENT = "COUNCIL_SHIPMENT"
DISTRIBUTION = "DISTRIBUTION"
TRANSFER_KINDS = (SUPPLIER_RECEIPT, DIRECT_SHIPMENT, COUNCIL_SHIPMENT, DISTRIBUTION)

CREATE = "CREATE"
AMEND = "AMEND"
DISPATCH = "DISPATCH"
MARK_IN_TRANSIT = "MARK_IN_TRANSIT"
DELIVER = "DELIVER"
RECEIVE = "RECEIVE"
VALIDATE = "VALIDATE"
CANCEL = "CANCEL"
TRANSFER_EVENTS = (CREATE, AMEND, DISPATCH, MARK_IN_TRANSIT, DELIVER, RECEIVE, VALIDATE, CANCEL)

DRAFT = "DRAFT"
PENDING = "PENDING"
CREATED = "CREATED"
DISPATCHED = "DISPATCHED"
IN_TRANSIT = "IN_TRANSIT"
DELIVERED = "DELIVERED"
RECEIVED = "RECEIVED"
CONFIRMED = "CONFIRMED"
VALIDATED = "VALIDATED"
DISCREPANCY = "DISCREPANCY"
CANCELLED = "CANCELLED"

ORIGIN = "origin"
DESTINATION = "destination"


@dataclass(frozen=True)
class KindDefinition:
    kind: str
    reference_prefix: str
    origin_type: str
    destination_type: str
    initial_status: str
    clean_status: str
    statuses: frozenset[str]
    edges: dict[tuple[str, str], frozenset[str]]
    pre_dispatch: frozenset[str]
    awaiting_receipt: frozenset[str]
    # Receive runs reconciliation unless a separate validation step does it.
    reconcile_on_receive: bool = True
    # Events this kind folds into another step; repeating them is a no-op from these statuses.
    collapsed: dict[str, frozenset[str]] = field(default_factory=dict)

    def targets(self, status: str, event: str) -> frozenset[str] | None:
        if event == AMEND:
            return frozenset({status}) if status in self.pre_dispatch else None
        return self.edges.get((status, event))

    def event_targets(self, event: str) -> frozenset[str]:
        result: set[str] = set()
        for (_, edge_event), targets in self.edges.items():
            if edge_event == event:
                result.update(targets)
        result.update(self.collapsed.get(event, frozenset()))
        return frozenset(result)

    def side_type(self, side: str) -> str:
        return self.origin_type if side == ORIGIN else self.destination_type


def _edges(*rows: tuple[Iterable[str], str, Iterable[str]]) -> dict[tuple[str, str], frozenset[str]]:
    table: dict[tuple[str, str], frozenset[str]] = {}
    for sources, event, targets in rows:
        for source in sources:
            table[(source, event)] = frozenset(targets)
    return table


KIND_DEFINITIONS: dict[str, KindDefinition] = {
    SUPPLIER_RECEIPT: KindDefinition(
        kind=SUPPLIER_RECEIPT,
        reference_prefix="SR",
        origin_type=ORG_SUPPLIER,
        destination_type=ORG_WAREHOUSE,
        initial_status=DRAFT,
        clean_status=VALIDATED,
        statuses=frozenset({DRAFT, RECEIVED, VALIDATED, DISCREPANCY, CANCELLED}),
        edges=_edges(
            ([DRAFT], RECEIVE, [RECEIVED]),
            ([RECEIVED, DISCREPANCY], VALIDATE, [VALIDATED, DISCREPANCY]),
            ([DRAFT], CANCEL, [CANCELLED]),
        ),
        pre_dispatch=frozenset({DRAFT}),
        awaiting_receipt=frozenset({DRAFT}),
        reconcile_on_receive=False,
    ),
    DIRECT_SHIPMENT: KindDefinition(
        kind=DIRECT_SHIPMENT,
        reference_prefix="DS",
        origin_type=ORG_WAREHOUSE,
        destination_type=ORG_SCHOOL,
        initial_status=PENDING,
        clean_status=CONFIRMED,
        statuses=frozenset({PENDING, DISPATCHED, IN_TRANSIT, DELIVERED, CONFIRMED, DISCREPANCY, CANCELLED}),
        edges=_edges(
            ([PENDING], DISPATCH, [DISPATCHED]),
            ([DISPATCHED], MARK_IN_TRANSIT, [IN_TRANSIT]),
            ([IN_TRANSIT], DELIVER, [DELIVERED]),
            ([DISPATCHED, IN_TRANSIT, DELIVERED, DISCREPANCY], RECEIVE, [CONFIRMED, DISCREPANCY]),
            ([DISCREPANCY], VALIDATE, [CONFIRMED, DISCREPANCY]),
            ([PENDING], CANCEL, [CANCELLED]),
        ),
        pre_dispatch=frozenset({PENDING}),
        awaiting_receipt=frozenset({DISPATCHED, IN_TRANSIT, DELIVERED}),
    ),
    COUNCIL_SHIPMENT: KindDefinition(
        kind=COUNCIL_SHIPMENT,
        reference_prefix="SH",
        origin_type=ORG_WAREHOUSE,
        destination_type=ORG_COUNCIL,
        initial_status=DRAFT,
        clean_status=RECEIVED,
        statuses=frozenset({DRAFT, IN_TRANSIT, RECEIVED, DISCREPANCY, CANCELLED}),
        edges=_edges(
            ([DRAFT], DISPATCH, [IN_TRANSIT]),
            ([IN_TRANSIT, DISCREPANCY], RECEIVE, [RECEIVED, DISCREPANCY]),
            ([DISCREPANCY], VALIDATE, [RECEIVED, DISCREPANCY]),
            ([DRAFT], CANCEL, [CANCELLED]),
        ),
        pre_dispatch=frozenset({DRAFT}),
        awaiting_receipt=frozenset({IN_TRANSIT}),
        collapsed={MARK_IN_TRANSIT: frozenset({IN_TRANSIT})},
    ),
    DISTRIBUTION: KindDefinition(
        kind=DISTRIBUTION,
        reference_prefix="DN",
        origin_type=ORG_COUNCIL,
        destination_type=ORG_SCHOOL,
        initial_status=CREATED,
        clean_status=CONFIRMED,
        statuses=frozenset({CREATED, CONFIRMED, DISCREPANCY, CANCELLED}),
        edges=_edges(
            ([CREATED, DISCREPANCY], RECEIVE, [CONFIRMED, DISCREPANCY]),
            ([DISCREPANCY], VALIDATE, [CONFIRMED, DISCREPANCY]),
            ([CREATED], CANCEL, [CANCELLED]),
        ),
        pre_dispatch=frozenset({CREATED}),
        awaiting_receipt=frozenset({CREATED}),
    ),
}


@dataclass(frozen=True)
class TransitionDecision:
    event: str
    from_status: str
    targets: frozenset[str]
    noop: bool = False


def get_kind(kind: str) -> KindDefinition:
    definition = KIND_DEFINITIONS.get(kind)
    if definition is None:
        raise ValidationError("unknown transfer kind", kind=kind, allowed=list(TRANSFER_KINDS))
    return definition


def check_transition(kind: str, status: str, event: str, *, transfer_id: str | None = None) -> TransitionDecision:
    """Decide whether ``event`` may fire from ``status``.

    Re-sending an event whose outcome the transfer already shows returns a
    ``noop`` decision instead of an error, so duplicate submissions are safe.
    """
    definition = get_kind(kind)
    targets = definition.targets(status, event)
    if targets:
        return TransitionDecision(event=event, from_status=status, targets=targets)
    if status in definition.event_targets(event):
        return TransitionDecision(event=event, from_status=status, targets=frozenset({status}), noop=True)
    raise InvalidTransitionError(kind=kind, event=event, current_status=status, transfer_id=transfer_id)


def reconciliation_target(kind: str, has_discrepancy: bool) -> str:
    return DISCREPANCY if has_discrepancy else get_kind(kind).clean_status


def resolve_target(decision: TransitionDecision, desired: str, *, kind: str, transfer_id: str | None = None) -> str:
    if desired not in decision.targets:
        raise InvalidTransitionError(
            kind=kind,
            event=decision.event,
            current_status=decision.from_status,
            transfer_id=transfer_id,
        )
    return desired


def is_legal_step(kind: str, from_status: str, to_status: str) -> bool:
    definition = get_kind(kind)
    if from_status == to_status and from_status in definition.pre_dispatch:
        return True
    return any(
        source == from_status and to_status in targets for (source, _), targets in definition.edges.items()
    )


def replay(kind: str, steps: Iterable[tuple[int, str | None, str]]) -> str:
    """Fold ``(sequence_number, from_status, to_status)`` steps into a final status.

    Raises ``InvalidTransitionError`` when the history has a gap, does not
    start at the kind's initial status, or takes an edge the table lacks.
    """
    definition = get_kind(kind)
    current: str | None = None
    expected_sequence = 1
    for sequence_number, from_status, to_status in steps:
        if sequence_number != expected_sequence:
            raise InvalidTransitionError(kind=kind, event="REPLAY", current_status=current)
        if current is None:
            if from_status is not None or to_status != definition.initial_status:
                raise InvalidTransitionError(kind=kind, event="REPLAY", current_status=from_status)
        elif from_status != current or not is_legal_step(kind, current, to_status):
            raise InvalidTransitionError(kind=kind, event="REPLAY", current_status=current)
        current = to_status
        expected_sequence += 1
    if current is None:
        raise InvalidTransitionError(kind=kind, event="REPLAY", current_status=None)
    return current
