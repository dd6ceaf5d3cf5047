"""Ledger events for async consumers (billing mailer, reporting).

Events are inserted in the same transaction as the ledger change they
describe, so a rolled-back posting never announces itself. Payloads carry
ids and amounts only; consumers look up contact data themselves.
"""

import json
from dataclasses import dataclass, field
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from staybook.observability.correlation import get_correlation_id

FOLIO_OPENED = "folio.opened"
FOLIO_CLOSED = "folio.closed"
CORPORATE_BILLED = "corporate.billed"
NIGHT_AUDIT_STARTED = "night_audit.started"
NIGHT_AUDIT_COMPLETED = "night_audit.completed"


@dataclass(frozen=True)
class OutboxEvent:
    property_id: str
    event_type: str
    aggregate_type: str
    aggregate_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    correlation_id: str | None = None

    def payload_json(self) -> str | None:
        return json.dumps(self.payload, default=str, sort_keys=True) if self.payload else None


def _insert(cur: PgCursor, event: OutboxEvent) -> int:
    cur.execute(
        """
        INSERT INTO outbox_events (
            property_id, event_type, aggregate_type,
            aggregate_id, payload, correlation_id
        )
        VALUES (%s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            event.property_id,
            event.event_type,
            event.aggregate_type,
            str(event.aggregate_id),
            event.payload_json(),
            event.correlation_id or get_correlation_id() or None,
        ),
    )
    return cur.fetchone()[0]


def emit_event(
    cur: PgCursor,
    *,
    property_id: str,
    event_type: str,
    aggregate_type: str,
    aggregate_id: str,
    payload: dict | None = None,
    correlation_id: str | None = None,
) -> int:
    """Append an event to the outbox and return its id.

    correlation_id defaults to the active one.
    """
    return _insert(
        cur,
        OutboxEvent(
            property_id=property_id,
            event_type=event_type,
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            payload=payload or {},
            correlation_id=correlation_id,
        ),
    )


def emit_corporate_billed(
    cur: PgCursor,
    *,
    property_id: str,
    corporate_account_id: str,
    folio_id: str,
    folio_number: str,
    payment_id: str,
    amount_cents: int,
    currency: str,
) -> int:
    """One event per billed folio: the hand-off to the billing mailer."""
    return emit_event(
        cur,
        property_id=property_id,
        event_type=CORPORATE_BILLED,
        aggregate_type="corporate_account",
        aggregate_id=corporate_account_id,
        payload={
            "folio_id": folio_id,
            "folio_number": folio_number,
            "payment_id": payment_id,
            "amount_cents": amount_cents,
            "currency": currency,
        },
    )
