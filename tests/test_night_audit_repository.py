"""Tests for the night audit statistics queries."""

import os
import uuid
from datetime import date
from unittest.mock import MagicMock

import pytest

from staybook.domain.folio import ChargeInput, FolioItemType
from staybook.infra.repositories import night_audit_repository

TEST_PROPERTY_ID = "test-property-ledger"
NIGHT = date(2030, 1, 1)


def test_room_charge_totals_skips_reversed_originals():
    cur = MagicMock()
    cur.fetchone.return_value = (1, 15000)

    assert night_audit_repository.room_charge_totals(
        cur, property_id="prop-1", business_date=NIGHT
    ) == (1, 15000)

    sql, params = cur.execute.call_args.args
    assert "NOT EXISTS (SELECT 1 FROM folio_items r WHERE r.reverses_item_id = fi.id)" in sql
    assert params == ("prop-1", NIGHT)


@pytest.mark.skipif(not os.environ.get("DATABASE_URL"), reason="DATABASE_URL not set")
def test_voided_room_night_is_not_counted():
    from staybook.infra.db import txn
    from staybook.services import folio_service

    with txn() as cur:
        cur.execute(
            """
            INSERT INTO properties (id, name, code, currency)
            VALUES (%s, %s, %s, 'USD')
            ON CONFLICT (id) DO NOTHING
            """,
            (TEST_PROPERTY_ID, "Ledger Test Property", "LTP"),
        )
        cur.execute(
            "INSERT INTO guests (property_id, first_name, last_name) VALUES (%s, 'Ada', 'Lovelace') RETURNING id",
            (TEST_PROPERTY_ID,),
        )
        guest_id = str(cur.fetchone()[0])
        cur.execute(
            "INSERT INTO rooms (property_id, room_number) VALUES (%s, %s) RETURNING id",
            (TEST_PROPERTY_ID, f"T-{uuid.uuid4().hex[:8]}"),
        )
        room_id = str(cur.fetchone()[0])

    with txn() as cur:
        rooms_before, _ = night_audit_repository.room_charge_totals(
            cur, property_id=TEST_PROPERTY_ID, business_date=NIGHT
        )
        folio = folio_service.open_folio(cur, property_id=TEST_PROPERTY_ID, guest_id=guest_id)
        posted = folio_service.post_charge(
            cur,
            property_id=TEST_PROPERTY_ID,
            folio_id=folio["id"],
            item=ChargeInput(
                item_type=FolioItemType.ROOM_CHARGE,
                description="Room night",
                unit_price_cents=15000,
                service_date=NIGHT,
                room_id=room_id,
            ),
        )
        assert night_audit_repository.room_charge_totals(
            cur, property_id=TEST_PROPERTY_ID, business_date=NIGHT
        )[0] == rooms_before + 1

        folio_service.void_item(
            cur,
            property_id=TEST_PROPERTY_ID,
            folio_id=folio["id"],
            item_id=posted["posted_items"][0]["id"],
            reason="Walked guest",
        )
        rooms_after, _ = night_audit_repository.room_charge_totals(
            cur, property_id=TEST_PROPERTY_ID, business_date=NIGHT
        )
    assert rooms_after == rooms_before
