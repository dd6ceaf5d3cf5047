"""Tests for the folio ledger service (in-memory repositories)."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from staybook.domain.errors import (
    BusinessDateClosedError,
    FolioClosedError,
    FolioItemNotFoundError,
    FolioStateError,
    FolioVersionConflictError,
    ItemAlreadyReversedError,
    ReservationNotFoundError,
    RoomNightAlreadyChargedError,
    ValidationError,
)
from staybook.domain.folio import ChargeInput
from staybook.domain.taxes import TaxConfig, service_charge_config
from staybook.services import folio_service
from tests.ledger_fakes import PROPERTY_ID, FakeLedger

NIGHT = date(2024, 5, 1)


@pytest.fixture
def ledger(monkeypatch):
    fake = FakeLedger().install(monkeypatch)
    fake.tax_configs = [
        service_charge_config(Decimal("10")),
        TaxConfig(code="VAT", name="VAT", rate=Decimal("10"), calculation_order=1),
    ]
    fake.add_folio("folio-a")
    fake.add_folio("folio-b")
    return fake


@pytest.fixture
def cur():
    return MagicMock()


def _charge(item_type: str = "minibar", **kw) -> ChargeInput:
    data = {"item_type": item_type, "description": "Minibar", "quantity": 2, "unit_price_cents": 500,
            "service_date": NIGHT}
    data.update(kw)
    return ChargeInput(**data)


def _post(cur, folio_id: str = "folio-a", **kw) -> dict:
    return folio_service.post_charge(cur, property_id=PROPERTY_ID, folio_id=folio_id, item=_charge(**kw))


class TestPostCharge:
    def test_posts_charge_with_derived_lines(self, ledger, cur):
        folio = _post(cur)

        charge, *derived = folio["posted_items"]
        assert charge["amount_cents"] == 1000
        assert [(d["item_type"], d["amount_cents"]) for d in derived] == [("service_charge", 100), ("tax", 100)]
        assert all(d["parent_item_id"] == charge["id"] for d in derived)
        assert folio["subtotal_cents"] == 1000
        assert folio["tax_cents"] == 100
        assert folio["service_charge_cents"] == 100
        assert folio["balance_cents"] == 1200
        assert folio["version"] == 1

    def test_untaxed_type_posts_single_line(self, ledger, cur):
        folio = folio_service.post_charge(
            cur,
            property_id=PROPERTY_ID,
            folio_id="folio-a",
            item=ChargeInput(item_type="deposit", description="Advance", unit_price_cents=5000),
        )
        assert len(folio["posted_items"]) == 1
        assert folio["balance_cents"] == -5000

    def test_totals_always_match_history(self, ledger, cur):
        for price in (333, 1017, 45):
            _post(cur, unit_price_cents=price, quantity=1)
        folio = ledger.folios["folio-a"]
        assert folio["total_cents"] == sum(i["amount_cents"] for i in ledger.items_of("folio-a"))

    def test_closed_folio_rejected(self, ledger, cur):
        ledger.folios["folio-a"]["status"] = "closed"
        with pytest.raises(FolioClosedError):
            _post(cur)
        assert ledger.items == []

    def test_stale_version_rejected(self, ledger, cur):
        with pytest.raises(FolioVersionConflictError):
            folio_service.post_charge(
                cur, property_id=PROPERTY_ID, folio_id="folio-a", item=_charge(), expected_version=3
            )

    def test_sealed_business_date_rejected(self, ledger, cur):
        ledger.sealed.add(NIGHT)
        with pytest.raises(BusinessDateClosedError):
            _post(cur)

    def test_room_night_charged_once(self, ledger, cur):
        _post(cur, item_type="room_charge", room_id="room-101", quantity=1, unit_price_cents=15000)
        with pytest.raises(RoomNightAlreadyChargedError):
            _post(cur, "folio-b", item_type="room_charge", room_id="room-101", quantity=1, unit_price_cents=15000)
        # the next night is a different charge
        _post(cur, item_type="room_charge", room_id="room-101", quantity=1, unit_price_cents=15000,
              service_date=date(2024, 5, 2))


class TestPostingDate:
    """Between the audit run and the 06:00 rollover the audited date is sealed."""

    @pytest.fixture(autouse=True)
    def after_audit(self, ledger, monkeypatch):
        ledger.sealed.add(NIGHT)
        monkeypatch.setattr(
            folio_service, "local_now", lambda tz: datetime(2024, 5, 2, 3, 0, tzinfo=timezone.utc)
        )

    def test_charge_without_date_goes_to_next_day(self, ledger, cur):
        folio = _post(cur, service_date=None)
        assert {i["service_date"] for i in folio["posted_items"]} == {"2024-05-02"}
        assert folio["balance_cents"] == 1200

    def test_explicit_sealed_date_still_rejected(self, ledger, cur):
        with pytest.raises(BusinessDateClosedError):
            _post(cur)

    def test_adjustment_transfer_and_void_allowed(self, ledger, cur):
        charge = _post(cur, service_date=None)["posted_items"][0]
        folio_service.post_adjustment(
            cur, property_id=PROPERTY_ID, folio_id="folio-a", item_type="discount", amount_cents=100,
            reason="Late checkout goodwill",
        )
        folio_service.transfer_item(
            cur, property_id=PROPERTY_ID, folio_id="folio-a", item_id=charge["id"], target_folio_id="folio-b"
        )
        moved = ledger.items_of("folio-b")[0]
        voided = folio_service.void_item(
            cur, property_id=PROPERTY_ID, folio_id="folio-b", item_id=moved["id"], reason="Guest dispute"
        )

        assert voided["balance_cents"] == 0
        assert {i["service_date"] for i in ledger.items if i["folio_id"] in ("folio-a", "folio-b")} == {
            "2024-05-02"
        }

    def test_open_business_date_is_used(self, ledger, cur):
        ledger.sealed.clear()
        folio = _post(cur, service_date=None)
        assert folio["posted_items"][0]["service_date"] == "2024-05-01"


class TestAdjustments:
    def test_discount_stored_negative_and_untaxed(self, ledger, cur):
        _post(cur)
        folio = folio_service.post_adjustment(
            cur, property_id=PROPERTY_ID, folio_id="folio-a", item_type="discount", amount_cents=200,
            reason="Loyalty",
        )
        assert folio["posted_items"][0]["amount_cents"] == -200
        assert folio["balance_cents"] == 1000

    def test_signed_adjustment(self, ledger, cur):
        folio = folio_service.post_adjustment(
            cur, property_id=PROPERTY_ID, folio_id="folio-a", item_type="adjustment", amount_cents=-150,
            reason="Phone rate correction",
        )
        assert folio["balance_cents"] == -150

    @pytest.mark.parametrize(
        "item_type, amount, reason",
        [("discount", 0, "x"), ("discount", -5, "x"), ("adjustment", 0, "x"), ("spa", 100, "x"),
         ("adjustment", 100, "  ")],
    )
    def test_rejected(self, ledger, cur, item_type, amount, reason):
        with pytest.raises(ValidationError):
            folio_service.post_adjustment(
                cur, property_id=PROPERTY_ID, folio_id="folio-a", item_type=item_type, amount_cents=amount,
                reason=reason,
            )


class TestVoidItem:
    def test_void_reverses_charge_and_tax_lines(self, ledger, cur):
        charge_id = _post(cur)["posted_items"][0]["id"]
        folio = folio_service.void_item(
            cur, property_id=PROPERTY_ID, folio_id="folio-a", item_id=charge_id, reason="Guest dispute"
        )
        assert len(folio["posted_items"]) == 3
        assert folio["posted_items"][0]["reverses_item_id"] == charge_id
        assert folio["total_cents"] == 0
        assert len(ledger.items_of("folio-a")) == 6

    def test_void_only_once(self, ledger, cur):
        charge_id = _post(cur)["posted_items"][0]["id"]
        folio_service.void_item(cur, property_id=PROPERTY_ID, folio_id="folio-a", item_id=charge_id, reason="x")
        with pytest.raises(ItemAlreadyReversedError):
            folio_service.void_item(cur, property_id=PROPERTY_ID, folio_id="folio-a", item_id=charge_id, reason="x")

    def test_tax_line_cannot_be_voided_alone(self, ledger, cur):
        tax_id = _post(cur)["posted_items"][1]["id"]
        with pytest.raises(ValidationError):
            folio_service.void_item(cur, property_id=PROPERTY_ID, folio_id="folio-a", item_id=tax_id, reason="x")

    def test_reversal_line_cannot_be_voided(self, ledger, cur):
        charge_id = _post(cur)["posted_items"][0]["id"]
        folio = folio_service.void_item(
            cur, property_id=PROPERTY_ID, folio_id="folio-a", item_id=charge_id, reason="x"
        )
        with pytest.raises(ValidationError):
            folio_service.void_item(
                cur, property_id=PROPERTY_ID, folio_id="folio-a", item_id=folio["posted_items"][0]["id"], reason="x"
            )

    def test_item_of_other_folio(self, ledger, cur):
        charge_id = _post(cur)["posted_items"][0]["id"]
        with pytest.raises(FolioItemNotFoundError):
            folio_service.void_item(cur, property_id=PROPERTY_ID, folio_id="folio-b", item_id=charge_id, reason="x")


class TestTransferAndSplit:
    def test_transfer_moves_charge_with_taxes(self, ledger, cur):
        charge_id = _post(cur, item_type="room_charge", room_id="room-7", quantity=1, unit_price_cents=10000)[
            "posted_items"
        ][0]["id"]
        ledger.lock_log.clear()

        result = folio_service.transfer_item(
            cur, property_id=PROPERTY_ID, folio_id="folio-a", item_id=charge_id, target_folio_id="folio-b"
        )

        assert result["source"]["total_cents"] == 0
        assert result["target"]["total_cents"] == 12000
        assert ledger.lock_log[0] == ("folios", ["folio-a", "folio-b"])
        copy = [i for i in ledger.items_of("folio-b") if i["item_type"] == "room_charge"][0]
        assert copy["room_id"] is None

    def test_transfer_to_same_folio_rejected(self, ledger, cur):
        with pytest.raises(ValidationError):
            folio_service.transfer_item(
                cur, property_id=PROPERTY_ID, folio_id="folio-a", item_id="x", target_folio_id="folio-a"
            )

    def test_transfer_to_closed_folio_rejected(self, ledger, cur):
        charge_id = _post(cur)["posted_items"][0]["id"]
        ledger.folios["folio-b"]["status"] = "closed"
        with pytest.raises(FolioClosedError):
            folio_service.transfer_item(
                cur, property_id=PROPERTY_ID, folio_id="folio-a", item_id=charge_id, target_folio_id="folio-b"
            )

    def test_split_opens_folio_for_same_guest(self, ledger, cur):
        first = _post(cur)["posted_items"][0]["id"]
        _post(cur, unit_price_cents=100, quantity=1)

        result = folio_service.split_folio(cur, property_id=PROPERTY_ID, folio_id="folio-a", item_ids=[first])

        assert result["target"]["guest_id"] == ledger.folios["folio-a"]["guest_id"]
        assert result["target"]["total_cents"] == 1200
        assert result["source"]["total_cents"] == 120
        assert result["target"]["folio_number"] == "F-SEA-000001"

    def test_split_needs_items(self, ledger, cur):
        with pytest.raises(ValidationError):
            folio_service.split_folio(cur, property_id=PROPERTY_ID, folio_id="folio-a", item_ids=[])


class TestLifecycle:
    def test_open_folio_emits_event(self, ledger, cur):
        folio = folio_service.open_folio(cur, property_id=PROPERTY_ID, guest_id="guest-9")
        assert folio["status"] == "open"
        assert folio["balance_cents"] == 0
        assert ledger.events[-1]["event_type"] == "folio.opened"

    def test_reservation_of_another_guest_rejected(self, ledger, cur):
        cur.fetchone.side_effect = [(1,), None]
        with pytest.raises(ReservationNotFoundError):
            folio_service.open_folio(cur, property_id=PROPERTY_ID, guest_id="guest-9", reservation_id="res-1")

        sql, params = cur.execute.call_args.args
        assert "guest_id = %s" in sql
        assert params == (PROPERTY_ID, "res-1", "guest-9")
        assert ledger.events == []

    def test_close_with_balance_then_reopen(self, ledger, cur):
        _post(cur)
        closed = folio_service.close_folio(cur, property_id=PROPERTY_ID, folio_id="folio-a")
        assert closed["status"] == "closed"
        assert closed["balance_cents"] == 1200
        assert ledger.events[-1]["event_type"] == "folio.closed"

        reopened = folio_service.reopen_folio(cur, property_id=PROPERTY_ID, folio_id="folio-a")
        assert reopened["status"] == "open"

    def test_reopen_open_folio_rejected(self, ledger, cur):
        with pytest.raises(FolioStateError):
            folio_service.reopen_folio(cur, property_id=PROPERTY_ID, folio_id="folio-a")

    def test_close_twice_rejected(self, ledger, cur):
        folio_service.close_folio(cur, property_id=PROPERTY_ID, folio_id="folio-a")
        with pytest.raises(FolioClosedError):
            folio_service.close_folio(cur, property_id=PROPERTY_ID, folio_id="folio-a")

    def test_get_folio_includes_history(self, ledger, cur):
        _post(cur)
        folio = folio_service.get_folio(cur, property_id=PROPERTY_ID, folio_id="folio-a")
        assert len(folio["items"]) == 3
        assert folio["payments"] == []
