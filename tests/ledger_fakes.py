"""In-memory stand-in for the ledger repositories.

Service tests install it with monkeypatch so folio, payment, bulk and
corporate services run their real logic against plain dicts. It records
the order in which rows were locked.
"""

from __future__ import annotations

import itertools
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Any

from staybook.domain.corporate import CorporateAccount
from staybook.domain.folio import LedgerLine, PaymentLine, derive_totals
from staybook.infra.property_settings import BillingSettings

PROPERTY_ID = "prop-1"


def _iso(value: Any) -> Any:
    return value.isoformat() if isinstance(value, date) else value


class FakeLedger:
    def __init__(self, property_id: str = PROPERTY_ID):
        self.property_id = property_id
        self.settings = BillingSettings(property_id=property_id, property_code="SEA", currency="USD", timezone="UTC")
        self.folios: dict[str, dict[str, Any]] = {}
        self.items: list[dict[str, Any]] = []
        self.payments: list[dict[str, Any]] = []
        self.accounts: dict[str, CorporateAccount] = {}
        self.guest_accounts: dict[str, str] = {}
        self.events: list[dict[str, Any]] = []
        self.sealed: set[date] = set()
        self.tax_configs: list = []
        self.lock_log: list[tuple[str, Any]] = []
        self._ids = itertools.count(1)
        self._sequence = 0

    # ── setup ────────────────────────────────────────────

    def install(self, monkeypatch) -> "FakeLedger":
        from staybook.infra.repositories import (
            corporate_repository,
            folio_repository,
            night_audit_repository,
            outbox_repository,
            payments_repository,
            tax_repository,
        )
        from staybook.services import bulk_payment_service, folio_service

        for name in (
            "next_folio_sequence", "insert_folio", "get_folio", "lock_folio",
            "get_latest_folio_for_reservation", "update_folio_totals", "set_folio_status",
            "insert_item", "get_item", "list_items", "list_child_items", "ledger_lines",
            "room_night_charged",
        ):
            monkeypatch.setattr(folio_repository, name, getattr(self, name))
        for name in (
            "insert_payment", "get_payment", "lock_payment", "mark_payment_voided",
            "list_payments", "payment_lines",
        ):
            monkeypatch.setattr(payments_repository, name, getattr(self, name))
        for name in ("get_account", "lock_account", "apply_balance_delta", "linked_guest_ids"):
            monkeypatch.setattr(corporate_repository, name, getattr(self, name))
        monkeypatch.setattr(outbox_repository, "emit_event", self.emit_event)
        monkeypatch.setattr(outbox_repository, "emit_corporate_billed", self.emit_corporate_billed)
        monkeypatch.setattr(night_audit_repository, "is_date_sealed", self.is_date_sealed)
        monkeypatch.setattr(tax_repository, "engine_configs", self.engine_configs)
        for module in (folio_service, bulk_payment_service):
            monkeypatch.setattr(module, "load_billing_settings", self.load_billing_settings)
            monkeypatch.setattr(module, "lock_rows", self.lock_rows)
        return self

    def _id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def add_folio(self, folio_id: str, *, charge_cents: int = 0, guest_id: str = "guest-1", status: str = "open") -> dict:
        self.folios[folio_id] = {
            "id": folio_id,
            "property_id": self.property_id,
            "guest_id": guest_id,
            "reservation_id": None,
            "folio_number": f"F-SEA-{folio_id}",
            "status": status,
            "subtotal_cents": 0,
            "tax_cents": 0,
            "service_charge_cents": 0,
            "total_cents": 0,
            "paid_cents": 0,
            "balance_cents": 0,
            "version": 0,
        }
        if charge_cents:
            self.insert_item(
                None,
                folio_id=folio_id,
                property_id=self.property_id,
                item_type="miscellaneous",
                description="Opening charge",
                quantity=1,
                unit_price_cents=charge_cents,
                amount_cents=charge_cents,
                service_date=date(2024, 1, 1),
            )
            self.update_folio_totals(
                None,
                folio_id=folio_id,
                totals=derive_totals(self.ledger_lines(None, folio_id=folio_id), []),
            )
        return self.folios[folio_id]

    def add_account(self, account_id: str, *, balance_cents: int = 0, limit_cents: int | None = None,
                    is_active: bool = True, guests: tuple[str, ...] = ("guest-1",)) -> CorporateAccount:
        for guest_id in guests:
            self.guest_accounts[guest_id] = account_id
        self.accounts[account_id] = CorporateAccount(
            id=account_id,
            property_id=self.property_id,
            company_name="Acme Corp",
            account_code="ACME",
            current_balance_cents=balance_cents,
            credit_limit_cents=limit_cents,
            is_active=is_active,
        )
        return self.accounts[account_id]

    # ── settings / locks ─────────────────────────────────

    def load_billing_settings(self, cur, property_id):
        return self.settings

    def lock_rows(self, cur, table, ids, *, property_id):
        ordered = sorted(set(ids))
        self.lock_log.append((table, ordered))
        return [i for i in ordered if i in self.folios and self.folios[i]["property_id"] == property_id]

    def engine_configs(self, cur, *, settings):
        return list(self.tax_configs)

    def is_date_sealed(self, cur, *, property_id, business_date):
        return business_date in self.sealed

    # ── folios ───────────────────────────────────────────

    def next_folio_sequence(self, cur, *, property_id):
        self._sequence += 1
        return self._sequence

    def insert_folio(self, cur, *, property_id, guest_id, reservation_id, folio_number, opened_by=None):
        folio_id = self._id("folio")
        self.add_folio(folio_id, guest_id=guest_id)
        self.folios[folio_id].update(reservation_id=reservation_id, folio_number=folio_number)
        return dict(self.folios[folio_id])

    def get_folio(self, cur, *, property_id, folio_id):
        folio = self.folios.get(folio_id)
        if folio is None or folio["property_id"] != property_id:
            return None
        return dict(folio)

    def lock_folio(self, cur, *, property_id, folio_id):
        self.lock_log.append(("folio", folio_id))
        return self.get_folio(cur, property_id=property_id, folio_id=folio_id)

    def get_latest_folio_for_reservation(self, cur, *, property_id, reservation_id, status=None):
        matches = [
            f for f in self.folios.values()
            if f["reservation_id"] == reservation_id and (status is None or f["status"] == status)
        ]
        return dict(matches[-1]) if matches else None

    def update_folio_totals(self, cur, *, folio_id, totals):
        folio = self.folios[folio_id]
        folio.update(
            subtotal_cents=totals.subtotal_cents,
            tax_cents=totals.tax_cents,
            service_charge_cents=totals.service_charge_cents,
            total_cents=totals.total_cents,
            paid_cents=totals.paid_cents,
            balance_cents=totals.balance_cents,
            version=folio["version"] + 1,
        )
        return dict(folio)

    def set_folio_status(self, cur, *, folio_id, status, changed_by=None):
        self.folios[folio_id]["status"] = status
        return dict(self.folios[folio_id])

    # ── items ────────────────────────────────────────────

    def insert_item(self, cur, *, folio_id, property_id, item_type, description, quantity,
                    unit_price_cents, amount_cents, service_date, posted_by=None, parent_item_id=None,
                    reverses_item_id=None, room_id=None, tax_code=None, tax_rate=None, is_inclusive=False):
        item = {
            "id": self._id("item"),
            "folio_id": folio_id,
            "property_id": property_id,
            "item_type": item_type,
            "description": description,
            "quantity": quantity,
            "unit_price_cents": unit_price_cents,
            "amount_cents": amount_cents,
            "service_date": _iso(service_date),
            "parent_item_id": parent_item_id,
            "reverses_item_id": reverses_item_id,
            "room_id": room_id,
            "tax_code": tax_code,
            "tax_rate": Decimal(tax_rate) if tax_rate is not None else None,
            "is_inclusive": is_inclusive,
            "posted_by": posted_by,
        }
        self.items.append(item)
        return self._with_reversed(item)

    def _with_reversed(self, item):
        return {**item, "reversed": any(i["reverses_item_id"] == item["id"] for i in self.items)}

    def get_item(self, cur, *, property_id, item_id):
        for item in self.items:
            if item["id"] == item_id and item["property_id"] == property_id:
                return self._with_reversed(item)
        return None

    def items_of(self, folio_id):
        return [self._with_reversed(i) for i in self.items if i["folio_id"] == folio_id]

    def list_items(self, cur, *, folio_id):
        return self.items_of(folio_id)

    def list_child_items(self, cur, *, parent_item_id):
        return [self._with_reversed(i) for i in self.items if i["parent_item_id"] == parent_item_id]

    def ledger_lines(self, cur, *, folio_id):
        return [LedgerLine(i["item_type"], i["amount_cents"], i["is_inclusive"]) for i in self.items_of(folio_id)]

    def room_night_charged(self, cur, *, property_id, room_id, service_date):
        return any(
            i["room_id"] == room_id
            and i["service_date"] == _iso(service_date)
            and i["item_type"] == "room_charge"
            and i["reverses_item_id"] is None
            for i in self.items
        )

    # ── payments ─────────────────────────────────────────

    def insert_payment(self, cur, *, folio_id, property_id, kind, amount_cents, method, reference_number=None,
                       notes=None, corporate_account_id=None, corporate_direction=None, recorded_by=None):
        payment = {
            "id": self._id("pay"),
            "folio_id": folio_id,
            "property_id": property_id,
            "kind": kind,
            "amount_cents": amount_cents,
            "method": method,
            "reference_number": reference_number,
            "notes": notes,
            "corporate_account_id": corporate_account_id,
            "corporate_direction": corporate_direction,
            "voided": False,
        }
        self.payments.append(payment)
        return dict(payment)

    def get_payment(self, cur, *, property_id, payment_id):
        for payment in self.payments:
            if payment["id"] == payment_id and payment["property_id"] == property_id:
                return dict(payment)
        return None

    def lock_payment(self, cur, *, property_id, payment_id):
        self.lock_log.append(("payment", payment_id))
        return self.get_payment(cur, property_id=property_id, payment_id=payment_id)

    def mark_payment_voided(self, cur, *, payment_id, voided_by, reason):
        for payment in self.payments:
            if payment["id"] == payment_id:
                if payment["voided"]:
                    return None
                payment.update(voided=True, void_reason=reason)
                return dict(payment)
        return None

    def list_payments(self, cur, *, folio_id):
        return [dict(p) for p in self.payments if p["folio_id"] == folio_id]

    def payment_lines(self, cur, *, folio_id):
        return [PaymentLine(p["kind"], p["amount_cents"], p["voided"]) for p in self.payments if p["folio_id"] == folio_id]

    # ── corporate / outbox ───────────────────────────────

    def get_account(self, cur, *, property_id, account_id):
        account = self.accounts.get(account_id)
        return account if account is not None and account.property_id == property_id else None

    def lock_account(self, cur, *, property_id, account_id):
        self.lock_log.append(("account", account_id))
        return self.get_account(cur, property_id=property_id, account_id=account_id)

    def linked_guest_ids(self, cur, *, property_id, account_id, guest_ids):
        return {g for g in guest_ids if self.guest_accounts.get(g) == account_id}

    def apply_balance_delta(self, cur, *, account_id, delta_cents):
        account = self.accounts[account_id]
        self.accounts[account_id] = replace(account, current_balance_cents=account.current_balance_cents + delta_cents)
        return self.accounts[account_id].current_balance_cents

    def emit_event(self, cur, *, property_id, event_type, aggregate_type, aggregate_id, payload=None,
                   correlation_id=None):
        self.events.append({"event_type": event_type, "aggregate_id": aggregate_id, "payload": payload or {}})
        return len(self.events)

    def emit_corporate_billed(self, cur, **kwargs):
        self.events.append({"event_type": "corporate.billed", "aggregate_id": kwargs["corporate_account_id"],
                            "payload": kwargs})
        return len(self.events)
