"""Tax configuration repository.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from decimal import Decimal

from psycopg2.extensions import cursor as PgCursor

from staybook.domain.taxes import TaxConfig, TaxKind, service_charge_config
from staybook.infra.property_settings import BillingSettings


def list_tax_configurations(
    cur: PgCursor,
    *,
    property_id: str,
    include_inactive: bool = False,
) -> list[TaxConfig]:
    """Tax configurations of a property in calculation order.

    Rows with the same calculation_order come back in creation order, which
    is the tie-break the tax engine keeps.
    """
    active_clause = "" if include_inactive else "AND is_active = true"
    cur.execute(
        f"""
        SELECT code, name, rate, kind, is_compound, is_inclusive,
               calculation_order, applies_to, is_active
        FROM tax_configurations
        WHERE property_id = %s {active_clause}
        ORDER BY calculation_order, created_at, id
        """,
        (property_id,),
    )
    return [
        TaxConfig(
            code=r[0],
            name=r[1],
            rate=Decimal(r[2]),
            kind=TaxKind(r[3]),
            is_compound=r[4],
            is_inclusive=r[5],
            calculation_order=r[6],
            applies_to=tuple(r[7] or ()),
            is_active=r[8],
        )
        for r in cur.fetchall()
    ]


def engine_configs(cur: PgCursor, *, settings: BillingSettings) -> list[TaxConfig]:
    """Everything the tax engine applies for a property.

    A non-zero property service_charge_rate is exposed as a synthetic
    service-charge configuration ahead of the configured taxes.
    """
    configs = list_tax_configurations(cur, property_id=settings.property_id)
    if settings.service_charge_rate > 0:
        configs.insert(0, service_charge_config(settings.service_charge_rate))
    return configs
