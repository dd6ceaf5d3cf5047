"""Property billing settings.

Loads the per-property values the ledger needs (currency precision,
timezone for the business date, service-charge rate, folio-number prefix)
from the properties table, with environment fallbacks for properties that
have not been configured yet.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal

from psycopg2.extensions import cursor as PgCursor

from staybook.domain.errors import PropertyNotFoundError

# ISO 4217 exponents that differ from the usual 2 decimal places.
_MINOR_UNITS = {
    "JPY": 0,
    "KRW": 0,
    "VND": 0,
    "CLP": 0,
    "BHD": 3,
    "KWD": 3,
    "OMR": 3,
    "JOD": 3,
    "TND": 3,
}


def minor_units_for(currency: str) -> int:
    """Number of decimal places of a currency's minor unit."""
    return _MINOR_UNITS.get(currency.upper(), 2)


@dataclass(frozen=True)
class BillingSettings:
    """Billing configuration for a property.

    Attributes:
        property_id: The property identifier (tenant scope).
        property_code: Short code used in folio numbers.
        currency: ISO 4217 code; amounts are stored in its minor unit.
        minor_units: Decimal places of the minor unit.
        timezone: IANA zone used to derive the business date.
        service_charge_rate: Percentage added as service charge (0 = none).
    """

    property_id: str
    property_code: str
    currency: str = "USD"
    minor_units: int = 2
    timezone: str = "UTC"
    service_charge_rate: Decimal = Decimal("0")


def _env_defaults() -> dict[str, str]:
    return {
        "currency": os.environ.get("DEFAULT_CURRENCY", "USD"),
        "timezone": os.environ.get("DEFAULT_TIMEZONE", "UTC"),
        "service_charge_rate": os.environ.get("DEFAULT_SERVICE_CHARGE_RATE", "0"),
    }


def load_billing_settings(cur: PgCursor, property_id: str) -> BillingSettings:
    """Load billing settings for a property inside the caller's transaction.

    Priority:
    1. properties row (currency, timezone, service_charge_rate, code)
    2. Environment variable fallbacks

    Raises:
        PropertyNotFoundError: Unknown property.
    """
    cur.execute(
        """
        SELECT code, currency, timezone, service_charge_rate
        FROM properties
        WHERE id = %s
        """,
        (property_id,),
    )
    row = cur.fetchone()
    if row is None:
        raise PropertyNotFoundError(property_id)

    code, currency, tz_name, service_charge_rate = row
    defaults = _env_defaults()
    currency = (currency or defaults["currency"]).upper()
    rate = service_charge_rate if service_charge_rate is not None else defaults["service_charge_rate"]

    return BillingSettings(
        property_id=property_id,
        property_code=(code or property_id[:6]).upper(),
        currency=currency,
        minor_units=minor_units_for(currency),
        timezone=tz_name or defaults["timezone"],
        service_charge_rate=Decimal(str(rate)),
    )
