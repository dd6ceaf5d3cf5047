"""Tests for time helpers."""

from datetime import timedelta, timezone

from staybook.infra.time import local_now, utc_now


def test_utc_now_is_aware_utc():
    now = utc_now()
    assert now.tzinfo is not None
    assert now.utcoffset() == timedelta(0)


def test_local_now_uses_property_zone():
    now = local_now("Asia/Tokyo")
    assert now.utcoffset() == timedelta(hours=9)
    assert abs(now.astimezone(timezone.utc) - utc_now()) < timedelta(seconds=5)
