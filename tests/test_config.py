"""Tests for settings loading."""

from decimal import Decimal

import pytest

from attendance_payroll import config
from attendance_payroll.config import AttendanceUnitPolicy, get_settings


@pytest.fixture
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_settings_read_when_requested(monkeypatch, fresh_settings):
    monkeypatch.setenv("PAYROLL_MONTH_UNITS", "26")
    monkeypatch.setenv("ATTENDANCE_PARTIAL_DAY_HOURS", "4")
    monkeypatch.setenv("LEAVE_COUNTS_WEEKENDS", "false")

    settings = get_settings()

    assert settings.default_month_units == Decimal("26")
    assert settings.unit_policy().partial_day_hours == Decimal("4")
    assert settings.unit_policy().leave_counts_weekends is False
    assert get_settings() is settings


def test_no_module_level_settings():
    assert not hasattr(config, "settings")


def test_unit_policy_rejects_inverted_thresholds():
    with pytest.raises(ValueError):
        AttendanceUnitPolicy(full_day_hours=Decimal("2"), partial_day_hours=Decimal("3"))
