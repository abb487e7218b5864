"""
tests.conftest

Shared fixtures for the trust core test suite.

Responsibilities:
- Deterministic time (`ManualClock`), fresh Ed25519 keys and in-memory stores.
- Stores that simulate an unreachable backend for fail-closed checks.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from fleet_trust.authz.catalog import PermissionCatalog, default_catalog
from fleet_trust.clock import ManualClock
from fleet_trust.errors import StoreUnavailable
from fleet_trust.policy.builder import PolicyBuilder
from fleet_trust.policy.models import PolicyDefaults, PolicyInputs, SessionWindow

START = datetime(2026, 3, 2, 8, 0, 0, tzinfo=UTC)


class DownCounterStore:
    def increment(self, key, *, window_seconds, now):
        raise StoreUnavailable()

    def peek(self, key, *, now):
        raise StoreUnavailable()

    def delete(self, key):
        raise StoreUnavailable()

    def purge_expired(self, *, now):
        raise StoreUnavailable()


class DownLockoutStore:
    def get(self, key, *, now):
        raise StoreUnavailable()

    def update(self, key, fn, *, now, expires_at):
        raise StoreUnavailable()

    def delete(self, key):
        raise StoreUnavailable()

    def purge_expired(self, *, now):
        raise StoreUnavailable()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture(scope="session")
def catalog() -> PermissionCatalog:
    return default_catalog()


@pytest.fixture
def builder() -> PolicyBuilder:
    return PolicyBuilder(defaults=PolicyDefaults())


@pytest.fixture
def policy_inputs() -> PolicyInputs:
    return PolicyInputs(
        device_id="dev-001",
        team_id="team-t",
        organization_id="org-1",
        timezone="Asia/Kolkata",
        allowed_windows=(
            SessionWindow(days=("Mon", "Tue", "Wed", "Thu", "Fri"), start="08:00", end="19:30"),
            SessionWindow(days=("Sat",), start="09:00", end="13:00"),
        ),
    )


@pytest.fixture
def down_counter_store() -> DownCounterStore:
    return DownCounterStore()


@pytest.fixture
def down_lockout_store() -> DownLockoutStore:
    return DownLockoutStore()


# --- Module Notes -----------------------------------------------------------
# Every time-dependent test drives `ManualClock` explicitly; nothing sleeps.
