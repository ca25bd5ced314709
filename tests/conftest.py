"""Global test fixtures and shared test infrastructure.

Provides:
- Environment variable defaults (must be set before any zariya import)
- A throwaway SQLite database per test, created from the model metadata
- Async session fixtures bound to that database
- Payload factories (membership_payload, application_payload)
- Seeding helpers (approved_member, open_loan) that go through the services
- A TestClient whose ``get_db`` dependency points at the test database
"""

from __future__ import annotations

import os
import tempfile

# Environment defaults: must be set before importing zariya, which validates
# Settings and builds the engine on import.
_TMP_ROOT = tempfile.mkdtemp(prefix="zariya-tests-")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-boot")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TMP_ROOT}/app.db")
os.environ.setdefault("LOCAL_UPLOAD_DIR", f"{_TMP_ROOT}/uploads")
os.environ.setdefault("REPORTING_TIMEZONE", "Asia/Kolkata")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "100000")
os.environ.setdefault("READ_RETRY_BACKOFF_SECONDS", "0")

from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from zariya import models  # noqa: F401
from zariya.core.settings import settings
from zariya.db.base import Base
from zariya.db.session import get_db
from zariya.main import app
from zariya.schemas.loan import LoanApplicationCreate
from zariya.schemas.membership import MembershipCreate
from zariya.services import loan_applications, memberships, notifications

# ---------------------------------------------------------------------------
# Payload factories
# ---------------------------------------------------------------------------

_counter = {"n": 0}


def _next_n() -> int:
    _counter["n"] += 1
    return _counter["n"]


def make_address(**overrides: Any) -> dict[str, Any]:
    address = {
        "village": "Rampur",
        "post_office": "Rampur Bazar",
        "police_station": "Sadar",
        "district": "Nadia",
        "pin_code": "741101",
        "landmark": "Near the primary school",
    }
    address.update(overrides)
    return address


def membership_payload(**overrides: Any) -> dict[str, Any]:
    """Valid membership body; mobile/aadhar/pan are unique per call."""
    n = _next_n()
    payload = {
        "full_name": f"Member {n}",
        "father_or_husband_name": "Harish Das",
        "date_of_birth": "1990-04-12",
        "age": 35,
        "occupation": "Tailor",
        "mobile_number": f"9{n:09d}",
        "email": f"member{n}@example.com",
        "aadhar": f"{n:012d}",
        "pan": f"ABCDE{n % 10000:04d}F",
        "address": make_address(),
        "created_by": "clerk-1",
    }
    payload.update(overrides)
    return payload


def application_payload(membership_id: str, **overrides: Any) -> dict[str, Any]:
    payload = {
        "membership_id": membership_id,
        "requested_amount": "10000.00",
        "tenure_days": 100,
        "installment_amount": "100.00",
        "purpose": "Sewing machine",
        "mobile_number": "9876543210",
        "nominee": {
            "name": "Sita Das",
            "relationship": "Spouse",
            "mobile_number": "9876500001",
            "address": make_address(),
        },
        "guarantor": {
            "name": "Gopal Roy",
            "father_or_husband_name": "Mohan Roy",
            "relationship": "Neighbour",
            "mobile_number": "9876500002",
            "address": make_address(village="Kalyani"),
        },
        "created_by": "clerk-1",
    }
    payload.update(overrides)
    return payload


# ---------------------------------------------------------------------------
# Seeding helpers (committed, so concurrent sessions can see the rows)
# ---------------------------------------------------------------------------


async def approved_member(factory: async_sessionmaker, **overrides: Any):
    async with factory() as db:
        membership = await memberships.create_membership(db, MembershipCreate(**membership_payload(**overrides)))
        membership = await memberships.approve_membership(db, membership.id, reviewed_by="officer-1")
        await db.commit()
        return membership


async def submitted_application(factory: async_sessionmaker, **overrides: Any):
    membership = await approved_member(factory)
    async with factory() as db:
        application = await loan_applications.submit_application(
            db, LoanApplicationCreate(**application_payload(str(membership.id), **overrides))
        )
        await db.commit()
        return application


async def open_loan(factory: async_sessionmaker, amount: str = "10000.00"):
    """Approved application plus its loan, in the configured initial loan status."""
    application = await submitted_application(factory, requested_amount=amount)
    async with factory() as db:
        approval = await loan_applications.approve_application(db, application.id, reviewed_by="officer-1")
        await db.commit()
        return approval.loan


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """Fresh SQLite file with the full schema for every test."""
    path = tmp_path / "zariya.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()
    return f"sqlite+aiosqlite:///{path}"


@pytest.fixture
def session_factory(database_url: str) -> async_sessionmaker:
    # NullPool: each session opens its own connection, so sessions behave like
    # independent clients and no connection outlives the event loop that made it.
    engine = create_async_engine(database_url, poolclass=NullPool)
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory: async_sessionmaker) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
def client(session_factory: async_sessionmaker) -> TestClient:
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Shared pytest fixtures
# ---------------------------------------------------------------------------


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, dict]] = []

    async def send(self, event: str, payload: dict) -> None:
        self.sent.append((event, payload))


@pytest.fixture
def notifier() -> RecordingNotifier:
    original = notifications.get_notifier()
    recording = RecordingNotifier()
    notifications.set_notifier(recording)
    yield recording
    notifications.set_notifier(original)


@pytest.fixture
def loan_status(monkeypatch):
    """Switch the status new loans are created in (``pending`` or ``approved``)."""

    def _set(value: str) -> None:
        monkeypatch.setattr(settings, "loan_initial_status", value)

    return _set
