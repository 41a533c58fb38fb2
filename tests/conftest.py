"""Work Order Hub test fixtures.

Provides:
1. In-memory SQLite database shared by the app and the test (StaticPool).
2. A FastAPI TestClient with get_db overridden to the test session.
3. Factories for users (with profile and role), work orders and signatures.

Usage:
    def test_start(client, make_user, make_work_order, auth_headers):
        worker = make_user(Role.EMPLOYEE)
        response = client.post(..., headers=auth_headers(worker))
"""
import base64
import io
import os
from datetime import datetime, timedelta, timezone

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENABLE_EMAIL", "false")
os.environ.setdefault("RATE_LIMIT", "100000/minute")
os.environ.setdefault("AUTO_CREATE_DB", "false")

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from wohub.auth.security import create_access_token, get_password_hash
from wohub.config import settings
from wohub.db import Base, get_db
from wohub.main import app
from wohub.models.models import (
    Profile,
    Role,
    User,
    UserRole,
    WorkOrder,
    WorkOrderAssignment,
    WorkOrderStatus,
)
from wohub.services.work_orders import next_reference


T0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(engine):
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def local_storage(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "local_storage_dir", str(tmp_path / "storage"))
    monkeypatch.setattr(settings, "enable_email", False)
    return tmp_path / "storage"


@pytest.fixture()
def client(db):
    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    def _make(role: str = Role.EMPLOYEE, approved: bool = True, name: str = None, email: str = None) -> User:
        counter["n"] += 1
        n = counter["n"]
        user = User(
            email=email or f"{role}{n}@example.com",
            password_hash=get_password_hash("secret-pass"),
            is_active=True,
        )
        db.add(user)
        db.flush()
        db.add(Profile(id=user.id, name=name or f"{role.title()} {n}", company_name="ACME" if role == Role.CLIENT else None))
        db.add(UserRole(user_id=user.id, role=role, approved=approved))
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture()
def make_work_order(db, make_user):
    def _make(client: User = None, status: str = WorkOrderStatus.PENDING, workers=(), title: str = "Boiler repair") -> WorkOrder:
        client = client or make_user(Role.CLIENT)
        wo = WorkOrder(
            reference=next_reference(db),
            title=title,
            description="No hot water",
            status=status,
            client_id=client.id,
            total_hours=0.0,
        )
        db.add(wo)
        db.flush()
        for worker in workers:
            db.add(WorkOrderAssignment(work_order_id=wo.id, user_id=worker.id))
        db.commit()
        db.refresh(wo)
        return wo

    return _make


@pytest.fixture()
def auth_headers():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}

    return _headers


@pytest.fixture()
def signature_png() -> bytes:
    im = Image.new("RGBA", (300, 100), (255, 255, 255, 0))
    for x in range(20, 280):
        im.putpixel((x, 50 + (x % 10)), (0, 0, 0, 255))
    buf = io.BytesIO()
    im.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture()
def signature_b64(signature_png) -> str:
    return "data:image/png;base64," + base64.b64encode(signature_png).decode()


class RecordingNotifier:
    """Collects notify() calls instead of writing rows or sending email."""

    def __init__(self):
        self.calls = []

    def __call__(self, db, notification_type, user_id, work_order_id=None, data=None, email=True):
        self.calls.append({"type": notification_type, "user_id": user_id, "work_order_id": work_order_id, "data": data or {}})
        return True

    def recipients(self, notification_type):
        return [c["user_id"] for c in self.calls if c["type"] == notification_type]


@pytest.fixture()
def notifier():
    return RecordingNotifier()


def hours_after(hours: float) -> datetime:
    return T0 + timedelta(hours=hours)
