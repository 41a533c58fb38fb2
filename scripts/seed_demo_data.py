"""
Seed the local database with a manager, two employees, two clients and a few
work orders so the API can be exercised by hand.

Usage:
  python scripts/seed_demo_data.py [--password demo-pass-123]

This script is idempotent: users are upserted by email and work orders are only
created for clients that have none yet.
"""

import argparse
import os
import sys
from datetime import date, datetime, timedelta, timezone

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from wohub.auth.security import get_password_hash
from wohub.db import Base, SessionLocal, engine
from wohub.models.models import (
    Equipment,
    Profile,
    Role,
    User,
    UserRole,
    WorkOrder,
    WorkOrderAssignment,
    WorkOrderStatus,
)
from wohub.services.work_orders import next_reference


USERS = [
    ("gestor@example.com", "Helena Gestora", Role.MANAGER, None),
    ("ana.silva@example.com", "Ana Silva", Role.EMPLOYEE, None),
    ("rui.costa@example.com", "Rui Costa", Role.EMPLOYEE, None),
    ("compras@padaria-central.pt", "Padaria Central", Role.CLIENT, "Padaria Central Lda"),
    ("geral@hotel-mar.pt", "Hotel do Mar", Role.CLIENT, "Hotel do Mar SA"),
]


def ensure_user(session, email: str, name: str, role: str, company: str | None, password: str) -> User:
    user = session.query(User).filter(User.email == email).first()
    if user is None:
        user = User(email=email, password_hash=get_password_hash(password), is_active=True)
        session.add(user)
        session.flush()
    if user.profile is None:
        session.add(Profile(id=user.id, name=name, company_name=company))
    if user.role is None:
        session.add(UserRole(
            user_id=user.id,
            role=role,
            approved=True,
            approved_at=datetime.now(timezone.utc),
        ))
    session.flush()
    return user


def ensure_orders(session, client: User, workers: list[User]) -> int:
    if session.query(WorkOrder).filter(WorkOrder.client_id == client.id).first():
        return 0
    equipment = Equipment(client_id=client.id, name="Caldeira mural", model="Vulcano 24kW", serial_number="VUL-0001")
    session.add(equipment)
    samples = [
        ("Revisão anual da caldeira", "maintenance", "medium", WorkOrderStatus.PENDING),
        ("Fuga de água no circuito", "repair", "urgent", WorkOrderStatus.PENDING),
        ("Pedido de orçamento para bomba de calor", "installation", "low", WorkOrderStatus.AWAITING_APPROVAL),
    ]
    for i, (title, service_type, priority, status) in enumerate(samples):
        wo = WorkOrder(
            reference=next_reference(session),
            title=title,
            status=status,
            priority=priority,
            service_type=service_type,
            client_id=client.id,
            scheduled_date=date.today() + timedelta(days=i + 1),
            total_hours=0.0,
        )
        session.add(wo)
        session.flush()
        if status == WorkOrderStatus.PENDING:
            for worker in workers:
                session.add(WorkOrderAssignment(work_order_id=wo.id, user_id=worker.id))
    session.flush()
    return len(samples)


def main():
    parser = argparse.ArgumentParser(description="Seed demo data")
    parser.add_argument("--password", default="demo-pass-123", help="Password for newly created users")
    args = parser.parse_args()

    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        users = [(ensure_user(session, email, name, role, company, args.password), role) for email, name, role, company in USERS]
        workers = [u for u, role in users if role == Role.EMPLOYEE]
        created = 0
        for u, role in users:
            if role == Role.CLIENT:
                created += ensure_orders(session, u, workers)
        session.commit()
        print(f"Seeded {len(users)} users and {created} work orders")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()
