"""
Seed the local database with the demo week: three clients, three service
orders (Segunda, Terça, Quarta) and their checklists.

Usage:
  python -m scripts.seed_demo [admin-email]

This script is idempotent: orders are matched by os_number and clients by
name. Passing an e-mail pre-provisions an approved Admin profile for it, so
the first Google sign-in with that address lands on the board.
"""

import sys
import uuid
from datetime import datetime, timezone
from typing import Optional

from agenda.db import Base, SessionLocal, engine
from agenda.models.models import (
    Client,
    MaterialChecklistItem,
    ProcessChecklistItem,
    Profile,
    ServiceOrder,
    UserRole,
)


HVAC_MATERIALS = [
    "Gás refrigerante R-410A",
    "Filtros de ar",
    "Tubulação de cobre",
    "Isolamento térmico",
    "Válvulas de expansão",
]
ELECTRICAL_MATERIALS = [
    "Cabos elétricos",
    "Disjuntores",
    "Eletrodutos",
    "Terminais e conectores",
]
PROCESSES = [
    "Inspeção inicial do sistema",
    "Verificação de pressão",
    "Limpeza dos componentes",
    "Teste de funcionamento",
    "Verificação final de segurança",
]

DEMO_ORDERS = [
    {
        "os_number": "OS-2025-001",
        "day": "Segunda",
        "status": "todo",
        "type": "HVAC-R",
        "assignee": "João Silva",
        "client": {"name": "Empresa ABC Ltda", "phone": "(11) 98765-4321", "address": "Av. Paulista, 1000"},
    },
    {
        "os_number": "OS-2025-002",
        "day": "Terça",
        "status": "doing",
        "type": "Electrical",
        "assignee": "Maria Santos",
        "client": {"name": "Comércio XYZ", "phone": "(11) 91234-5678", "address": "Rua Augusta, 500"},
    },
    {
        "os_number": "OS-2025-003",
        "day": "Quarta",
        "status": "todo",
        "type": "HVAC-R",
        "assignee": "Pedro Costa",
        "client": {"name": "Indústria DEF", "phone": "(11) 99999-8888", "address": "Rod. Anhanguera, km 20"},
    },
]


def ensure_client(session, name: str, phone: str, address: str, segment: str) -> Client:
    client = session.query(Client).filter(Client.name == name).first()
    if client:
        return client
    client = Client(name=name, phone=phone, address=address, segment=segment)
    session.add(client)
    session.flush()
    return client


def ensure_order(session, data: dict) -> ServiceOrder:
    order = session.query(ServiceOrder).filter(ServiceOrder.os_number == data["os_number"]).first()
    if order:
        return order
    c = data["client"]
    client = ensure_client(session, c["name"], c["phone"], c["address"], data["type"])
    order = ServiceOrder(
        os_number=data["os_number"],
        client_id=client.id,
        day=data["day"],
        status=data["status"],
        type=data["type"],
        assignee=data["assignee"],
    )
    session.add(order)
    session.flush()

    materials = HVAC_MATERIALS if data["type"] == "HVAC-R" else ELECTRICAL_MATERIALS
    for label in materials:
        session.add(MaterialChecklistItem(os_id=order.id, item=label))
    for label in PROCESSES:
        session.add(ProcessChecklistItem(os_id=order.id, step=label))
    return order


def ensure_admin(session, email: str) -> Profile:
    profile = session.query(Profile).filter(Profile.google_email == email).first()
    if profile is None:
        profile = Profile(id=uuid.uuid4(), google_email=email)
        session.add(profile)
        session.flush()
    if profile.approved_at is None:
        profile.approved_at = datetime.now(timezone.utc)
    role = session.query(UserRole).filter(UserRole.user_id == profile.id).first()
    if role is None:
        session.add(UserRole(user_id=profile.id, role="Admin"))
    else:
        role.role = "Admin"
    return profile


def seed_demo(session, admin_email: Optional[str] = None) -> list:
    orders = [ensure_order(session, data) for data in DEMO_ORDERS]
    if admin_email:
        ensure_admin(session, admin_email)
    session.commit()
    return orders


def main():
    Base.metadata.create_all(bind=engine)
    admin_email = sys.argv[1] if len(sys.argv) > 1 else None
    session = SessionLocal()
    try:
        orders = seed_demo(session, admin_email)
        print(f"Seed completed: {len(orders)} service orders upserted.")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()
