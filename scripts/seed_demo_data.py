"""
Seed the local database with demo subcontractors, orders and time slots.

Usage:
  python scripts/seed_demo_data.py

This script is idempotent: running it multiple times upserts the same
subcontractors (by email) and orders (by customer email), and only adds
slots for orders that have none yet.
"""

import os
from datetime import date, datetime, timedelta, timezone

from fieldhub.db import build_store
from fieldhub.models.models import Order, Subcontractor, TimeSlot


SUBCONTRACTORS = [
    {
        "name": "John's Delivery Services",
        "email": "contact@johnsdelivery.com",
        "phone": "206-555-0101",
        "service_areas": ["North Seattle", "Bellevue", "Kirkland"],
        "max_daily_jobs": 6,
        "rating": 4.7,
    },
    {
        "name": "QuickFix Installations",
        "email": "info@quickfix.com",
        "phone": "425-555-0102",
        "service_areas": ["South Seattle", "Renton", "Tacoma"],
        "max_daily_jobs": 5,
        "rating": 4.9,
    },
    {
        "name": "TechConnect Solutions",
        "email": "support@techconnect.com",
        "phone": "206-555-0103",
        "service_areas": ["Bellevue", "Redmond", "Kirkland"],
        "max_daily_jobs": 8,
        "rating": 4.5,
    },
    {
        "name": "Prime Logistics",
        "email": "contact@primelogistics.com",
        "phone": "253-555-0104",
        "service_areas": ["Tacoma", "South Seattle"],
        "max_daily_jobs": 7,
        "rating": 4.2,
    },
    {
        "name": "FastTrack Services",
        "email": "hello@fasttrack.com",
        "phone": "425-555-0105",
        "service_areas": ["North Seattle", "Everett", "Kirkland", "Redmond"],
        "max_daily_jobs": 4,
        "rating": 4.8,
    },
]

ORDERS = [
    ("Alice Nguyen", "alice.nguyen@example.com", "1200 Pine St", "Seattle", 47.6145, -122.3270, "Installation", "urgent"),
    ("Brian Ortiz", "brian.ortiz@example.com", "400 108th Ave NE", "Bellevue", 47.6148, -122.1950, "Delivery", "high"),
    ("Chloe Park", "chloe.park@example.com", "85 Lake St S", "Kirkland", 47.6740, -122.2070, "Repair", "medium"),
    ("Daniel Reyes", "daniel.reyes@example.com", "901 Pacific Ave", "Tacoma", 47.2529, -122.4390, "Installation", "low"),
    ("Emma Walsh", "emma.walsh@example.com", "16000 NE 85th St", "Redmond", 47.6786, -122.1300, "Delivery", "medium"),
    ("Farid Haddad", "farid.haddad@example.com", "200 Mill Ave S", "Renton", 47.4797, -122.2050, "Repair", "high"),
]

START_TIMES = ["09:00", "11:00", "13:00", "15:00"]


def ensure_subcontractor(session, data: dict) -> Subcontractor:
    sub = session.query(Subcontractor).filter(Subcontractor.email == data["email"]).first()
    if sub:
        for field, value in data.items():
            setattr(sub, field, value)
        sub.updated_at = datetime.now(timezone.utc)
        return sub
    sub = Subcontractor(**data, active=True, created_at=datetime.now(timezone.utc))
    session.add(sub)
    session.flush()
    return sub


def ensure_order(session, row: tuple, due: datetime) -> Order:
    name, email, address, city, lat, lng, service_type, priority = row
    order = session.query(Order).filter(Order.customer_email == email).first()
    if order:
        return order
    order = Order(
        customer_name=name,
        customer_email=email,
        customer_phone="206-555-0199",
        address=address,
        city=city,
        location_lat=lat,
        location_lng=lng,
        service_type=service_type,
        inventory_items=[{"name": f"{service_type} kit", "quantity": 1, "in_stock": True}],
        inventory_status="available",
        priority=priority,
        estimated_duration=120,
        status="unassigned",
        due_date=due,
        created_at=datetime.now(timezone.utc),
    )
    session.add(order)
    session.flush()
    return order


def ensure_slots(session, order: Order, first_day: date) -> int:
    if session.query(TimeSlot.id).filter(TimeSlot.order_id == order.id).first():
        return 0
    for day_offset, start in enumerate(START_TIMES[:2]):
        end = f"{int(start[:2]) + 2:02d}:{start[3:]}"
        session.add(
            TimeSlot(
                order_id=order.id,
                slot_date=first_day + timedelta(days=day_offset),
                slot_start_time=start,
                slot_end_time=end,
                is_available=True,
                status="available",
            )
        )
    return 2


def seed(store) -> int:
    """Upsert demo rows; returns the number of slots created."""
    store.create_all()
    session = store.session()
    try:
        for data in SUBCONTRACTORS:
            ensure_subcontractor(session, data)

        today = date.today()
        due = datetime.combine(today + timedelta(days=7), datetime.min.time(), tzinfo=timezone.utc)
        created_slots = 0
        for i, row in enumerate(ORDERS):
            order = ensure_order(session, row, due)
            created_slots += ensure_slots(session, order, today + timedelta(days=1 + i % 3))

        session.commit()
        return created_slots
    finally:
        session.close()


def main():
    store = build_store()
    if store.database_url.startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)
    try:
        created_slots = seed(store)
    finally:
        store.dispose()
    print(f"Seeded {len(SUBCONTRACTORS)} subcontractors, {len(ORDERS)} orders, {created_slots} new slots")


if __name__ == "__main__":
    main()
