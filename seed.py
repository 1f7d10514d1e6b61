"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 5 sample customers
  - 12 sample drivers (three per vehicle tier, around Bengaluru CBD)
  - 3 promo codes (WELCOME50, FLAT30, and an expired SUMMER20)
  - 1 pending order waiting for a BIKE driver
"""

import asyncio
from datetime import timedelta

from sqlalchemy import text

from carryon.config import settings
from carryon.domain.distance import h3_cell
from carryon.domain.entities import utcnow
from carryon.domain.enums import (
    DiscountType,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    VehicleType,
)
from carryon.domain.pricing import FareEngine
from carryon.infrastructure.database import async_session_factory, engine
from carryon.infrastructure.models import (
    CustomerModel,
    DriverModel,
    OrderModel,
    PromoCodeModel,
    StatusHistoryModel,
)

# MG Road, Bengaluru (approx)
CENTER_LAT, CENTER_LNG = 12.9756, 77.6050


CUSTOMERS = [
    {"name": "Aarav Sharma", "phone": "+919800000001", "email": "aarav@example.com"},
    {"name": "Priya Patel", "phone": "+919800000002", "email": "priya@example.com"},
    {"name": "Rohan Mehta", "phone": "+919800000003", "email": None},
    {"name": "Sneha Gupta", "phone": "+919800000004", "email": "sneha@example.com"},
    {"name": "Diya Iyer", "phone": "+919800000005", "email": None},
]

DRIVERS = [
    # Bikes
    {"name": "Ravi Kumar", "vehicle_type": VehicleType.BIKE, "number": "KA01AB1001", "model": "Honda Activa", "lat": 12.9760, "lng": 77.6040, "online": True},
    {"name": "Suresh Rao", "vehicle_type": VehicleType.BIKE, "number": "KA01AB1002", "model": "TVS Jupiter", "lat": 12.9740, "lng": 77.6070, "online": True},
    {"name": "Imran Khan", "vehicle_type": VehicleType.BIKE, "number": "KA01AB1003", "model": "Bajaj Pulsar", "lat": 12.9800, "lng": 77.6000, "online": False},
    # Cars
    {"name": "Manoj Nair", "vehicle_type": VehicleType.CAR, "number": "KA02CD2001", "model": "Maruti Swift", "lat": 12.9720, "lng": 77.6100, "online": True},
    {"name": "Kiran Shetty", "vehicle_type": VehicleType.CAR, "number": "KA02CD2002", "model": "Hyundai i20", "lat": 12.9780, "lng": 77.5990, "online": True},
    {"name": "Arjun Das", "vehicle_type": VehicleType.CAR, "number": "KA02CD2003", "model": "Tata Tiago", "lat": 12.9700, "lng": 77.6120, "online": False},
    # Vans
    {"name": "Vikram Singh", "vehicle_type": VehicleType.VAN, "number": "KA03EF3001", "model": "Maruti Eeco", "lat": 12.9690, "lng": 77.6010, "online": True},
    {"name": "Naveen Reddy", "vehicle_type": VehicleType.VAN, "number": "KA03EF3002", "model": "Tata Ace", "lat": 12.9820, "lng": 77.6090, "online": True},
    {"name": "Gopal Joshi", "vehicle_type": VehicleType.VAN, "number": "KA03EF3003", "model": "Mahindra Supro", "lat": 12.9650, "lng": 77.5950, "online": False},
    # Trucks
    {"name": "Harish Gowda", "vehicle_type": VehicleType.TRUCK, "number": "KA04GH4001", "model": "Ashok Leyland Dost", "lat": 12.9600, "lng": 77.6200, "online": True},
    {"name": "Mahesh Patil", "vehicle_type": VehicleType.TRUCK, "number": "KA04GH4002", "model": "Tata 407", "lat": 12.9900, "lng": 77.5900, "online": False},
    {"name": "Prakash Hegde", "vehicle_type": VehicleType.TRUCK, "number": "KA04GH4003", "model": "Eicher Pro", "lat": 12.9550, "lng": 77.6150, "online": False},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM customers"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        now = utcnow()

        # ── Customers ─────────────────────────────────────────────────
        customer_models = []
        for c in CUSTOMERS:
            m = CustomerModel(name=c["name"], phone=c["phone"], email=c["email"])
            session.add(m)
            customer_models.append(m)
        await session.flush()
        print(f"  Created {len(customer_models)} customers")

        # ── Drivers ───────────────────────────────────────────────────
        for i, d in enumerate(DRIVERS, start=1):
            session.add(
                DriverModel(
                    name=d["name"],
                    phone=f"+91970000{i:04d}",
                    vehicle_type=d["vehicle_type"],
                    vehicle_number=d["number"],
                    vehicle_model=d["model"],
                    is_verified=True,
                    is_online=d["online"],
                    current_lat=d["lat"],
                    current_lng=d["lng"],
                )
            )
        await session.flush()
        print(f"  Created {len(DRIVERS)} drivers")

        # ── Promo codes ───────────────────────────────────────────────
        session.add_all(
            [
                PromoCodeModel(
                    code="WELCOME50",
                    description="50% off your first delivery, up to 100",
                    discount_type=DiscountType.PERCENTAGE,
                    discount_value=50,
                    max_discount=100,
                    min_order_amount=50,
                    max_uses=1000,
                    valid_from=now - timedelta(days=1),
                    valid_until=now + timedelta(days=90),
                ),
                PromoCodeModel(
                    code="FLAT30",
                    description="Flat 30 off on orders above 150",
                    discount_type=DiscountType.FIXED,
                    discount_value=30,
                    min_order_amount=150,
                    valid_from=now - timedelta(days=1),
                    valid_until=now + timedelta(days=30),
                ),
                PromoCodeModel(
                    code="SUMMER20",
                    description="Expired seasonal offer",
                    discount_type=DiscountType.PERCENTAGE,
                    discount_value=20,
                    valid_from=now - timedelta(days=120),
                    valid_until=now - timedelta(days=30),
                ),
            ]
        )
        await session.flush()
        print("  Created 3 promo codes")

        # ── A pending order for the BIKE pool ─────────────────────────
        fare = FareEngine().fare(VehicleType.BIKE, 4200, 900)
        order = OrderModel(
            customer_id=customer_models[0].id,
            pickup_address="Brigade Road, Bengaluru",
            pickup_lat=12.9719,
            pickup_lng=77.6070,
            pickup_h3_cell=h3_cell(12.9719, 77.6070, settings.h3_resolution),
            drop_address="Indiranagar 100 Ft Road, Bengaluru",
            drop_lat=12.9784,
            drop_lng=77.6408,
            vehicle_type=VehicleType.BIKE,
            package_description="Documents",
            distance_m=4200,
            duration_s=900,
            base_fare=fare.base,
            distance_fare=fare.distance_fare,
            time_fare=fare.time_fare,
            total_fare=fare.total,
            payment_method=PaymentMethod.CASH,
            payment_status=PaymentStatus.PENDING,
            status=OrderStatus.PENDING,
            created_at=now,
        )
        session.add(order)
        await session.flush()
        session.add(
            StatusHistoryModel(
                order_id=order.id,
                status=OrderStatus.PENDING,
                note="Order created",
                created_at=now,
            )
        )
        print("  Created 1 pending order")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
