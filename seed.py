"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 6 passengers and 2 drivers
  - 1 ride still searching for a driver
  - 1 ongoing shared ride with two approved passengers and one pending
    join request (fares computed by the allocation engine)

Rides go through ``RideService`` so their fares are real allocations, not
hand-written numbers.
"""

import asyncio

from sqlalchemy import text

from src.config import settings
from src.domain.enums import UserRole
from src.domain.pricing import FareAllocationEngine
from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.models import UserModel
from src.infrastructure.repositories import SqlRideRepository, UserRepository
from src.realtime.broadcaster import InMemoryBroadcaster
from src.services.ride_service import RideService

# Mumbai airport [longitude, latitude]
AIRPORT = {"name": "Mumbai Airport T2", "coordinates": [72.8656, 19.0896]}


USERS = [
    {"name": "Aarav Sharma", "email": "aarav@example.com"},
    {"name": "Priya Patel", "email": "priya@example.com"},
    {"name": "Rohan Mehta", "email": "rohan@example.com"},
    {"name": "Sneha Gupta", "email": "sneha@example.com"},
    {"name": "Ananya Reddy", "email": "ananya@example.com"},
    {"name": "Meera Nair", "email": "meera@example.com"},
    {
        "name": "Vikram Singh",
        "email": "vikram@example.com",
        "role": UserRole.DRIVER,
        "vehicle": {"model": "Maruti Dzire", "plate": "MH 02 AB 1234"},
    },
    {
        "name": "Karan Joshi",
        "email": "karan@example.com",
        "role": UserRole.DRIVER,
        "vehicle": {"model": "Toyota Innova", "plate": "MH 04 CD 5678"},
    },
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users ─────────────────────────────────────────────────────
        user_models = []
        for u in USERS:
            m = UserModel(
                name=u["name"],
                email=u["email"],
                role=u.get("role", UserRole.PASSENGER),
                vehicle=u.get("vehicle"),
            )
            session.add(m)
            user_models.append(m)
        await session.commit()
        print(f"  Created {len(user_models)} users")

        passengers = [m.id for m in user_models if m.role == UserRole.PASSENGER]
        drivers = [m.id for m in user_models if m.role == UserRole.DRIVER]

        service = RideService(
            SqlRideRepository(session),
            UserRepository(session),
            InMemoryBroadcaster(),
            fare_engine=FareAllocationEngine(
                settings.rate_per_km,
                settings.pooling_efficiency,
                settings.solo_discount,
            ),
            max_passengers=settings.max_passengers,
            default_base_fare=settings.default_base_fare,
        )

        # ── Searching ride ────────────────────────────────────────────
        await service.create_ride(
            passengers[0],
            AIRPORT,
            {"name": "Bandra", "coordinates": [72.8400, 19.0540]},
        )

        # ── Ongoing shared ride ───────────────────────────────────────
        shared = await service.create_ride(
            passengers[1],
            AIRPORT,
            {"name": "Powai", "coordinates": [72.9060, 19.1176]},
        )
        await service.accept_ride(shared.id, drivers[0], base_fare=50.0)
        await service.request_join(
            shared.id,
            passengers[2],
            {"name": "Airport Gate 4", "coordinates": [72.8660, 19.0900]},
            {"name": "IIT Bombay", "coordinates": [72.9100, 19.1200]},
        )
        await service.approve_join(shared.id, passengers[2], passengers[1], True)
        await service.request_join(
            shared.id,
            passengers[3],
            {"name": "Airport Gate 2", "coordinates": [72.8655, 19.0895]},
            {"name": "Hiranandani", "coordinates": [72.9000, 19.1136]},
        )
        ride = await service.get_ride(shared.id)
        print(
            f"  Created 2 rides (shared ride {ride.id}: "
            f"{len(ride.passengers)} passengers, total {ride.pricing.current_total:.2f})"
        )

        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
