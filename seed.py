"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 5 commuters and 1 admin
  - 6 drivers spread over 3 TODAs in Baliuag, Bulacan
  - 6 sample rides (mix of pending, accepted, in-progress, completed, cancelled)
  - 1 passenger/driver chat with two messages
"""

import asyncio
from datetime import timedelta

from sqlalchemy import text

from todaride.domain.entities import utc_now
from todaride.domain.enums import CancelledBy, MessageType, RideStatus, UserRole
from todaride.infrastructure.database import async_session_factory, dispose_engine
from todaride.infrastructure.models import (
    ChatModel,
    MessageModel,
    RideModel,
    UserModel,
)

# Baliuag town proper (approx)
BAYAN = ("Bayan", 14.8847, 120.8572)
SM = ("SM Baliwag", 14.8889, 120.8543)
BAGONG_NAYON = ("Bagong Nayon", 14.8920, 120.8590)
BARANGKA = ("Barangka", 14.8950, 120.8620)
SAPANG = ("Sapang", 14.9000, 120.8650)
CATULNAN = ("Catulnan", 14.8700, 120.8450)


COMMUTERS = [
    {"first_name": "Maria", "last_name": "Santos", "email": "maria@example.com", "phone": "09171234501"},
    {"first_name": "Jose", "last_name": "Reyes", "email": "jose@example.com", "phone": "09171234502"},
    {"first_name": "Ana", "last_name": "Cruz", "email": "ana@example.com", "phone": "09171234503"},
    {"first_name": "Pedro", "last_name": "Bautista", "email": "pedro@example.com", "phone": "09171234504"},
    {"first_name": "Liza", "last_name": "Garcia", "email": "liza@example.com", "phone": "09171234505"},
]

DRIVERS = [
    {"first_name": "Ramon", "last_name": "Dela Cruz", "email": "ramon@example.com", "phone": "09181234501", "toda": "BNBB TODA"},
    {"first_name": "Nestor", "last_name": "Aquino", "email": "nestor@example.com", "phone": "09181234502", "toda": "BNBB TODA"},
    {"first_name": "Carlo", "last_name": "Mendoza", "email": "carlo@example.com", "phone": "09181234503", "toda": "BPP TODA"},
    {"first_name": "Dennis", "last_name": "Villanueva", "email": "dennis@example.com", "phone": "09181234504", "toda": "BPP TODA"},
    {"first_name": "Efren", "last_name": "Ramos", "email": "efren@example.com", "phone": "09181234505", "toda": "PC TODA"},
    {"first_name": "Rodel", "last_name": "Torres", "email": "rodel@example.com", "phone": "09181234506", "toda": "PC TODA"},
]


def _point(prefix, place):
    name, lat, lng = place
    return {f"{prefix}_name": name, f"{prefix}_lat": lat, f"{prefix}_lng": lng}


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users ─────────────────────────────────────────────────────
        commuters = [
            UserModel(
                first_name=u["first_name"],
                last_name=u["last_name"],
                email=u["email"],
                phone_number=u["phone"],
                role=UserRole.COMMUTER,
            )
            for u in COMMUTERS
        ]
        drivers = [
            UserModel(
                first_name=d["first_name"],
                last_name=d["last_name"],
                email=d["email"],
                phone_number=d["phone"],
                role=UserRole.DRIVER,
                toda_name=d["toda"],
            )
            for d in DRIVERS
        ]
        admin = UserModel(
            first_name="Site", last_name="Admin", email="admin@example.com", role=UserRole.ADMIN
        )
        session.add_all([*commuters, *drivers, admin])
        await session.flush()
        print(f"  Created {len(commuters) + len(drivers) + 1} users")

        # ── Rides ─────────────────────────────────────────────────────
        now = utc_now()
        rides_data = [
            # Waiting for a BNBB driver
            {
                "passenger": commuters[0], "pickup": BAYAN, "dropoff": BAGONG_NAYON,
                "distance": 1.2, "fare": 18, "toda": "BNBB TODA",
                "status": RideStatus.PENDING,
            },
            {
                "passenger": commuters[1], "pickup": SM, "dropoff": BARANGKA,
                "distance": 1.6, "fare": 24, "toda": "BPP TODA",
                "status": RideStatus.PENDING,
            },
            # Driver on the way
            {
                "passenger": commuters[2], "pickup": BAYAN, "dropoff": SAPANG,
                "distance": 2.3, "fare": 35, "toda": "BPP TODA",
                "status": RideStatus.ACCEPTED, "driver": drivers[2],
            },
            # Passenger on board
            {
                "passenger": commuters[3], "pickup": SM, "dropoff": CATULNAN,
                "distance": 2.8, "fare": 42, "toda": "PC TODA",
                "status": RideStatus.IN_PROGRESS, "driver": drivers[4],
                "started_at": now - timedelta(minutes=4),
            },
            # Finished
            {
                "passenger": commuters[4], "pickup": BAGONG_NAYON, "dropoff": BAYAN,
                "distance": 1.2, "fare": 18, "toda": "BNBB TODA",
                "status": RideStatus.COMPLETED, "driver": drivers[0],
                "started_at": now - timedelta(hours=2, minutes=10),
                "completed_at": now - timedelta(hours=2),
            },
            {
                "passenger": commuters[0], "pickup": CATULNAN, "dropoff": SM,
                "distance": 2.8, "fare": 42, "toda": "PC TODA",
                "status": RideStatus.CANCELLED,
                "cancelled_by": CancelledBy.USER, "reason": "Changed plans",
            },
        ]

        rides = []
        for r in rides_data:
            driver = r.get("driver")
            ride = RideModel(
                passenger_id=r["passenger"].id,
                passenger_first_name=r["passenger"].first_name,
                passenger_last_name=r["passenger"].last_name,
                **_point("pickup", r["pickup"]),
                **_point("dropoff", r["dropoff"]),
                distance_km=r["distance"],
                fare=r["fare"],
                toda_name=r["toda"],
                status=r["status"],
                driver_id=driver.id if driver else None,
                cancelled_by=r.get("cancelled_by"),
                cancelled_reason=r.get("reason"),
                started_at=r.get("started_at"),
                completed_at=r.get("completed_at"),
            )
            session.add(ride)
            rides.append(ride)
        await session.flush()
        print(f"  Created {len(rides)} rides")

        # ── Chat for the accepted ride ────────────────────────────────
        passenger, driver = commuters[2], drivers[2]
        member_a, member_b = sorted([passenger.id, driver.id])
        chat = ChatModel(member_a=member_a, member_b=member_b, unread_message_count=0)
        session.add(chat)
        await session.flush()

        first = MessageModel(
            chat_id=chat.id,
            sender_id=driver.id,
            text="Papunta na po ako, nasa Bayan na.",
            type=MessageType.TEXT,
            created_at=now - timedelta(minutes=2),
        )
        second = MessageModel(
            chat_id=chat.id,
            sender_id=passenger.id,
            text="Sige po, hintayin ko kayo sa harap ng simbahan.",
            type=MessageType.TEXT,
            created_at=now - timedelta(minutes=1),
        )
        session.add_all([first, second])
        await session.flush()
        chat.last_message_id = second.id
        chat.unread_message_count = 2
        chat.updated_at = second.created_at
        print("  Created 1 chat with 2 messages")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
