"""Script to initialize the database and seed demo users.

Creates the schema (prefer ``scripts/migrate.py`` outside of local
development), inserts one admin, two doctors and one patient, and prints a
bearer token for each so the API can be exercised right away.
"""

import asyncio

from sqlalchemy import select, text
from sqlalchemy.dialects.postgresql import insert

from clinichub.core.security import create_access_token
from clinichub.database import engine
from clinichub.models import metadata, users

DEMO_USERS = [
    {
        "email": "admin@clinichub.local",
        "first_name": "Ada",
        "last_name": "Admin",
        "role": "admin",
    },
    {
        "email": "house@clinichub.local",
        "first_name": "Gregory",
        "last_name": "House",
        "role": "doctor",
        "specialization": "Diagnostic Medicine",
    },
    {
        "email": "grey@clinichub.local",
        "first_name": "Meredith",
        "last_name": "Grey",
        "role": "doctor",
        "specialization": "General Surgery",
    },
    {
        "email": "patient@clinichub.local",
        "first_name": "Pat",
        "last_name": "Doe",
        "phone": "+15550100",
        "role": "patient",
    },
]


async def init_db() -> None:
    """Create all tables and seed the demo users."""
    async with engine.begin() as conn:
        await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))
        await conn.run_sync(metadata.create_all)
        print("✓ Database schema created")

        await conn.execute(
            insert(users)
            .values([{"phone": None, "specialization": None, **user} for user in DEMO_USERS])
            .on_conflict_do_nothing(index_elements=["email"])
        )
        result = await conn.execute(
            select(users.c.id, users.c.email, users.c.role).where(
                users.c.email.in_([user["email"] for user in DEMO_USERS])
            )
        )
        seeded = result.fetchall()

    await engine.dispose()

    print(f"✓ Seeded {len(seeded)} demo users\n")
    for user_id, email, role in seeded:
        token = create_access_token({"sub": str(user_id), "role": role})
        print(f"{role:<8} {email:<28} {user_id}")
        print(f"         Bearer {token}\n")


if __name__ == "__main__":
    asyncio.run(init_db())
