"""Script to initialize the database for local development."""

import asyncio
import sys
from datetime import timedelta

from sqlalchemy import insert, select, text

from admission.core.security import create_access_token
from admission.database import AsyncSessionLocal, engine
from admission.models import metadata, users
from admission.services.transition_rules import seed_transition_rules


async def init_db(admin_email: str | None = None) -> None:
    """Create all tables, seed transition rules and optionally an admin user."""
    async with engine.begin() as conn:
        if engine.dialect.name == "postgresql":
            await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))

        # Create all tables
        await conn.run_sync(metadata.create_all)

    print("✓ Database tables created")

    async with AsyncSessionLocal() as session:
        inserted = await seed_transition_rules(session)
        print(f"✓ Seeded {inserted} transition rules")

        if admin_email:
            result = await session.execute(select(users.c.id).where(users.c.email == admin_email))
            admin_id = result.scalar_one_or_none()
            if admin_id is None:
                result = await session.execute(
                    insert(users)
                    .values(email=admin_email, full_name="Administrator", role="admin")
                    .returning(users.c.id)
                )
                admin_id = result.scalar_one()
                await session.commit()
                print(f"✓ Created admin user {admin_email}")

            token = create_access_token({"sub": str(admin_id)}, expires_delta=timedelta(days=1))
            print(f"Admin access token (24h): {token}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_db(sys.argv[1] if len(sys.argv) > 1 else None))
