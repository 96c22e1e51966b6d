#!/usr/bin/env python3
"""Migrate the database and seed a demo society for the Gatehouse API."""

import asyncio
import sys
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from alembic import command
from alembic.config import Config
from sqlalchemy import func, select

from gatehouse.core.database import async_session_factory, close_db
from gatehouse.core.observability import get_logger, setup_structured_logging
from gatehouse.core.security import CredentialKind, issue_access_token
from gatehouse.models import Amenity, Operator, Resident, ResidentVehicle, Society, Worker

setup_structured_logging()
logger = get_logger("setup")


def run_migrations() -> None:
    """Upgrade the schema to head. Alembic's env.py drives its own event loop."""
    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))

    logger.info("Running database migrations")
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed")


async def seed_demo_society() -> None:
    """Create one society with a resident, a worker, an operator and two amenities."""
    async with async_session_factory() as db:
        existing = await db.scalar(select(func.count()).select_from(Society))
        if existing:
            logger.info("Demo data already present, skipping", societies=existing)
            return

        society = Society(name="Green Meadows", timezone="Asia/Kolkata")
        db.add(society)
        await db.flush()

        resident = Resident(tenant_id=society.id, name="Asha Rao", unit="B-402")
        db.add(resident)
        await db.flush()

        db.add_all([
            ResidentVehicle(tenant_id=society.id, resident_id=resident.id, plate="KA01MJ2024"),
            Worker(tenant_id=society.id, name="Ravi Kumar", department="security"),
            Amenity(tenant_id=society.id, name="Swimming Pool", capacity=20),
            Amenity(tenant_id=society.id, name="Clubhouse", capacity=60),
        ])
        operator = Operator(tenant_id=society.id, name="Front Desk", email="desk@greenmeadows.example")
        db.add(operator)
        await db.commit()

        logger.info(
            "Demo society created",
            society_id=str(society.id),
            resident_token=issue_access_token(CredentialKind.RESIDENT, resident.id, society.id),
            operator_token=issue_access_token(CredentialKind.OPERATOR, operator.id, society.id),
        )

    await close_db()


def main() -> None:
    run_migrations()
    asyncio.run(seed_demo_society())
    logger.info("Setup completed; start the API with: cd server && uvicorn gatehouse.main:app --reload")


if __name__ == "__main__":
    main()
