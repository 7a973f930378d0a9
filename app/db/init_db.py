"""
Create the fee ledger tables.

Run once against an empty database with DATABASE_URL set:
  python -m app.db.init_db

Creates students, classes, enrollments, fee_structures, fee_structure_classes,
ledger_records, payments, credit_transfers, unmatched_payments and fee_audit_logs
(if not exists). Existing tables are left as they are.
"""
import asyncio

import app.core.models  # noqa: F401  registers every table on Base.metadata
from app.db.session import Base, engine


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def main() -> None:
    try:
        await init_db()
    finally:
        await engine.dispose()
    print(f"Tables ready: {', '.join(sorted(Base.metadata.tables))}")


if __name__ == "__main__":
    asyncio.run(main())
