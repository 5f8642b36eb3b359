# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Database Initialization — Create the profile, tenant, tenant-scoped and
migration-progress tables from ORM metadata.

    python -m tenant_bootstrap.storage.init_db [--drop]
"""

import argparse
import asyncio

from tenant_bootstrap.storage.database import (
    Base,
    close_db,
    create_all_tables,
    drop_all_tables,
)

# Ensure models are imported so Base.metadata knows about them
import tenant_bootstrap.storage.models  # noqa: F401


async def main(drop: bool = False) -> None:
    if drop:
        print("[init_db] Dropping tables...")
        await drop_all_tables()
    print(f"[init_db] Creating tables: {', '.join(sorted(Base.metadata.tables))}")
    await create_all_tables()
    print("[init_db] Done.")
    await close_db()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the TenantBootstrap tables")
    parser.add_argument("--drop", action="store_true", help="drop existing tables first")
    args = parser.parse_args()
    asyncio.run(main(drop=args.drop))
