#!/usr/bin/env python3
"""
MIGRATION SCRIPT: Billing Ledger Indexes

Creates:
1. recurring_billing, payments and cash_flow collections
2. unique partial index on cash_flow.payment_id (one income entry per installment)
3. series and status lookup indexes on payments

Run: python migrations/001_ledger_indexes.py
"""

import asyncio
import os
import sys
from datetime import datetime

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv

from ledger_store import MotorLedgerStore

load_dotenv()

COLLECTIONS = ["recurring_billing", "payments", "cash_flow"]


async def find_duplicate_bookings(db):
    """Payment ids booked more than once; these block the unique index."""
    pipeline = [
        {"$match": {"payment_id": {"$type": "string"}}},
        {"$group": {"_id": "$payment_id", "count": {"$sum": 1}}},
        {"$match": {"count": {"$gt": 1}}}
    ]
    return await db.cash_flow.aggregate(pipeline).to_list(length=None)


async def run_migration():
    """Execute the ledger index migration."""

    mongo_url = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
    db_name = os.environ.get('DB_NAME', 'billing_ledger')

    print(f"Connecting to: {mongo_url}")
    print(f"Database: {db_name}")

    client = AsyncIOMotorClient(mongo_url)
    db = client[db_name]

    try:
        await client.admin.command('ping')
        print("✓ Connected to MongoDB")

        existing = await db.list_collection_names()
        print(f"Existing collections: {existing}")

        # =====================================================
        # 1. Collections
        # =====================================================
        for name in COLLECTIONS:
            if name not in existing:
                await db.create_collection(name)
                print(f"✓ Created {name} collection")
            else:
                print(f"• {name} collection already exists")

        # =====================================================
        # 2. Duplicate bookings must be resolved by hand first
        # =====================================================
        duplicates = await find_duplicate_bookings(db)
        if duplicates:
            print(f"\n✗ {len(duplicates)} payment(s) have more than one cash flow entry:")
            for dup in duplicates:
                print(f"  payment_id={dup['_id']} entries={dup['count']}")
            raise RuntimeError("Remove duplicate cash flow entries before creating the unique index")
        print("✓ No duplicate cash flow bookings")

        # =====================================================
        # 3. Indexes
        # =====================================================
        await MotorLedgerStore(db).create_indexes()

        cf_indexes = await db.cash_flow.index_information()
        payment_indexes = await db.payments.index_information()

        print("\n=== Cash Flow Indexes ===")
        for name, info in cf_indexes.items():
            print(f"  {name}: {info['key']}")

        print("\n=== Payments Indexes ===")
        for name, info in payment_indexes.items():
            print(f"  {name}: {info['key']}")

        if "unique_cash_flow_payment_id" not in cf_indexes:
            raise RuntimeError("unique_cash_flow_payment_id was not created")

        # =====================================================
        # Migration metadata
        # =====================================================
        migration_record = {
            "migration_id": "001_ledger_indexes",
            "description": "Billing ledger collections and indexes",
            "tables_created": COLLECTIONS,
            "indexes_created": [
                "unique_cash_flow_payment_id",
                "idx_payments_series",
                "idx_payments_status",
                "idx_recurring_billing_client_description"
            ],
            "executed_at": datetime.utcnow(),
            "status": "success"
        }

        await db.migrations.update_one(
            {"migration_id": "001_ledger_indexes"},
            {"$set": migration_record},
            upsert=True
        )
        print("\n✓ Migration record saved")

        print("\n" + "="*50)
        print("MIGRATION COMPLETE: Billing Ledger Indexes")
        print("="*50)

        return {
            "status": "success",
            "collections": COLLECTIONS,
            "indexes": 4
        }

    except Exception as e:
        print(f"\n✗ Migration failed: {str(e)}")
        raise
    finally:
        client.close()


if __name__ == "__main__":
    result = asyncio.run(run_migration())
    print(f"\nResult: {result}")
