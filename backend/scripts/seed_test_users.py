"""
UGC Portal - Seed Test Users (dev/staging only)
Creates one test account per portal role with predictable credentials.
Run: cd backend && python scripts/seed_test_users.py
Reset: python scripts/seed_test_users.py --reset
"""

import asyncio
import re
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import DEFAULT_TENANT, client, db, hash_password, new_id, now_iso  # noqa: E402
from services.permissions import VALID_ROLES  # noqa: E402

# Same password for all test accounts
TEST_PASSWORD = "UgcTest2026!"


def _email_for(role: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "_", role.lower()).strip("_")
    return f"{slug}@test.local"


TEST_USERS = [
    {"email": _email_for(role), "name": f"{role} Test", "role": role, "tenant": DEFAULT_TENANT}
    for role in VALID_ROLES
]


async def reset(db):
    """Delete all test.local users and their sessions"""
    ids = [u["id"] async for u in db.users.find({"email": {"$regex": "@test\\.local$"}}, {"id": 1})]
    result = await db.users.delete_many({"id": {"$in": ids}})
    await db.sessions.delete_many({"user_id": {"$in": ids}})
    print(f"Deleted {result.deleted_count} test users")


async def seed(db):
    """Create/update test users"""
    for u in TEST_USERS:
        existing = await db.users.find_one({"email": u["email"]})
        doc = {
            "email": u["email"],
            "password": hash_password(TEST_PASSWORD),
            "name": u["name"],
            "role": u["role"],
            "tenant": u["tenant"],
            "is_active": True,
        }
        if existing:
            await db.users.update_one({"email": u["email"]}, {"$set": doc})
            print(f"  Updated: {u['email']} ({u['role']}/{u['tenant']})")
        else:
            doc["id"] = new_id()
            doc["created_at"] = now_iso()
            await db.users.insert_one(doc)
            print(f"  Created: {u['email']} ({u['role']}/{u['tenant']})")


async def main():
    if "--reset" in sys.argv:
        await reset(db)
        print("Reset complete. Run without --reset to re-seed.")
    else:
        await reset(db)
        await seed(db)
        print(f"\n{len(TEST_USERS)} test users seeded. Password for all: {TEST_PASSWORD}")
        print("Reset: python scripts/seed_test_users.py --reset")

    client.close()


if __name__ == "__main__":
    asyncio.run(main())
