import argparse
import asyncio
import os
import sys

# Ensure backend path is in sys.path
if os.path.exists("backend"):
    sys.path.append(os.path.join(os.getcwd(), "backend"))
else:
    sys.path.append(os.getcwd())

from boop.domain.proximity.directory import RedisUserDirectory
from boop.domain.proximity.exceptions import AlreadyInGroup
from boop.domain.proximity.groups import RedisGroupStore
from boop.domain.proximity.models import UserRecord
from boop.infra.redis import redis_client

DEMO_USERS = [
    ("user1", "Alice Johnson"),
    ("user2", "Bob Smith"),
    ("user3", "Charlie Brown"),
]
DEMO_GROUP_ID = "DEMO01"
DEMO_GROUP_NAME = "Demo Walkers"


async def seed(with_group: bool) -> None:
    directory = RedisUserDirectory(redis_client)
    groups = RedisGroupStore(directory, redis_client)

    for uid, name in DEMO_USERS:
        existing = await directory.get_user(uid)
        if existing is not None:
            print(f"User {name} already exists")
            continue
        await directory.upsert_user(UserRecord(uid=uid, name=name))
        print(f"Created user: {name} ({uid})")

    if with_group:
        creator, *others = [uid for uid, _ in DEMO_USERS]
        if await groups.get_group(DEMO_GROUP_ID) is None:
            try:
                await groups.create_group(DEMO_GROUP_NAME, creator, group_id=DEMO_GROUP_ID)
            except AlreadyInGroup:
                print(f"{creator} is already in a group; skipping group seed")
                return
        for uid in others:
            try:
                await groups.join_group(DEMO_GROUP_ID, uid)
            except AlreadyInGroup:
                print(f"{uid} is already in a group")
        print(f"Group {DEMO_GROUP_NAME} ({DEMO_GROUP_ID}) ready")


async def main(with_group: bool) -> None:
    try:
        await seed(with_group)
    finally:
        await redis_client.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed demo users into Redis")
    parser.add_argument("--no-group", action="store_true", help="do not create the shared demo group")
    args = parser.parse_args()
    if sys.platform == 'win32':
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(main(with_group=not args.no_group))
