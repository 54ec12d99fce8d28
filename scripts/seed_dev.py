#!/usr/bin/env python
"""Seed development database with demo users and a chat room.

Creates two demo users and the room between them so a local frontend has
something to talk to.

Constraints:
- Refuses to run in staging or prod (TALENTLINK_ENV check)
- Idempotent: users are matched by handle, rooms by participant pair
- Never runs automatically (manual invocation only)

Usage:
    cd python && DATABASE_URL=... python ../scripts/seed_dev.py
"""

import os
import sys

DEMO_OWNER = {"handle": "demo-owner", "name": "Demo Owner", "major": "Design"}
DEMO_GUEST = {"handle": "demo-guest", "name": "Demo Guest", "major": "Computer Science"}
DEMO_POST_REF = 1


def main():
    # 1. Environment check (hard fail in staging/prod)
    env = os.getenv("TALENTLINK_ENV", "local")
    if env not in ("local", "test"):
        print(f"ERROR: seed_dev.py refuses to run in TALENTLINK_ENV={env}")
        sys.exit(1)

    # 2. Check DATABASE_URL
    if not os.getenv("DATABASE_URL"):
        print("ERROR: DATABASE_URL environment variable must be set")
        sys.exit(1)

    from talentlink.db.session import get_session_factory
    from talentlink.services import chat, users

    db = get_session_factory()()
    try:
        # 3. Users (provisioned exactly as first login would)
        owner_uid = users.ensure_user(db, **DEMO_OWNER)
        guest_uid = users.ensure_user(db, **DEMO_GUEST)

        # 4. Room between them (guest opens a chat on the owner's post)
        room = chat.create_room(
            db, viewer_uid=guest_uid, post_id=DEMO_POST_REF, owner_uid=owner_uid
        )
    finally:
        db.close()

    print(f"✓ Users: {DEMO_OWNER['handle']}={owner_uid}, {DEMO_GUEST['handle']}={guest_uid}")
    print(f"✓ Room: {room.room_id} (post {room.post_id})")
    print("\nSeed complete!")


if __name__ == "__main__":
    main()
