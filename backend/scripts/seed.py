#!/usr/bin/env python3
"""
Seed the database with a demo host, project and two sessions.

Usage: python scripts/seed.py
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database.database import SessionLocal, create_tables
from snapshots.engine import compute_snapshot_diff
from storage import DatabaseStorage, StorageException

DEMO_FILES = {
    "src/index.ts": "import { greet } from './greet';\n\nconsole.log(greet('world'));\n",
    "src/greet.ts": "export function greet(name: string) {\n  return `Hello, ${name}!`;\n}\n",
}


def seed(storage: DatabaseStorage):
    host = storage.create_user("demo-host", display_name="Demo Host")
    project = storage.create_project(host["id"], "greeter", "Small TypeScript demo")
    for path, content in DEMO_FILES.items():
        storage.create_file(project["id"], path, content)

    live = storage.create_session(host["id"], "Pairing on greeter", project_id=project["id"], status="live")
    storage.create_session(host["id"], "Code review", project_id=project["id"])

    diff = compute_snapshot_diff(None, DEMO_FILES)
    snapshot = storage.persist_snapshot(live["id"], diff, str(host["id"]), "Initial import")
    storage.create_comment(
        live["id"], snapshot["id"], "src/greet.ts", {"startLine": 2, "endLine": 2}, str(host["id"]),
        "Should this handle an empty name?"
    )
    return live


if __name__ == "__main__":
    create_tables()
    try:
        session = seed(DatabaseStorage(SessionLocal))
    except StorageException as e:
        print(f"❌ Seeding skipped: {e}")
        sys.exit(1)
    print(f"✅ Seeded session {session['id']} ({session['title']})")
