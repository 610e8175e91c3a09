#!/usr/bin/env python3
# ==============================
# Session Schema Migration Utility
# ==============================
"""
Utility script to inspect/apply sqlite session store schema migrations.

Usage:
    python scripts/migrate_sessions.py --db-path storage/sessions.sqlite --apply
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from intentchat.config.loader import load_settings
from intentchat.memory.router import session_db_path
from intentchat.memory.sqlite_backend import LATEST_VERSION, SQLiteSessionStore


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Inspect/apply sqlite session schema migrations.")
    ap.add_argument("--db-path", help="Path to sqlite file. If omitted, derived from settings.", default=None)
    ap.add_argument("--apply", action="store_true", help="Apply pending migrations (idempotent).")
    ap.add_argument("--repo-root", default=None, help="Override repo root for settings resolution.")
    ap.add_argument("--configs-dir", default=None, help="Override configs directory.")
    return ap.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)

    settings_kwargs = {"repo_root": args.repo_root, "configs_dir": args.configs_dir}
    settings = load_settings(**{k: v for k, v in settings_kwargs.items() if v})

    db_path = Path(args.db_path) if args.db_path else session_db_path(settings)
    store = SQLiteSessionStore(db_path=str(db_path), initialize=False)

    current_version = store.get_schema_version()
    pending = max(0, LATEST_VERSION - current_version)

    print(f"DB path: {db_path}")
    print(f"Current schema version: {current_version}")
    print(f"Latest schema version: {LATEST_VERSION}")
    print(f"Pending migrations: {pending}")

    if args.apply and pending > 0:
        print("Applying migrations...")
        store.ensure_schema()
        print(f"Schema updated to version {store.get_schema_version()}")
    elif args.apply:
        print("No migrations to apply.")

    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
