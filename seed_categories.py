#!/usr/bin/env python3
"""Seed the global default categories.

Usage:
  python3 seed_categories.py            # insert defaults if none exist
  python3 seed_categories.py --reset    # drop and re-create the defaults
"""
import argparse
import logging

from categories import list_global, reset_defaults, seed_defaults
from database import close_client, get_db
from settings import get_settings


def main(argv=None):
    parser = argparse.ArgumentParser(description="Seed the default categories")
    parser.add_argument("--reset", action="store_true", help="delete existing defaults and insert them again")
    args = parser.parse_args(argv)

    logging.basicConfig(level=get_settings().log_level, format="%(levelname)s %(message)s")

    db = get_db()
    try:
        if args.reset:
            created = reset_defaults(db)
        else:
            created = seed_defaults(db)
        if created == 0:
            print("Default categories already present, nothing to do")
        else:
            print(f"Created {created} default categories")
        for category in list_global(db):
            print(f"  - {category['name']}")
    finally:
        close_client()


if __name__ == "__main__":
    main()
