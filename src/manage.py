"""Checkout database management CLI.

Provides commands to create and drop the database schema of the checkout
domain. Only SQL providers (PROTEAN_ENV=production) have a schema to manage.

Usage:
    python src/manage.py setup-db   # Create all tables
    python src/manage.py drop-db    # Drop all tables
"""

import argparse
import sys


def setup_database():
    """Create the database schema for the checkout domain."""
    from checkout.domain import checkout
    from checkout.utils.db import setup_db

    print("Initializing checkout domain...")
    checkout.init()
    print("Creating checkout database schema...")
    providers = setup_db(checkout)
    if not providers:
        print("  No SQL provider configured; nothing to create.")
    else:
        print(f"  Schema ready on: {', '.join(providers)}.")
    print("Done.")


def drop_database():
    """Drop the database schema for the checkout domain."""
    from checkout.domain import checkout
    from checkout.utils.db import drop_db

    print("Initializing checkout domain...")
    checkout.init()
    print("Dropping checkout database schema...")
    providers = drop_db(checkout)
    if not providers:
        print("  No SQL provider configured; nothing to drop.")
    else:
        print(f"  Schema dropped on: {', '.join(providers)}.")
    print("Done.")


def main():
    parser = argparse.ArgumentParser(description="Checkout database management")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
