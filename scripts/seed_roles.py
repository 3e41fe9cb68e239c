#!/usr/bin/env python3
"""
Procurement Portal — seed directory roles and default load-balancing settings.

Idempotent: safe to run multiple times. Existing roles are updated in place
and an existing settings row is left untouched.

Usage:
    python scripts/seed_roles.py
    python scripts/seed_roles.py --env production
    python scripts/seed_roles.py --enable-auto-assign --strategy ROUND_ROBIN
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from portal import create_app
from portal.models import db
from portal.models.auth import Role
from portal.models.load_balancing import LOAD_BALANCING_STRATEGIES, LoadBalancingSettings

ROLES = {
    "REQUESTER": {
        "display_name": "Requester",
        "description": "Raises purchase requests for their department",
    },
    "DEPT_MANAGER": {
        "display_name": "Department Manager",
        "description": "Reviews and approves department requests",
    },
    "PROCUREMENT": {
        "display_name": "Procurement Officer",
        "description": "Handles requests in procurement review; auto-assignment pool",
    },
    "FINANCE": {
        "display_name": "Finance",
        "description": "Budget approval and payment stages",
    },
    "EXECUTIVE": {
        "display_name": "Executive",
        "description": "Final approval above delegated limits",
    },
}


def seed_roles():
    """Create or update the directory roles."""
    created = 0
    for name, cfg in ROLES.items():
        role = Role.query.filter_by(name=name).first()
        if not role:
            db.session.add(Role(name=name, **cfg))
            created += 1
        else:
            role.display_name = cfg["display_name"]
            role.description = cfg["description"]
    db.session.commit()
    print(f"  Roles: {created} created, {len(ROLES) - created} already existed")
    return created


def seed_settings(enabled, strategy):
    """Create the load-balancing settings row if none exists."""
    existing = LoadBalancingSettings.query.order_by(LoadBalancingSettings.id).first()
    if existing:
        print(f"  Load balancing: already configured (id={existing.id}, strategy={existing.strategy})")
        return existing

    settings = LoadBalancingSettings(enabled=enabled, strategy=strategy)
    db.session.add(settings)
    db.session.commit()
    print(f"  Load balancing: created (enabled={enabled}, strategy={strategy})")
    return settings


def main():
    parser = argparse.ArgumentParser(description="Seed roles and default load-balancing settings")
    parser.add_argument("--env", default="development", help="App environment")
    parser.add_argument("--enable-auto-assign", action="store_true",
                        help="Enable auto-assignment on the new settings row")
    parser.add_argument("--strategy", default="LEAST_LOADED",
                        choices=sorted(LOAD_BALANCING_STRATEGIES))
    args = parser.parse_args()

    os.environ.setdefault("APP_ENV", args.env)
    app = create_app(args.env)

    with app.app_context():
        print("=" * 60)
        print("  SEED: Roles & Load-Balancing Settings")
        print("=" * 60)

        print("\nSeeding roles...")
        seed_roles()

        print("\nSeeding load-balancing settings...")
        seed_settings(args.enable_auto_assign, args.strategy)

        print("\nDone.")


if __name__ == "__main__":
    main()
