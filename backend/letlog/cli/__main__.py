# backend/letlog/cli/__main__.py
from __future__ import annotations

import argparse

from letlog.cli.seed_demo import seed_demo
from letlog.db import SessionLocal, init_db
from letlog.logging_config import configure_logging
from letlog.middleware.request_id import bind_request_id, new_request_id
from letlog.services.invitation_service import sweep_expired_invitations


def _sweep() -> int:
    # one id per run so the sweep's log lines group together
    with bind_request_id(new_request_id("sweep-")):
        db = SessionLocal()
        try:
            return sweep_expired_invitations(db)
        finally:
            db.close()


def main() -> None:
    p = argparse.ArgumentParser(prog="letlog")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="create tables for a local database")

    seed = sub.add_parser("seed-demo", help="create demo users, a property and a draft tenancy")
    seed.add_argument("--landlord-email", default="landlord@demo.local")
    seed.add_argument("--tenant-email", default="tenant@demo.local")
    seed.add_argument("--contractor-email", default="contractor@demo.local")
    seed.add_argument("--no-sample-tenancy", action="store_true")

    sub.add_parser("sweep-invitations", help="mark overdue pending invitations expired")

    args = p.parse_args()
    configure_logging()

    if args.command == "init-db":
        init_db()
        print({"ok": True})
    elif args.command == "seed-demo":
        out = seed_demo(
            landlord_email=args.landlord_email,
            tenant_email=args.tenant_email,
            contractor_email=args.contractor_email,
            create_sample_tenancy=(not args.no_sample_tenancy),
        )
        print(
            {
                "ok": True,
                "landlord_id": out.landlord_id,
                "tenant_id": out.tenant_id,
                "contractor_id": out.contractor_id,
                "property_id": out.property_id,
                "tenancy_id": out.tenancy_id,
            }
        )
    elif args.command == "sweep-invitations":
        print({"ok": True, "expired": _sweep()})


if __name__ == "__main__":
    main()
