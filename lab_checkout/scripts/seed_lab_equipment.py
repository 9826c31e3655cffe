#!/usr/bin/env python3
"""Create the checkout tables and seed members and equipment."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from db.base import Base
from models.checkout_models import Equipment, Member


EQUIPMENT_KINDS = ("Singleton", "Collection")


def _parse_member(raw: str) -> tuple[str, str]:
    member_id, sep, name = raw.partition(":")
    if not sep or not member_id.strip() or not name.strip():
        raise argparse.ArgumentTypeError(f"Expected MEMBER_ID:NAME, got {raw!r}")
    return member_id.strip(), name.strip()


def _parse_equipment(raw: str) -> tuple[str, str, str]:
    parts = [part.strip() for part in raw.split(":")]
    if len(parts) == 2:
        parts.append("Singleton")
    if len(parts) != 3 or not parts[0] or not parts[1]:
        raise argparse.ArgumentTypeError(f"Expected EQUIPMENT_ID:NAME[:KIND], got {raw!r}")
    if parts[2] not in EQUIPMENT_KINDS:
        raise argparse.ArgumentTypeError(f"KIND must be one of {', '.join(EQUIPMENT_KINDS)}")
    return parts[0], parts[1], parts[2]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Create the lab checkout tables and upsert members/equipment.",
    )
    parser.add_argument(
        "--member",
        action="append",
        type=_parse_member,
        default=[],
        help="MEMBER_ID:NAME, may be repeated",
    )
    parser.add_argument(
        "--equipment",
        action="append",
        type=_parse_equipment,
        default=[],
        help="EQUIPMENT_ID:NAME[:Singleton|Collection], may be repeated",
    )
    parser.add_argument(
        "--db-url",
        default=os.environ.get("LAB_CHECKOUT_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to LAB_CHECKOUT_DB_URL env var.",
    )
    return parser


def seed(engine: Engine, members: list[tuple[str, str]], equipment: list[tuple[str, str, str]]) -> tuple[int, int]:
    Base.metadata.create_all(engine)
    with Session(engine) as db:
        for member_id, name in members:
            db.merge(Member(MemberID=member_id, Name=name))
        for equipment_id, name, kind in equipment:
            db.merge(Equipment(EquipmentID=equipment_id, Name=name, Kind=kind))
        db.commit()
    return len(members), len(equipment)


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()

    if not args.db_url:
        parser.error("Missing DB URL. Set LAB_CHECKOUT_DB_URL or pass --db-url.")

    engine = create_engine(args.db_url, pool_pre_ping=True, future=True)
    member_count, equipment_count = seed(engine, args.member, args.equipment)
    print(f"OK members={member_count} equipment={equipment_count}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
