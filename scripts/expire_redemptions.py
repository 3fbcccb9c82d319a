#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from loyalty.core.database import SessionLocal  # noqa: E402
from loyalty.core.logging_setup import configure_logging  # noqa: E402
from loyalty.services.redemptions import RedemptionManager  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Marca como expired as reservas ativas vencidas (sem estorno de pontos)."
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Só conta as reservas vencidas, sem alterar nada",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    configure_logging()

    db = SessionLocal()
    try:
        manager = RedemptionManager(db)
        if args.dry_run:
            stale = manager.count_stale()
            print(f"Reservas vencidas: {stale}")
            return 0
        expired = manager.expire_stale()
    finally:
        db.close()

    print(f"Reservas expiradas: {expired}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
