#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from loyalty.core.config import DEV_BOOTSTRAP_ALLOW, IS_DEV  # noqa: E402
from loyalty.core.database import SessionLocal, engine  # noqa: E402
from loyalty.services.customer_bootstrap import (  # noqa: E402
    DEFAULT_INITIAL_POINTS,
    ensure_loyalty_tables,
    upsert_test_customer,
)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Cria um cliente de teste com pontos para DEV.")
    parser.add_argument("--email", required=True, help="Email do cliente")
    parser.add_argument("--password", help="Senha do cliente")
    parser.add_argument("--first-name", help="Primeiro nome")
    parser.add_argument("--last-name", help="Sobrenome")
    parser.add_argument(
        "--points",
        type=int,
        default=DEFAULT_INITIAL_POINTS,
        help="Saldo inicial em cada loja",
    )
    parser.add_argument(
        "--shop",
        type=int,
        action="append",
        dest="shops",
        help="Shop ID (repita para várias lojas; padrão: até 5 lojas ativas)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Permite executar sem DEV_BOOTSTRAP_ALLOW=1",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()

    if not DEV_BOOTSTRAP_ALLOW and not args.force:
        print(
            "Bootstrap DEV desabilitado. "
            "Defina DEV_BOOTSTRAP_ALLOW=1 ou use --force."
        )
        return 1

    try:
        ensure_loyalty_tables(engine)
    except RuntimeError as exc:
        print(str(exc))
        return 1

    db = SessionLocal()
    try:
        result = upsert_test_customer(
            db,
            email=args.email,
            password=args.password,
            first_name=args.first_name,
            last_name=args.last_name,
            initial_points=args.points,
            shop_ids=args.shops,
        )
        action = "created" if result.created else "updated"
        print(f"Customer {action}: id={result.customer.id} email={result.customer.email}")
        for account in result.accounts:
            print(f"  shop={account.shop_id} points={account.points_balance}")
        if IS_DEV and args.password:
            print(f"Resumo DEV -> Email: {result.customer.email} | Senha: {args.password}")
    except ValueError as exc:
        print(str(exc))
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
