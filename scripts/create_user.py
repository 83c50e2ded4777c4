"""Create a user in the configured DB.

Usage:
  python scripts/create_user.py --email alice@example.com --password '...' --role user

NOTE: This is intended for local/dev.
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from subscription_platform.config import load_config
from subscription_platform.db import init_db, connect
from subscription_platform.auth.crud import create_user


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--email", required=True)
    ap.add_argument("--password", required=True)
    ap.add_argument("--name", default="")
    ap.add_argument("--mobile", default=None)
    ap.add_argument("--role", choices=["user", "admin"], default="user")
    ap.add_argument("--plan", choices=["basic", "pro"], default="basic")
    args = ap.parse_args()

    cfg = load_config()
    init_db(cfg.DB_DSN)

    with connect(cfg.DB_DSN) as conn:
        u = create_user(
            conn,
            email=args.email,
            password=args.password,
            name=args.name,
            mobile=args.mobile,
            role=args.role,
            plan_type=args.plan,
        )

    print("Created user:")
    print(u)


if __name__ == "__main__":
    main()
