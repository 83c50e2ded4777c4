import sys
from pathlib import Path

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from subscription_platform.auth.crud import bootstrap_admin_if_needed
from subscription_platform.config import load_config
from subscription_platform.db import init_db


def main() -> None:
    cfg = load_config()
    init_db(cfg.DB_DSN)
    boot = bootstrap_admin_if_needed(cfg)
    if boot:
        print(f"Bootstrapped admin: {boot.get('email')}")
    print(f"DB initialized: {cfg.DB_DSN}")


if __name__ == "__main__":
    main()
