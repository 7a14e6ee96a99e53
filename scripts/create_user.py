import argparse
import asyncio
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from invoicedesk.config import config_from_env
from main import _create_user, _prompt_for_password


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create an InvoiceDesk credential login")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Unique email address for login")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    config = config_from_env()
    config.require_backend()

    password = _prompt_for_password()
    if password is None:
        raise SystemExit("Failed to set password after three attempts.")
    return asyncio.run(_create_user(config, args.name, args.email, password))


if __name__ == "__main__":
    raise SystemExit(main())
