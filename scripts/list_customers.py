from __future__ import annotations

import argparse
import sys

from ppdash.core.config import get_settings
from ppdash.persistence.credential_store import CredentialStore


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="List onboarded customers in the credential store")
    parser.add_argument(
        "--store",
        default=None,
        help="Path to the credential store file (defaults to CREDENTIALS_STORE_PATH)",
    )
    parser.add_argument(
        "--status",
        choices=["Pending", "Active"],
        default=None,
        help="Show only customers with this onboarding status",
    )
    return parser


def _list_customers(args: argparse.Namespace) -> int:
    # Print registry metadata without ever exposing client secrets.
    store = CredentialStore(args.store or get_settings().credentials_store_path)
    print("customer_id\ttenant_id\tdisplay_name\tclient_id\thas_secret\tonboarded_at\tstatus")
    for record in store.list_all():
        if args.status and record.onboarding_status != args.status:
            continue
        print(
            f"{record.customer_id}\t{record.tenant_id}\t{record.display_name}\t{record.client_id}\t"
            f"{bool(record.client_secret)}\t"
            f"{record.onboarded_at.isoformat() if record.onboarded_at else ''}\t"
            f"{record.onboarding_status}"
        )
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return _list_customers(args)
    except Exception as exc:  # noqa: BLE001 - show full operator-facing error context.
        print(f"list_customers failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
