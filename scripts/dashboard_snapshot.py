from __future__ import annotations

import argparse
import asyncio
from dataclasses import asdict
import json
import sys

from ppdash.core.config import get_settings
from ppdash.core.logging import configure_logging
from ppdash.persistence.credential_store import CredentialStore
from ppdash.services.aggregator import DashboardAggregator


def _build_parser() -> argparse.ArgumentParser:
    # Resolve one customer at a time so operators never dump every tenant at once.
    parser = argparse.ArgumentParser(description="Aggregate and print one tenant dashboard as JSON")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--customer", help="Customer identifier")
    target.add_argument("--tenant", help="Tenant identifier")
    parser.add_argument("--store", default=None, help="Path to the credential store file")
    parser.add_argument("--summary", action="store_true", help="Print section counts instead of records")
    return parser


async def _snapshot(args: argparse.Namespace) -> int:
    store = CredentialStore(args.store or get_settings().credentials_store_path)
    credential = store.get_by_id(args.customer) if args.customer else store.get_by_tenant_id(args.tenant)
    if credential is None:
        print("customer not found", file=sys.stderr)
        return 2
    result = await DashboardAggregator().aggregate(credential)
    if args.summary:
        payload = {
            "customer_id": credential.customer_id,
            "environments": len(result.environments),
            "capacity": len(result.capacity),
            "scan_reports": len(result.scan_reports),
            "environment_operations": len(result.environment_operations),
            "storage_warnings": len(result.storage_warnings),
            "advisor_recommendations": len(result.advisor_recommendations),
            "section_errors": result.section_errors,
            "error_message": result.error_message,
        }
    else:
        payload = asdict(result)
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))
    return 0 if result.error_message is None else 1


def main() -> int:
    configure_logging()
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_snapshot(args))
    except Exception as exc:  # noqa: BLE001 - show full operator-facing error context.
        print(f"dashboard_snapshot failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
