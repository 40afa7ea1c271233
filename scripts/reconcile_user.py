"""
Manually reconcile a user's plan against Stripe and re-issue their claim.

Usage:
    python scripts/reconcile_user.py <uid> [--recount]
"""

import argparse
import os
import sys

from dotenv import load_dotenv

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from modules.core.error_handler import AppError  # noqa: E402
from modules.core.service_container import ServiceContainer  # noqa: E402


def main(argv=None):
    load_dotenv()
    parser = argparse.ArgumentParser(description="Reconcile a user's plan with Stripe")
    parser.add_argument('uid', help="Firebase user id")
    parser.add_argument('--recount', action='store_true', help="Also repair the bucket counter")
    args = parser.parse_args(argv)

    services = ServiceContainer()
    try:
        result = services.admin.reconcile_user(args.uid)
        print(f"Plan: {result['plan']} (subscription: {result['subscriptionId'] or 'none'})")
        print(f"Record changed: {result['changed']}")
        if not result['claimIssued']:
            print("⚠️ Claim could not be issued, divergence recorded")

        if args.recount:
            counted = services.admin.recount_buckets(args.uid)
            print(f"Bucket count: {counted['total']}")
    except AppError as e:
        print(f"❌ Reconciliation failed: {e.message}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
