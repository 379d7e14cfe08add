#!/usr/bin/env python3
"""Redeem a pro code or reconcile a pending one from the terminal."""
import argparse
import logging
import os
import sys

from dotenv import load_dotenv

# Ensure repository root is on sys.path
CURRENT_DIR = os.path.dirname(os.path.abspath(__file__))
REPO_ROOT = os.path.dirname(CURRENT_DIR)
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

load_dotenv()

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger("propass.cli")


def main(argv=None):
    parser = argparse.ArgumentParser(description="PROPASS redemption client.")
    parser.add_argument("--base-url", default=os.getenv("PROPASS_API_URL", "http://localhost:8000"))
    parser.add_argument("--token", default=os.getenv("PROPASS_SESSION_TOKEN"), help="Session token, if signed in")
    parser.add_argument("--state-file", default=None, help="Pending redemption file (defaults to PROPASS_STATE_FILE)")
    parser.add_argument("--timeout", type=float, default=10.0)
    sub = parser.add_subparsers(dest="command", required=True)
    redeem_cmd = sub.add_parser("redeem", help="Submit a redemption code")
    redeem_cmd.add_argument("code")
    check_cmd = sub.add_parser("check", help="Reconcile a pending redemption")
    check_cmd.add_argument("--retries", type=int, default=1, help="Attempts before giving up (0 = unbounded)")
    args = parser.parse_args(argv)

    from propass.client import ClientReconciler, EntitlementClient, JsonPendingStore
    from propass.errors import EntitlementError

    store = JsonPendingStore(args.state_file)
    with EntitlementClient(args.base_url, timeout=args.timeout, token=args.token) as client:
        reconciler = ClientReconciler(client, store)
        try:
            if args.command == "redeem":
                result = reconciler.redeem(args.code)
                if result.requires_sign_in:
                    print("Code accepted. Sign in, then run `check` to activate pro.")
                else:
                    print(f"Plan: {result.plan}")
                return 0
            state = reconciler.reconcile_with_backoff(max_attempts=args.retries or None)
        except EntitlementError as exc:
            print(f"Error: {exc.message}", file=sys.stderr)
            return 1
    print(f"State: {state.value}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
