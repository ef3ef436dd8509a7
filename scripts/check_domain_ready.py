#!/usr/bin/env python3
"""
Standalone script to check whether a scratch org's Lightning domain resolves.

Usage:
    # Check the Lightning domain behind an instance URL:
    python scripts/check_domain_ready.py --url https://acme-dev.my.salesforce.com

    # Check a host name directly, giving up after 30 retries:
    python scripts/check_domain_ready.py --domain acme-dev.lightning.force.com --retries 30

Environment variables (optional):
    SCRATCH_DOMAIN_RETRY  - retry budget when --retries is not given (default: 240)

Returns JSON on stdout.  Exit codes:
    0  - domain resolved (or the check was skipped)
    1  - bad input
    69 - domain did not resolve within the retry budget
"""

import argparse
import json
import sys
from pathlib import Path

# Add the repository root to sys.path so we can import domain_readiness
_REPO_ROOT = Path(__file__).resolve().parent.parent
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from domain_readiness import (
    DomainReadinessPoller,
    ReadinessTimeout,
    extract_my_domain,
    is_internal_url,
    lightning_domain,
)

EXIT_TIMEOUT = 69


def resolve_target(url: str | None, domain: str | None) -> dict:
    """Work out which host to probe.

    Returns {"domain": ...} or {"skipped": reason}; raises ValueError when
    neither input is usable.
    """
    if domain:
        return {"domain": domain}
    if not url:
        raise ValueError("Either --url or --domain is required.")
    if is_internal_url(url):
        return {"skipped": "internal url"}
    return {"domain": lightning_domain(extract_my_domain(url))}


def check_domain(poller: DomainReadinessPoller, domain: str) -> dict:
    """Run the readiness check and describe the outcome as a dict."""
    try:
        address = poller.check_ready(domain)
    except ReadinessTimeout as exc:
        return {
            "domain": domain,
            "ready": False,
            "attempts": exc.attempts + 1,
            "error": str(exc),
            "action": exc.action,
        }
    if address is None:
        return {"domain": domain, "ready": True, "skipped": True}
    return {"domain": domain, "ready": True, "address": address}


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Wait for a scratch org's Lightning domain to resolve.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--url", type=str, default=None, help="Instance URL of the org.")
    target.add_argument("--domain", type=str, default=None, help="Host name to resolve.")
    parser.add_argument(
        "--retries",
        type=int,
        default=None,
        help="Retry budget (default: SCRATCH_DOMAIN_RETRY or 240). 0 skips the check.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point. Returns exit code (0 = ready, 1 = error, 69 = timeout)."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        target = resolve_target(args.url, args.domain)
    except ValueError as exc:
        print(json.dumps({"error": str(exc)}, indent=2))
        return 1

    if "skipped" in target:
        print(json.dumps({"ready": True, "skipped": True, "reason": target["skipped"]}, indent=2))
        return 0

    poller = DomainReadinessPoller(max_attempts=args.retries)
    result = check_domain(poller, target["domain"])
    print(json.dumps(result, indent=2))

    if not result["ready"]:
        return EXIT_TIMEOUT
    return 0


if __name__ == "__main__":
    sys.exit(main())
