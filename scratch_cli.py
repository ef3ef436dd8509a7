"""
Command-line entry point: create, resume and open scratch orgs.

Usage:
    scratch-org --target-dev-hub https://acme.my.salesforce.com create --edition developer
    scratch-org resume --job-id 2SR...
    scratch-org open --instance-url https://acme-dev.my.salesforce.com

Exit codes:
    0  - success
    1  - usage error or unclassified failure
    69 - the scratch org or its domain was not ready in time
"""
import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from devhub_client import (
    DEFAULT_DURATION_DAYS,
    DEFAULT_WAIT_MINUTES,
    EDITIONS,
    MAX_DURATION_DAYS,
    MIN_DURATION_DAYS,
    DevHubClient,
    ScratchOrgRequest,
    StaticTokenCredential,
)
from domain_readiness import DomainReadinessPoller, ReadinessTimeout
from lifecycle_events import get_process_bus
from org_open import build_url, open_org
from scratch_org_create import EXIT_CODE_TIMEOUT, CommandExit, ScratchOrgCreateCommand
from status_view import Spinner

logger = logging.getLogger(__name__)

PROG = "scratch-org"


def _duration_days(value: str) -> int:
    days = int(value)
    if not MIN_DURATION_DAYS <= days <= MAX_DURATION_DAYS:
        raise argparse.ArgumentTypeError(
            f"must be between {MIN_DURATION_DAYS} and {MAX_DURATION_DAYS}"
        )
    return days


def _wait_minutes(value: str) -> int:
    minutes = int(value)
    if minutes < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return minutes


def _source_org_id(value: str) -> str:
    if not value.startswith("00D") or len(value) != 15:
        raise argparse.ArgumentTypeError("must be a 15-character org ID starting with 00D")
    return value


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROG,
        description="Create, resume and open scratch orgs.",
    )
    parser.add_argument(
        "--target-dev-hub",
        default=None,
        help="Dev hub instance URL (or set DEVHUB_INSTANCE_URL env var).",
    )
    parser.add_argument(
        "--access-token",
        default=None,
        help="Access token to use instead of the default credential chain "
             "(or set DEVHUB_ACCESS_TOKEN env var).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log debug output to stderr.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # -- create -------------------------------------------------------------
    sp_create = subparsers.add_parser("create", help="Create a scratch org.")
    sp_create.add_argument(
        "--async",
        dest="async_mode",
        action="store_true",
        help="Request the org and return without waiting for it.",
    )
    sp_create.add_argument(
        "-f", "--definition-file",
        default=None,
        help="Path to a JSON scratch org definition file.",
    )
    sp_create.add_argument("-e", "--edition", choices=EDITIONS, default=None, help="Org edition.")
    sp_create.add_argument(
        "-y", "--duration-days",
        type=_duration_days,
        default=DEFAULT_DURATION_DAYS,
        help=f"Days before the org expires (default: {DEFAULT_DURATION_DAYS}).",
    )
    sp_create.add_argument(
        "-w", "--wait",
        type=_wait_minutes,
        default=DEFAULT_WAIT_MINUTES,
        help=f"Minutes to wait for the org (default: {DEFAULT_WAIT_MINUTES}).",
    )
    sp_create.add_argument("-c", "--no-ancestors", action="store_true", help="Do not include second-generation package ancestors.")
    sp_create.add_argument("-m", "--no-namespace", action="store_true", help="Create the org without a namespace.")
    sp_create.add_argument("--api-version", default=None, help="Override the API version.")
    sp_create.add_argument("-i", "--client-id", default=None, help="Consumer key of the dev hub connected app.")
    sp_create.add_argument(
        "-t", "--track-source",
        dest="track_source",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Track source changes in the org (default: on).",
    )
    sp_create.add_argument("--username", default=None, help="Username of the org's admin user.")
    sp_create.add_argument("--description", default=None, help="Description of the org.")
    sp_create.add_argument("--name", default=None, help="Name of the org.")
    sp_create.add_argument("--release", choices=("preview", "previous"), default=None, help="Release version.")
    sp_create.add_argument("--admin-email", default=None, help="Email address of the admin user.")
    sp_create.add_argument("--source-org", type=_source_org_id, default=None, help="15-character org shape ID.")
    sp_create.add_argument("--json", action="store_true", help="Print the result as JSON.")

    # -- resume -------------------------------------------------------------
    sp_resume = subparsers.add_parser("resume", help="Resume waiting for a scratch org request.")
    sp_resume.add_argument("-i", "--job-id", required=True, help="ScratchOrgInfo ID from an earlier request.")
    sp_resume.add_argument(
        "-w", "--wait",
        type=_wait_minutes,
        default=DEFAULT_WAIT_MINUTES,
        help=f"Minutes to wait for the org (default: {DEFAULT_WAIT_MINUTES}).",
    )
    sp_resume.add_argument("--json", action="store_true", help="Print the result as JSON.")

    # -- open ---------------------------------------------------------------
    sp_open = subparsers.add_parser("open", help="Open a scratch org in the browser.")
    sp_open.add_argument(
        "--instance-url",
        default=None,
        help="Instance URL of the org (or set SCRATCH_ORG_INSTANCE_URL env var).",
    )
    sp_open.add_argument("-p", "--path", default=None, help="Page to navigate to after login.")
    sp_open.add_argument("--setup", action="store_true", help="Navigate to Setup.")
    sp_open.add_argument("-r", "--url-only", action="store_true", help="Print the URL without opening a browser.")
    sp_open.add_argument("--org-id", default=None, help="Org ID to include in the output.")
    sp_open.add_argument("--username", default=None, help="Username to include in the output.")
    sp_open.add_argument("--json", action="store_true", help="Print the result as JSON.")

    return parser


def _missing_exit(missing: List[str]) -> None:
    sys.stderr.write(
        f"Error: the following required values are missing: "
        f"{', '.join(missing)}\n"
    )
    sys.exit(1)


def _resolve_dev_hub(args) -> str:
    """Resolve the dev hub URL from the CLI flag or env var."""
    dev_hub = args.target_dev_hub or os.environ.get("DEVHUB_INSTANCE_URL")
    if not dev_hub:
        _missing_exit(["--target-dev-hub / DEVHUB_INSTANCE_URL"])
    return dev_hub


def _build_credential(args):
    token = args.access_token or os.environ.get("DEVHUB_ACCESS_TOKEN")
    if token:
        return StaticTokenCredential(token)
    return None


def _load_definition(path: Optional[str]) -> dict:
    if not path:
        return {}
    definition_path = Path(path)
    if not definition_path.is_file():
        raise FileNotFoundError(f"Definition file not found: {path}")
    data = json.loads(definition_path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Definition file must contain a JSON object: {path}")
    return data


def _build_command(args, api_version: Optional[str] = None) -> ScratchOrgCreateCommand:
    dev_hub = _resolve_dev_hub(args)
    client_kwargs = {
        "credential": _build_credential(args),
        "token_scope": os.environ.get("DEVHUB_TOKEN_SCOPE"),
        "bus": get_process_bus(),
    }
    if api_version:
        client_kwargs["api_version"] = api_version
    client = DevHubClient(dev_hub, **client_kwargs)
    return ScratchOrgCreateCommand(client, base_url=client.instance_url, bin_name=PROG)


def _print_result(payload: dict, as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, indent=2))
        return
    for key, value in payload.items():
        if value is not None and not isinstance(value, (dict, list)):
            print(f"  {key}: {value}")


def _run_create(args) -> int:
    request = ScratchOrgRequest(
        definition=_load_definition(args.definition_file),
        edition=args.edition,
        org_name=args.name,
        description=args.description,
        admin_email=args.admin_email,
        username=args.username,
        release=args.release,
        source_org=args.source_org,
        duration_days=args.duration_days,
        wait_minutes=args.wait,
        track_source=args.track_source,
        no_ancestors=args.no_ancestors,
        no_namespace=args.no_namespace,
        client_id=args.client_id,
    )
    command = _build_command(args, api_version=args.api_version)
    result = command.create(request, async_mode=args.async_mode)
    _print_result(result.to_dict(), args.json)
    return 0


def _run_resume(args) -> int:
    command = _build_command(args)
    result = command.resume(args.job_id, args.wait)
    _print_result(result.to_dict(), args.json)
    return 0


def _run_open(args) -> int:
    instance_url = args.instance_url or os.environ.get("SCRATCH_ORG_INSTANCE_URL")
    token = args.access_token or os.environ.get("DEVHUB_ACCESS_TOKEN")
    missing = []
    if not instance_url:
        missing.append("--instance-url / SCRATCH_ORG_INSTANCE_URL")
    if not token:
        missing.append("--access-token / DEVHUB_ACCESS_TOKEN")
    if missing:
        _missing_exit(missing)

    poller = DomainReadinessPoller(status_sink=Spinner())
    try:
        result = open_org(
            instance_url,
            token,
            poller,
            org_id=args.org_id,
            username=args.username,
            path=args.path,
            is_setup=args.setup,
            url_only=args.url_only,
        )
    except ReadinessTimeout as exc:
        sys.stderr.write(f"Error: {exc}\n{exc.action}\n")
        # The URL still works once DNS catches up.
        print(build_url(instance_url, token, path=args.path, is_setup=args.setup))
        return EXIT_CODE_TIMEOUT

    if args.json:
        print(json.dumps(result, indent=2))
    elif args.url_only:
        print(result["url"])
    else:
        print(f"[OK] Opening {instance_url} in your browser.")
    return 0


def cli_main(argv: Optional[List[str]] = None) -> int:
    """Run the CLI.  Returns an integer exit code (0 = success)."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    if not args.command:
        parser.print_help()
        return 1

    handlers = {
        "create": _run_create,
        "resume": _run_resume,
        "open": _run_open,
    }

    try:
        return handlers[args.command](args)
    except CommandExit as exc:
        sys.stderr.write(f"Error: {exc.message}\n")
        return exc.exit_code
    except Exception as exc:
        logger.debug("%s failed", args.command, exc_info=True)
        sys.stderr.write(f"Error: {exc}\n")
        return 1


def main() -> None:
    raise SystemExit(cli_main())


if __name__ == "__main__":
    main()
