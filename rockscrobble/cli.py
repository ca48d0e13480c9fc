"""
rockscrobble command line.

    rockscrobble service set-keys lastfm --api-key KEY --api-secret SECRET
    rockscrobble account add lastfm --username NAME
    rockscrobble scrobble --rockbox-dir /media/player/.rockbox
"""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from . import __version__
from .config import (
    Account,
    Config,
    add_account,
    default_config_path,
    iter_accounts,
    keys_for_account,
    load_config,
    remove_account,
    save_config,
    set_service_keys,
)
from .errors import AuthError, ScrobblerError
from .playback import parse_playback_log, truncate_playback_log
from .scrobble import ScrobbleRecord, build_scrobble_records, dedupe_records
from .service import ScrobbleClient, Service
from .tagcache import TagCache

log = logging.getLogger(__name__)


class CommandError(ScrobblerError):
    """A user-facing failure of a CLI command."""


def _config_path(args: argparse.Namespace) -> Path:
    return Path(args.config_path).expanduser() if args.config_path else default_config_path()


def prompt_password_confirm() -> str:
    password = getpass.getpass("Password: ")
    confirm = getpass.getpass("Confirm password: ")
    if password != confirm:
        raise CommandError("Passwords do not match.")
    return password

# ---------------------------
# service / account commands
# ---------------------------


def cmd_service_set_keys(args: argparse.Namespace) -> int:
    if args.service != Service.LASTFM.value:
        raise CommandError("Only lastfm supports setting API keys.")
    path = _config_path(args)
    cfg = load_config(path)
    set_service_keys(cfg, args.service, args.api_key, args.api_secret)
    save_config(cfg, path)
    print(f"Saved API keys for {args.service} in {path}")
    return 0


def cmd_account_add(args: argparse.Namespace) -> int:
    Service.parse(args.service)
    path = _config_path(args)
    cfg = load_config(path)
    password = args.password if args.password is not None else prompt_password_confirm()
    add_account(cfg, args.service, args.username, password)
    save_config(cfg, path)
    print(f"Saved {args.service} account for {args.username} in {path}")
    return 0


def cmd_account_remove(args: argparse.Namespace) -> int:
    path = _config_path(args)
    cfg = load_config(path)
    if not remove_account(cfg, args.service, args.username):
        raise CommandError(f"No account found for {args.service} {args.username}")
    save_config(cfg, path)
    print(f"Removed {args.service} account for {args.username}")
    return 0


def cmd_account_list(args: argparse.Namespace) -> int:
    cfg = load_config(_config_path(args))
    accounts = list(iter_accounts(cfg, args.service))
    if not accounts:
        raise CommandError("No accounts configured.")
    for account in accounts:
        print(f"{account.service}\t{account.username}")
    return 0

# ---------------------------
# scrobble
# ---------------------------


def scrobble_for_accounts(
    cfg: Config,
    accounts: Sequence[Account],
    records: Sequence[ScrobbleRecord],
    *,
    timeout: Optional[float] = None,
    debug_response: bool = False,
) -> int:
    """Scrobble to each account in turn. Returns the number of failures."""
    failures = 0
    for account in accounts:
        keys = keys_for_account(cfg, account)
        if keys is None:
            print(f"Missing API keys for {account.service}")
            failures += 1
            continue
        service = Service.parse(account.service)
        try:
            client = ScrobbleClient(service, keys, account, timeout=timeout, debug_response=debug_response)
        except AuthError as exc:
            print(f"Failed scrobbling to {account.service}: {exc}")
            failures += 1
            continue

        errors = client.scrobble_records(records)
        if not errors:
            print(f"Scrobbled {len(records)} tracks to {account.service} for {account.username}")
            continue
        print(
            f"Scrobbled {len(records)} tracks to {account.service} for {account.username} "
            f"with {len(errors)} failures:"
        )
        for error in errors:
            print(f"  {error}")
        failures += len(errors)
    return failures


def cmd_scrobble(args: argparse.Namespace) -> int:
    cfg = load_config(_config_path(args))
    accounts = [
        a for a in iter_accounts(cfg, args.service)
        if args.username is None or a.username == args.username
    ]
    if not accounts:
        raise CommandError("No matching accounts configured.")

    rockbox_dir = Path(args.rockbox_dir).expanduser()
    playback_path = Path(args.playback_log).expanduser() if args.playback_log else rockbox_dir / "playback.log"
    if not playback_path.exists():
        raise CommandError(f"Missing playback log at {playback_path}")

    samples = parse_playback_log(playback_path)
    if not samples:
        raise CommandError("No playback entries found.")

    with TagCache(rockbox_dir) as tagcache:
        records, missing = build_scrobble_records(samples, tagcache)

    if missing:
        print(f"Missing metadata for {len(missing)} paths")
        for path in missing:
            log.debug("No tagcache entry for %s", path)
    records = dedupe_records(records)
    if not records:
        raise CommandError("No scrobble-eligible tracks found.")
    if args.dry_run:
        print(f"Would scrobble {len(records)} tracks.")
        return 0

    failures = scrobble_for_accounts(
        cfg, accounts, records, timeout=args.timeout, debug_response=args.debug_response,
    )
    if failures:
        print(f"Finished with {failures} scrobble failures.")
    if args.truncate:
        truncate_playback_log(playback_path)
        print(f"Truncated {playback_path}")
    return 0

# ---------------------------
# CLI
# ---------------------------


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="rockscrobble", description="Scrobble Rockbox playback logs.")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    config_opt = argparse.ArgumentParser(add_help=False)
    config_opt.add_argument("--config-path", metavar="PATH", help="Config file (default: %s)" % default_config_path())

    service = sub.add_parser("service", help="Service API keys").add_subparsers(dest="service_command", required=True)
    set_keys = service.add_parser("set-keys", parents=[config_opt], help="Store API key and secret")
    set_keys.add_argument("service")
    set_keys.add_argument("--api-key", required=True, help="API key")
    set_keys.add_argument("--api-secret", required=True, help="API secret")
    set_keys.set_defaults(func=cmd_service_set_keys)

    account = sub.add_parser("account", help="Scrobbling accounts").add_subparsers(dest="account_command", required=True)
    add = account.add_parser("add", parents=[config_opt], help="Add or update an account")
    add.add_argument("service")
    add.add_argument("--username", required=True, help="Account username")
    add.add_argument("--password", help="Account password (prompted when omitted)")
    add.set_defaults(func=cmd_account_add)

    remove = account.add_parser("remove", parents=[config_opt], help="Remove an account")
    remove.add_argument("service")
    remove.add_argument("--username", required=True, help="Account username")
    remove.set_defaults(func=cmd_account_remove)

    lst = account.add_parser("list", parents=[config_opt], help="List accounts")
    lst.add_argument("--service", help="Filter by service")
    lst.set_defaults(func=cmd_account_list)

    scrobble = sub.add_parser("scrobble", parents=[config_opt], help="Scrobble playback.log")
    scrobble.add_argument("--rockbox-dir", default=".rockbox", help="Path to the .rockbox directory")
    scrobble.add_argument("--playback-log", help="Optional path to playback.log")
    scrobble.add_argument("--service", help="Limit to one service")
    scrobble.add_argument("--username", help="Limit to one username")
    scrobble.add_argument("--no-truncate", dest="truncate", action="store_false",
                          help="Do not truncate playback.log after success")
    scrobble.add_argument("--dry-run", action="store_true", help="Parse and report without scrobbling")
    scrobble.add_argument("--debug-response", action="store_true", help="Log raw scrobble API responses")
    scrobble.add_argument("--timeout", type=float, default=None, help="HTTP timeout in seconds (default: none)")
    scrobble.set_defaults(func=cmd_scrobble)
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    level = logging.WARNING
    if getattr(args, "debug_response", False):
        level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    try:
        return args.func(args)
    except (ScrobblerError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
