"""
Communication Gateway CLI
=========================

    gateway start [--host H] [--port P] [--foreground]
    gateway stop | status
    gateway approve
    gateway history [--status S] [--agent NAME] [--limit N]
    gateway keys add|list|revoke|limits|webhook ...
    gateway keys allowlist set|add|list|remove|replace|clear ...
    gateway filters list|add|enable|disable|remove ...
    gateway consent deny|allow|list ...

Key arguments accept an id prefix or a display prefix (gw_xxxxxxxx).
"""

import argparse
import logging
import sys
from typing import List, Optional, Tuple

import httpx

from commgate import __version__
from commgate.config import settings
from commgate.core.database import init_db
from commgate.core.structured_logging import setup_logging
from commgate.core.timeutil import isoformat_utc
from commgate.daemon import DaemonError, DaemonSupervisor
from commgate.models.content_filter import FilterAction, PatternType
from commgate.services import allowlist, consent, content_filter, key_store, queue_store

logger = logging.getLogger(__name__)


class CliError(Exception):
    """Operator-facing failure; printed without a traceback."""


def _supervisor(address: Optional[Tuple[str, int]] = None) -> DaemonSupervisor:
    return DaemonSupervisor(settings.pid_file, settings.daemon_log_file, address)


def _fmt_time(value) -> str:
    text = isoformat_utc(value)
    return text[:19].replace("T", " ") if text else "-"


# ---------------------------------------------------------------------------
# Daemon
# ---------------------------------------------------------------------------

def cmd_start(args: argparse.Namespace) -> int:
    supervisor = _supervisor((args.host, args.port))
    if args.foreground:
        import uvicorn

        from commgate.main import create_app

        app = create_app(supervisor=supervisor)
        uvicorn.run(app, host=args.host, port=args.port, log_config=None)
        return 0

    try:
        pid = supervisor.start(args.host, args.port)
    except DaemonError as exc:
        raise CliError(str(exc)) from exc
    print(f"Gateway started (pid {pid}) on http://{args.host}:{args.port}")
    print(f"Log: {supervisor.log_file}")
    return 0


def cmd_stop(args: argparse.Namespace) -> int:
    try:
        pid = _supervisor().stop()
    except DaemonError as exc:
        raise CliError(str(exc)) from exc
    if pid is None:
        print("Gateway is not running.")
        return 1
    print(f"Gateway stopped (pid {pid}).")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    supervisor = _supervisor()
    status = supervisor.status(f"{supervisor.base_url(settings.host, settings.port)}/gateway/health")
    if not status.running:
        print("Gateway: stopped")
        return 1
    print(f"Gateway: running (pid {status.pid})")
    if status.uptime_secs is not None:
        hours, rem = divmod(status.uptime_secs, 3600)
        print(f"Uptime:  {hours}h {rem // 60}m {rem % 60}s")
    print(f"Pending: {status.pending_count if status.pending_count is not None else 'unknown (health check failed)'}")
    print(f"Keys:    {key_store.count_active_keys()} active")
    print(f"Log:     {status.log_file}")
    return 0


# ---------------------------------------------------------------------------
# Console + history
# ---------------------------------------------------------------------------

def cmd_approve(args: argparse.Namespace) -> int:
    from commgate.console import ApprovalConsole
    from commgate.services.approval_service import ApprovalService
    from commgate.services.delivery import DeliveryExecutor
    from commgate.services.senders import build_senders
    from commgate.services.webhook_notifier import WebhookNotifier

    notifier = WebhookNotifier(timeout=settings.webhook_timeout_s, max_workers=settings.webhook_max_workers)
    service = ApprovalService(DeliveryExecutor(build_senders(settings)), notifier)
    try:
        ApprovalConsole(service).run()
    finally:
        notifier.close(wait=True)
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    rows = queue_store.history(status=args.status, agent=args.agent, limit=args.limit)
    if not rows:
        print("No messages.")
        return 0
    for entry, agent in rows:
        line = (
            f"{_fmt_time(entry.created_at)}  {entry.status:<8} {entry.channel:<8} "
            f"{entry.recipient_address:<28} {agent}"
        )
        if entry.error_message:
            line += f"  [{entry.error_message}]"
        print(line)
    return 0


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

def _resolve(ident: str):
    try:
        return key_store.resolve_key(ident)
    except key_store.KeyStoreError as exc:
        raise CliError(exc.message) from exc


def cmd_keys_add(args: argparse.Namespace) -> int:
    try:
        raw_key, record = key_store.create_key(
            args.name, rate_limit_per_hour=args.per_hour, rate_limit_per_day=args.per_day,
        )
    except key_store.KeyStoreError as exc:
        raise CliError(exc.message) from exc
    print(f"Created key {record.key_prefix} for {record.name!r} (id {record.id})")
    print(f"Limits: {record.rate_limit_per_hour}/hour, {record.rate_limit_per_day}/day")
    print()
    print(f"  {raw_key}")
    print()
    print("Store this key now; it cannot be shown again.")
    return 0


def cmd_keys_list(args: argparse.Namespace) -> int:
    keys = key_store.list_keys()
    if not keys:
        print("No keys.")
        return 0
    for k in keys:
        state = f"revoked {_fmt_time(k.revoked_at)}" if k.is_revoked else "active"
        print(
            f"{k.id[:8]}  {k.key_prefix}  {k.name:<20} {state:<28} "
            f"{k.rate_limit_per_hour}/h {k.rate_limit_per_day}/d  "
            f"last used {_fmt_time(k.last_used_at)}"
            + (f"  webhook {k.webhook_url}" if k.webhook_url else "")
        )
    return 0


def cmd_keys_revoke(args: argparse.Namespace) -> int:
    record = _resolve(args.key)
    if key_store.revoke_key(record.id):
        print(f"Revoked {record.key_prefix} ({record.name}).")
    else:
        print(f"{record.key_prefix} was already revoked.")
    return 0


def cmd_keys_limits(args: argparse.Namespace) -> int:
    record = _resolve(args.key)
    try:
        updated = key_store.set_rate_limits(record.id, per_hour=args.per_hour, per_day=args.per_day)
    except key_store.KeyStoreError as exc:
        raise CliError(exc.message) from exc
    print(f"{updated.key_prefix}: {updated.rate_limit_per_hour}/hour, {updated.rate_limit_per_day}/day")
    return 0


def cmd_keys_webhook(args: argparse.Namespace) -> int:
    record = _resolve(args.key)
    if args.remove:
        key_store.set_webhook(record.id, None)
        print(f"Webhook removed from {record.key_prefix}.")
        return 0
    if not args.url:
        print(f"{record.key_prefix}: {record.webhook_url or 'no webhook'}")
        return 0
    try:
        key_store.set_webhook(record.id, args.url)
    except key_store.KeyStoreError as exc:
        raise CliError(exc.message) from exc
    print(f"Webhook for {record.key_prefix} set to {args.url}")
    return 0


def cmd_allowlist_set(args: argparse.Namespace) -> int:
    record = _resolve(args.key)
    try:
        added = allowlist.add_pattern(record.id, args.pattern)
    except ValueError as exc:
        raise CliError(str(exc)) from exc
    print(f"{'Added' if added else 'Already present'}: {args.pattern}")
    print(f"Allowlist for {record.key_prefix}: {', '.join(allowlist.list_patterns(record.id))}")
    return 0


def cmd_allowlist_replace(args: argparse.Namespace) -> int:
    record = _resolve(args.key)
    try:
        patterns = allowlist.replace_patterns(record.id, args.patterns)
    except ValueError as exc:
        raise CliError(str(exc)) from exc
    print(f"Allowlist for {record.key_prefix}: {', '.join(patterns)}")
    return 0


def cmd_allowlist_clear(args: argparse.Namespace) -> int:
    record = _resolve(args.key)
    removed = allowlist.clear_patterns(record.id)
    print(f"Removed {removed} pattern(s); {record.key_prefix} is unrestricted.")
    return 0


def cmd_allowlist_add(args: argparse.Namespace) -> int:
    record = _resolve(args.key)
    for pattern in args.patterns:
        try:
            added = allowlist.add_pattern(record.id, pattern)
        except ValueError as exc:
            raise CliError(str(exc)) from exc
        print(f"{'Added' if added else 'Already present'}: {pattern}")
    return 0


def cmd_allowlist_list(args: argparse.Namespace) -> int:
    record = _resolve(args.key)
    patterns = allowlist.list_patterns(record.id)
    if not patterns:
        print(f"{record.key_prefix} has no allowlist (unrestricted).")
        return 0
    for pattern in patterns:
        print(pattern)
    return 0


def cmd_allowlist_remove(args: argparse.Namespace) -> int:
    record = _resolve(args.key)
    if not allowlist.remove_pattern(record.id, args.pattern):
        raise CliError(f"{args.pattern!r} is not on the allowlist for {record.key_prefix}")
    print(f"Removed {args.pattern}")
    return 0


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

def _notify_filter_change() -> None:
    """Ask a running server to rebuild its compiled filters."""
    supervisor = _supervisor()
    if supervisor.running_pid() is None:
        return
    try:
        url = f"{supervisor.base_url(settings.host, settings.port)}/gateway/filters/reload"
        httpx.post(url, timeout=2.0).raise_for_status()
        print("Running gateway reloaded its filters.")
    except httpx.HTTPError as exc:
        logger.warning("Filter reload request failed: %s", exc)
        print("Could not reach the running gateway; restart it to apply filter changes.")


def cmd_filters_list(args: argparse.Namespace) -> int:
    rows = content_filter.list_filters()
    if not rows:
        print("No content filters.")
        return 0
    for row in rows:
        state = "on " if row.enabled else "off"
        print(f"{row.id:>4}  {state}  {row.action:<5} {row.pattern_type:<7} {row.pattern}  ({row.display_name})")
    return 0


def cmd_filters_add(args: argparse.Namespace) -> int:
    try:
        row = content_filter.add_filter(
            args.pattern,
            pattern_type=PatternType.LITERAL.value if args.literal else PatternType.REGEX.value,
            action=args.action,
            description=args.description,
        )
    except ValueError as exc:
        raise CliError(str(exc)) from exc
    print(f"Added filter {row.id} ({row.action}).")
    _notify_filter_change()
    return 0


def _filters_toggle(filter_id: int, enabled: bool) -> int:
    if not content_filter.set_filter_enabled(filter_id, enabled):
        raise CliError(f"Filter {filter_id} not found")
    print(f"Filter {filter_id} {'enabled' if enabled else 'disabled'}.")
    _notify_filter_change()
    return 0


def cmd_filters_enable(args: argparse.Namespace) -> int:
    return _filters_toggle(args.id, True)


def cmd_filters_disable(args: argparse.Namespace) -> int:
    return _filters_toggle(args.id, False)


def cmd_filters_remove(args: argparse.Namespace) -> int:
    if not content_filter.remove_filter(args.id):
        raise CliError(f"Filter {args.id} not found")
    print(f"Filter {args.id} removed.")
    _notify_filter_change()
    return 0


# ---------------------------------------------------------------------------
# Consent
# ---------------------------------------------------------------------------

def cmd_consent_set(args: argparse.Namespace) -> int:
    allowed = args.consent_command == "allow"
    try:
        record = consent.set_consent(args.address, allowed)
    except ValueError as exc:
        raise CliError(str(exc)) from exc
    print(f"{record.address}: AI contact {'allowed' if allowed else 'denied'}")
    return 0


def cmd_consent_list(args: argparse.Namespace) -> int:
    rows = consent.list_consent()
    if not rows:
        print("No consent records (all contacts allowed).")
        return 0
    for row in rows:
        print(f"{row.address:<32} {'allowed' if row.ai_contact_allowed else 'denied'}")
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gateway",
        description="Communication Gateway: human-approved messaging for automated agents.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("start", help="Start the gateway server")
    p.add_argument("--host", default=settings.host)
    p.add_argument("--port", type=int, default=settings.port)
    p.add_argument("--foreground", action="store_true", help="Run in this terminal")
    p.set_defaults(func=cmd_start, needs_db=False)

    sub.add_parser("stop", help="Stop the background server").set_defaults(func=cmd_stop, needs_db=False)
    sub.add_parser("status", help="Show server status").set_defaults(func=cmd_status)
    sub.add_parser("approve", help="Review pending messages").set_defaults(func=cmd_approve)

    p = sub.add_parser("history", help="Show recent messages")
    p.add_argument("--status", choices=["pending", "flagged", "approved", "denied", "sent", "failed"])
    p.add_argument("--agent", help="Filter by key name (substring)")
    p.add_argument("--limit", type=int, default=queue_store.DEFAULT_HISTORY_LIMIT)
    p.set_defaults(func=cmd_history)

    # keys
    keys = sub.add_parser("keys", help="Manage agent keys").add_subparsers(dest="keys_command", required=True)

    p = keys.add_parser("add", help="Create a key")
    p.add_argument("name")
    p.add_argument("--per-hour", type=int, default=None)
    p.add_argument("--per-day", type=int, default=None)
    p.set_defaults(func=cmd_keys_add)

    keys.add_parser("list", help="List keys").set_defaults(func=cmd_keys_list)

    p = keys.add_parser("revoke", help="Revoke a key")
    p.add_argument("key")
    p.set_defaults(func=cmd_keys_revoke)

    p = keys.add_parser("limits", help="Change rate limits")
    p.add_argument("key")
    p.add_argument("--per-hour", type=int, default=None)
    p.add_argument("--per-day", type=int, default=None)
    p.set_defaults(func=cmd_keys_limits)

    p = keys.add_parser("webhook", help="Show, set or remove a key's webhook URL")
    p.add_argument("key")
    p.add_argument("url", nargs="?")
    p.add_argument("--remove", action="store_true")
    p.set_defaults(func=cmd_keys_webhook)

    al = keys.add_parser("allowlist", help="Manage recipient allowlists").add_subparsers(
        dest="allowlist_command", required=True,
    )
    p = al.add_parser("set", help="Add one pattern (no-op if present)")
    p.add_argument("key")
    p.add_argument("pattern")
    p.set_defaults(func=cmd_allowlist_set)

    p = al.add_parser("add", help="Add patterns")
    p.add_argument("key")
    p.add_argument("patterns", nargs="+")
    p.set_defaults(func=cmd_allowlist_add)

    p = al.add_parser("list", help="List patterns")
    p.add_argument("key")
    p.set_defaults(func=cmd_allowlist_list)

    p = al.add_parser("remove", help="Remove a pattern")
    p.add_argument("key")
    p.add_argument("pattern")
    p.set_defaults(func=cmd_allowlist_remove)

    p = al.add_parser("replace", help="Replace the whole allowlist")
    p.add_argument("key")
    p.add_argument("patterns", nargs="+")
    p.set_defaults(func=cmd_allowlist_replace)

    p = al.add_parser("clear", help="Remove every pattern (key becomes unrestricted)")
    p.add_argument("key")
    p.set_defaults(func=cmd_allowlist_clear)

    # filters
    filters = sub.add_parser("filters", help="Manage content filters").add_subparsers(
        dest="filters_command", required=True,
    )
    filters.add_parser("list", help="List filters").set_defaults(func=cmd_filters_list)

    p = filters.add_parser("add", help="Add a filter")
    p.add_argument("pattern")
    p.add_argument("--literal", action="store_true", help="Match as plain text instead of regex")
    p.add_argument("--action", choices=[a.value for a in FilterAction], default=FilterAction.DENY.value)
    p.add_argument("--description")
    p.set_defaults(func=cmd_filters_add)

    for name, func in (("enable", cmd_filters_enable), ("disable", cmd_filters_disable), ("remove", cmd_filters_remove)):
        p = filters.add_parser(name, help=f"{name.capitalize()} a filter")
        p.add_argument("id", type=int)
        p.set_defaults(func=func)

    # consent
    cons = sub.add_parser("consent", help="Record contact consent").add_subparsers(
        dest="consent_command", required=True,
    )
    for name in ("deny", "allow"):
        p = cons.add_parser(name, help=f"{name.capitalize()} AI contact for an address")
        p.add_argument("address")
        p.set_defaults(func=cmd_consent_set)
    cons.add_parser("list", help="List consent records").set_defaults(func=cmd_consent_list)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    foreground = getattr(args, "foreground", False)
    setup_logging(
        log_dir=str(settings.log_directory),
        log_file="commgate.jsonl" if foreground else "commgate-cli.jsonl",
        log_level=settings.log_level.upper(),
        console=foreground,
    )
    try:
        if getattr(args, "needs_db", True):
            init_db()
        return args.func(args)
    except CliError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
