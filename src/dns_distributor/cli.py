#!/usr/bin/env python3
"""dns-distributor - multi-provider DNS record distribution

Creates one logical DNS record on several DNS providers at once, translating
the hostname between the providers' zones and resolving every field through
explicit values, hostname overrides, provider defaults and global settings.
Records whose hostname disappears from discovery are orphaned and removed
after a grace period.

Commands:
    sweep                  Apply the discovery snapshot and delete orphaned
                           records past their grace period (default command)
    create INTENT.yaml     Create a record on every provider listed in the file;
                           --source discovery lets sweeps orphan it later
    extend ID MINUTES      Extend the grace period of an orphaned record
    setting [KEY]          Show resolved settings and where they came from
    orphans                List orphaned records and their deadlines
    override set|delete|list
                           Manage hostname overrides stored in the state file
    preserve add|delete|list
                           Manage preserved hostnames stored in the state file

Environment variables:

    Files:
        CONFIG_PATH            YAML config file or directory of *.yaml files with
                               providers, hostname overrides and preserved hostnames
                               (default: /config/dns-distributor.yaml)
        STATE_PATH             JSON state file path (default: /data/state.json)
        DISCOVERY_PATH         File listing the hostnames currently present, one per
                               line or as a YAML list. Without it no record is orphaned.

    Runtime:
        SYNC_MODE              "once" or "watch" (polling loop) (default: watch)
        POLL_INTERVAL_SECONDS  Poll interval in watch mode (default: 60)
        LOG_LEVEL              DEBUG, INFO, WARNING, ERROR (default: INFO)
        FANOUT_MAX_WORKERS     Concurrent provider calls per create (default: 4)
        GRACE_EXTENSION_MAX_MINUTES
                               Total extension allowed per orphaned record (default: 1440)

    Settings (overridden by values stored in the state file):
        DNS_DEFAULT_TYPE, DNS_DEFAULT_TTL, DNS_DEFAULT_TTL_OVERRIDE,
        DNS_DEFAULT_PROXIED, DNS_DEFAULT_CONTENT, CLEANUP_ORPHANED,
        CLEANUP_GRACE_PERIOD

    Example intent file:
        baseHostname: "app.example.com"
        type: "CNAME"
        content: "lb.example.com"
        preserved: false
        source: "discovery"
        providers:
          - providerId: "home"
          - providerId: "edge"
            ttl: 600
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from dns_distributor.errors import DistributorError
from dns_distributor.models import HostnameOverride, RecordType, SweepReport
from dns_distributor.providers import ProviderClient, create_provider_client
from dns_distributor.service import DistributionService, MultiCreateDNSRecordInput
from dns_distributor.settings import (
    DistributorConfig,
    SettingsStore,
    find_config_files,
    get_config_files_mtimes,
    load_config,
)
from dns_distributor.store import RecordStore, StateStore

# =============================================================================
# Configuration
# =============================================================================

CONFIG_PATH = os.getenv("CONFIG_PATH", "/config/dns-distributor.yaml")
STATE_PATH = os.getenv("STATE_PATH", "/data/state.json")
DISCOVERY_PATH = os.getenv("DISCOVERY_PATH", "")

SYNC_MODE = os.getenv("SYNC_MODE", "watch")
POLL_INTERVAL_SECONDS = int(os.getenv("POLL_INTERVAL_SECONDS", "60"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
FANOUT_MAX_WORKERS = int(os.getenv("FANOUT_MAX_WORKERS", "4"))
GRACE_EXTENSION_MAX_MINUTES = int(os.getenv("GRACE_EXTENSION_MAX_MINUTES", "1440"))

# =============================================================================
# Logging Setup
# =============================================================================

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# =============================================================================
# Wiring
# =============================================================================


def create_clients(config: DistributorConfig) -> Dict[str, ProviderClient]:
    """Build a client for every enabled provider; unsupported types are skipped."""
    clients: Dict[str, ProviderClient] = {}
    for provider in config.providers:
        if not provider.enabled:
            continue
        try:
            clients[provider.id] = create_provider_client(provider)
        except ValueError as e:
            logger.warning(f"No client for provider '{provider.id}': {e}")
    return clients


def build_service(
    config_path: str,
    state_path: str,
    *,
    clients: Optional[Dict[str, ProviderClient]] = None,
) -> DistributionService:
    config = load_config(config_path)
    store = RecordStore(StateStore(state_path))
    return DistributionService(
        config=config,
        store=store,
        settings=SettingsStore(database=store.settings),
        clients=create_clients(config) if clients is None else clients,
        max_workers=FANOUT_MAX_WORKERS,
        max_extension_minutes=GRACE_EXTENSION_MAX_MINUTES,
    )


def read_discovery(path: str) -> Optional[List[str]]:
    """Read the hostnames currently present.

    Returns None when there is no snapshot, so that an unreadable source is
    never mistaken for every host having disappeared.
    """
    if not path or not os.path.exists(path):
        return None
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to read discovery snapshot {path}: {e}")
        return None

    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get("hostnames") or []
    if isinstance(data, str):
        data = data.split()
    if not isinstance(data, list):
        logger.error(f"Unexpected discovery snapshot format in {path}: {type(data).__name__}")
        return None
    return [str(h).strip() for h in data if h is not None and str(h).strip()]


def run_sweep(service: DistributionService, discovery_path: str) -> SweepReport:
    report = SweepReport()
    hostnames = read_discovery(discovery_path)
    if hostnames is None:
        logger.debug("No discovery snapshot, skipping orphan detection")
    else:
        observed = service.lifecycle.observe(hostnames)
        report.orphaned.extend(observed.orphaned)
        report.reactivated.extend(observed.reactivated)
        report.preserved.extend(observed.preserved)

    swept = service.lifecycle.sweep()
    report.deleted.extend(swept.deleted)
    report.failed.extend(swept.failed)
    report.preserved.extend(swept.preserved)
    return report


# =============================================================================
# Commands
# =============================================================================


def cmd_sweep(args: argparse.Namespace) -> int:
    service = build_service(args.config, args.state)
    logger.info(f"Providers: {', '.join(p.id for p in service.catalog.providers) or 'none'}")
    logger.info(f"Sync mode: {args.mode}")
    for provider_id, client in service.clients.items():
        if not client.test_connection():
            logger.warning(f"Cannot connect to {client.name} ({provider_id}); deletions will be retried")

    if args.mode == "once":
        run_sweep(service, args.discovery)
        return 0

    if args.mode != "watch":
        logger.error(f"Invalid SYNC_MODE: {args.mode}. Use 'once' or 'watch'")
        return 1

    logger.info(f"Poll interval: {args.interval}s")
    config_files = find_config_files(args.config)
    last_config_mtimes = get_config_files_mtimes(config_files)

    try:
        while True:
            run_sweep(service, args.discovery)

            current_config_files = find_config_files(args.config)
            current_mtimes = get_config_files_mtimes(current_config_files)
            if set(current_config_files) != set(config_files) or current_mtimes != last_config_mtimes:
                changed = sorted(
                    set(current_config_files) ^ set(config_files)
                    | {f for f in current_config_files if current_mtimes.get(f) != last_config_mtimes.get(f)}
                )
                logger.info(f"Config change detected in: {', '.join(Path(f).name for f in changed)}")
                config_files = current_config_files
                last_config_mtimes = current_mtimes
                try:
                    service = build_service(args.config, args.state)
                    logger.info(f"Reloaded {len(service.catalog)} provider(s)")
                except Exception as e:
                    logger.error(f"Failed to reload configuration: {e}", exc_info=True)
                    logger.warning("Continuing with previous configuration")

            time.sleep(max(5, args.interval))
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")
    return 0


def cmd_create(args: argparse.Namespace) -> int:
    try:
        with open(args.intent, "r") as f:
            data = yaml.safe_load(f) or {}
        intent = MultiCreateDNSRecordInput.from_dict(data)
    except (OSError, yaml.YAMLError, ValueError, TypeError, AttributeError) as e:
        logger.error(f"Invalid intent file {args.intent}: {e}")
        return 1

    service = build_service(args.config, args.state)
    result = service.multi_create(intent, source=args.source)
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.failed == 0 else 1


def cmd_extend(args: argparse.Namespace) -> int:
    service = build_service(args.config, args.state)
    try:
        record = service.extend_grace_period(args.record_id, args.minutes)
    except DistributorError as e:
        logger.error(str(e))
        return 1
    remaining = service.time_remaining_for(record.id) or 0
    print(f"{record.hostname} ({record.type.value}) on {record.provider_id}: {int(remaining // 60)} minutes remaining")
    return 0


def cmd_setting(args: argparse.Namespace) -> int:
    service = build_service(args.config, args.state)
    try:
        resolved = [service.resolve_setting(args.key)] if args.key else service.settings.resolve_all()
    except KeyError as e:
        logger.error(str(e))
        return 1
    for setting in resolved:
        print(f"{setting.key}={setting.value!r} ({setting.source.value})")
    return 0


def cmd_orphans(args: argparse.Namespace) -> int:
    service = build_service(args.config, args.state)
    for view in service.list_orphaned():
        record = view.record
        if view.overdue:
            state = "overdue"
        else:
            state = f"{int((view.seconds_remaining or 0) // 60)}m remaining"
        error = f" last error: {record.last_error}" if record.last_error else ""
        print(f"{record.id} {record.hostname} ({record.type.value}) on {record.provider_id}: {state}{error}")
    return 0


def cmd_override(args: argparse.Namespace) -> int:
    if args.action != "list" and not args.hostname:
        logger.error(f"override {args.action} requires a hostname")
        return 1
    service = build_service(args.config, args.state)
    if args.action == "set":
        try:
            override = HostnameOverride(
                hostname=args.hostname.strip().lower(),
                proxied=args.proxied,
                ttl=args.ttl,
                record_type=RecordType.parse(args.type) if args.type else None,
                content=args.content or None,
                provider_id=args.provider or None,
                reason=args.reason,
            )
        except ValueError as e:
            logger.error(str(e))
            return 1
        service.set_hostname_override(override)
        return 0
    if args.action == "delete":
        if not service.delete_hostname_override(args.hostname):
            logger.error(f"No stored hostname override for {args.hostname}")
            return 1
        return 0
    for override in service.hostname_overrides():
        fields = {
            "type": override.record_type.value if override.record_type else None,
            "content": override.content,
            "ttl": override.ttl,
            "proxied": override.proxied,
            "provider": override.provider_id,
        }
        shown = " ".join(f"{k}={v}" for k, v in fields.items() if v is not None)
        print(f"{override.hostname} {shown}".rstrip())
    return 0


def cmd_preserve(args: argparse.Namespace) -> int:
    if args.action != "list" and not args.hostname:
        logger.error(f"preserve {args.action} requires a hostname")
        return 1
    service = build_service(args.config, args.state)
    if args.action == "add":
        if not service.preserve_hostname(args.hostname, reason=args.reason):
            logger.info(f"{args.hostname} is already preserved")
        return 0
    if args.action == "delete":
        if not service.unpreserve_hostname(args.hostname):
            logger.error(f"No stored preserved hostname {args.hostname}")
            return 1
        return 0
    for entry in service.preserved_hostnames():
        print(f"{entry.hostname} {entry.reason}".rstrip())
    return 0


# =============================================================================
# Main
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dns-distributor",
        description="Distribute DNS records across providers and clean up orphans.",
    )
    parser.add_argument("--config", default=CONFIG_PATH, help="config file or directory")
    parser.add_argument("--state", default=STATE_PATH, help="JSON state file")
    sub = parser.add_subparsers(dest="command")

    sweep = sub.add_parser("sweep", help="orphan detection and cleanup")
    sweep.add_argument("--mode", default=SYNC_MODE, help="once or watch")
    sweep.add_argument("--interval", type=int, default=POLL_INTERVAL_SECONDS)
    sweep.add_argument("--discovery", default=DISCOVERY_PATH, help="present hostnames file")
    sweep.set_defaults(func=cmd_sweep)

    create = sub.add_parser("create", help="create a record on several providers")
    create.add_argument("intent", help="YAML file describing the record")
    create.add_argument("--source", default=None, help="record source, e.g. discovery (default: from file or api)")
    create.set_defaults(func=cmd_create)

    extend = sub.add_parser("extend", help="extend an orphaned record's grace period")
    extend.add_argument("record_id")
    extend.add_argument("minutes", type=int)
    extend.set_defaults(func=cmd_extend)

    setting = sub.add_parser("setting", help="show resolved settings")
    setting.add_argument("key", nargs="?")
    setting.set_defaults(func=cmd_setting)

    orphans = sub.add_parser("orphans", help="list orphaned records")
    orphans.set_defaults(func=cmd_orphans)

    override = sub.add_parser("override", help="manage stored hostname overrides")
    override.add_argument("action", choices=["set", "delete", "list"])
    override.add_argument("hostname", nargs="?", default="")
    override.add_argument("--type", default=None)
    override.add_argument("--content", default=None)
    override.add_argument("--ttl", type=int, default=None)
    override.add_argument("--proxied", dest="proxied", action="store_true", default=None)
    override.add_argument("--no-proxied", dest="proxied", action="store_false")
    override.add_argument("--provider", default=None, help="apply only to this provider id")
    override.add_argument("--reason", default="")
    override.set_defaults(func=cmd_override)

    preserve = sub.add_parser("preserve", help="manage stored preserved hostnames")
    preserve.add_argument("action", choices=["add", "delete", "list"])
    preserve.add_argument("hostname", nargs="?", default="")
    preserve.add_argument("--reason", default="")
    preserve.set_defaults(func=cmd_preserve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    argv = sys.argv[1:] if argv is None else list(argv)
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        args = parser.parse_args(argv + ["sweep"])
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
