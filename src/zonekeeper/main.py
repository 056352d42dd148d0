from __future__ import annotations

import argparse
import datetime
import json
import logging
import signal
import sys
from typing import List

from .config.config_parser import build_scheduler, load_settings, parse_config_file
from .config.logging_config import init_logging
from .dnssec.algorithms import algorithm_name
from .dnssec.zone_signer import ds_lines
from .errors import ConfigError, ZonekeeperError
from .publication import FilePublicationBridge
from .scheduler.renewal import RenewalScheduler
from .scheduler.triggers import IntervalTrigger, OnceTrigger

logger = logging.getLogger("zonekeeper.main")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zonekeeper",
        description="DNSSEC key provisioning and zone re-signing scheduler",
    )
    parser.add_argument(
        "--config", default="/etc/zonekeeper/zonekeeper.yaml", help="Path to YAML config"
    )
    parser.add_argument(
        "-v",
        "--var",
        dest="vars",
        action="append",
        default=[],
        metavar="KEY=YAML",
        help="Set a configuration variable (repeatable; overrides vars and environment)",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("keys", help="Ensure key pairs exist and print their DNSKEY records")
    renew = sub.add_parser("renew", help="Run one renewal cycle (cron mode)")
    renew.add_argument(
        "--force", action="store_true", help="Re-sign every zone even when fresh"
    )
    sub.add_parser("run", help="Run renewal cycles forever (daemon mode)")
    ds = sub.add_parser("ds", help="Print DS records for a zone")
    ds.add_argument("zone", help="Zone name, e.g. example.com")
    sub.add_parser("status", help="Print the status report of the last cycle")
    return parser


def _cmd_keys(scheduler: RenewalScheduler) -> int:
    results = scheduler.key_generator.ensure_all(scheduler.algorithms)
    rc = 0
    for alg, result in results.items():
        name = algorithm_name(alg)
        if isinstance(result, ZonekeeperError):
            print(f"; {name}: {type(result).__name__}: {result}")
            rc = 1
            continue
        for role, key in (("KSK", result.ksk), ("ZSK", result.zsk)):
            print(f"; {name} {role} {key.identifier} (key tag {key.key_tag})")
            print(f"@ IN DNSKEY {key.dnskey.to_text()}")
    return rc


def _cmd_ds(scheduler: RenewalScheduler, zone: str) -> int:
    pairs = {}
    for alg in scheduler.algorithms_for_zone(zone):
        try:
            pairs[alg] = scheduler.key_generator.ensure_key_pair(alg)
        except ZonekeeperError as exc:
            print(f"Cannot obtain {algorithm_name(alg)} keys: {exc}", file=sys.stderr)
            return 1
    for line in ds_lines(zone, pairs):
        print(line)
    return 0


def _cmd_status(publisher: FilePublicationBridge) -> int:
    report = publisher.load_report()
    if report is None:
        print("No renewal cycle has completed yet", file=sys.stderr)
        return 1
    print(json.dumps(report, indent=2, sort_keys=True))
    return 0 if report.get("ok") else 1


def _cmd_run(scheduler: RenewalScheduler, interval_hours: float) -> int:
    trigger = IntervalTrigger(datetime.timedelta(hours=interval_hours))

    def _stop_handler(signum, _frame):
        logger.info("Received signal %s; stopping after the current cycle", signum)
        trigger.stop()

    signal.signal(signal.SIGTERM, _stop_handler)
    signal.signal(signal.SIGINT, _stop_handler)
    logger.info("Renewal daemon started (every %s hour(s))", interval_hours)
    scheduler.run(trigger)
    logger.info("Renewal daemon stopped")
    return 0


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point for zonekeeper.
    Parses arguments, loads configuration, and dispatches the sub-command.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code: 0 on success, 1 when any algorithm or zone failed or the
        configuration is invalid.

    Example use:
        CLI (daily cron):
            zonekeeper --config /etc/zonekeeper/zonekeeper.yaml renew
    """
    args = _build_parser().parse_args(argv)

    try:
        cfg = parse_config_file(args.config, cli_vars=args.vars)
        settings = load_settings(cfg)
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    # Initialize logging before any other operations
    init_logging(settings.logging)
    logger.debug("Loaded config from %s", args.config)

    try:
        scheduler = build_scheduler(settings)
    except ConfigError as exc:
        logger.error("%s", exc)
        return 1

    if args.command == "keys":
        return _cmd_keys(scheduler)
    if args.command == "ds":
        return _cmd_ds(scheduler, args.zone)
    if args.command == "status":
        return _cmd_status(FilePublicationBridge(settings.zones.output_dir))
    if args.command == "run":
        return _cmd_run(scheduler, settings.scheduler.interval_hours)

    report = OnceTrigger().run(lambda: scheduler.tick(force=args.force))
    return 0 if report.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
