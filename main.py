#!/usr/bin/env python3
"""
SCION Certificate Renewer - Main Entry Point.

Checks whether the given certificate expires within the configured number
of days and, if so, renews it via scion-pki, validates and verifies the new
certificate, and replaces the certificate and key files in place.

Meant to be run periodically by an external scheduler (cron, systemd timer).

Usage:
    # Renew if the certificate expires within the next 2 days
    python main.py --trc ISD1-B1-S1.trc --cert as.pem --key as.key --days 2

    # Take settings from a configuration file
    python main.py --config renewer.yaml

    # Only report whether a renewal is due
    python main.py --config renewer.yaml --dry-run
"""

import argparse
import json
import sys
from typing import List, Optional

from renewer.logger import setup_logger, get_logger
from renewer.config_loader import build_config, Config, ConfigurationError
from renewer.authority import ScionPKIAuthority
from renewer.orchestrator import RenewalOrchestrator, RenewalResult, RenewalStatus
from renewer.notification import NotificationManager, NotificationContext


LOG_LEVELS = ["ERROR", "WARN", "INFO", "DEBUG", "TRACE"]


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Args:
        argv: Argument list, defaults to sys.argv[1:]

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="scionlab-cert-renewer",
        description=(
            "Checks the given certificate to expire within the configured deadline, "
            "and renews it via scion-pki"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s -t ISD1-B1-S1.trc -c as.pem -k as.key -d 2
  %(prog)s --config renewer.yaml --dry-run
        """,
    )

    parser.add_argument(
        "-t", "--trc",
        type=str,
        help="The current TRC of the ISD",
    )
    parser.add_argument(
        "-c", "--cert",
        type=str,
        help="Input certificate",
    )
    parser.add_argument(
        "-k", "--key",
        type=str,
        help="Input key",
    )
    parser.add_argument(
        "-d", "--days",
        type=int,
        help="Renew certificate if it expires within X days (24-hour days)",
    )
    parser.add_argument(
        "-l", "--log-level", "--logLevel",
        dest="log_level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=None,
        help="Log-level (ERROR|WARN|INFO|DEBUG|TRACE, default: INFO)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a YAML configuration file; command-line values take precedence",
    )
    parser.add_argument(
        "--authority-binary",
        type=str,
        default=None,
        help="Certificate authority tool to invoke (default: scion-pki)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds each authority operation may take before it is killed (default: 300)",
    )
    parser.add_argument(
        "--temp-dir",
        type=str,
        default=None,
        help="Directory for staging the renewed files (default: system temp directory)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only check whether renewal is due, don't renew",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Also write log output to this file",
    )
    parser.add_argument(
        "--json-summary",
        action="store_true",
        help="Output machine-readable JSON summary at the end of execution",
    )

    return parser.parse_args(argv)


def _send_notification(config: Config, result: RenewalResult) -> None:
    """Announce renewals and failures on the configured channels."""
    if result.status == RenewalStatus.SKIPPED:
        return

    manager = NotificationManager(config.notifications)
    if not manager.is_enabled():
        return

    manager.notify(NotificationContext(
        cert_path=result.cert_path,
        status="SUCCESS" if result.status == RenewalStatus.RENEWED else "FAILED",
        expiry_date=result.not_after,
        new_expiry_date=result.new_not_after,
        failure_reason=None if result.succeeded else result.message,
    ))


def print_execution_summary(result: RenewalResult, output_json: bool = False) -> None:
    """
    Log the run outcome, and print it as JSON if requested.

    Args:
        result: Outcome of the renewal run
        output_json: Also print the JSON summary to stdout
    """
    logger = get_logger()

    logger.section("RENEWAL SUMMARY")
    logger.info(f"  Certificate: {result.cert_path}")
    logger.info(f"  Status: {result.status.value.upper()}")
    logger.info(f"  Message: {result.message}")
    if result.not_after:
        logger.info(f"  Expiry: {result.not_after.isoformat()}")
    if result.new_not_after:
        logger.info(f"  New expiry: {result.new_not_after.isoformat()}")

    if output_json:
        print(json.dumps(result.to_dict(), indent=2))


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Exit Codes:
        0 - Certificate renewed, or renewal not due yet
        1 - Renewal failed
        2 - Configuration error

    Returns:
        Exit code
    """
    args = parse_arguments(argv)

    logger = setup_logger(
        level=args.log_level or "INFO",
        use_colors=not args.no_color,
    )
    logger.info("Starting scionlab-cert-renewer")

    try:
        config = build_config(
            config_path=args.config,
            trc=args.trc,
            cert=args.cert,
            key=args.key,
            days=args.days,
            log_level=args.log_level,
            log_file=args.log_file,
            authority_binary=args.authority_binary,
            timeout=args.timeout,
            temp_dir=args.temp_dir,
            dry_run=args.dry_run,
            no_color=args.no_color,
        )
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    try:
        logger = setup_logger(
            level=config.settings.log_level,
            use_colors=config.settings.use_colors,
            log_file=config.settings.log_file,
        )
    except OSError as e:
        logger.error(f"Configuration error: cannot open log file {config.settings.log_file}: {e}")
        return 2

    if config.settings.dry_run:
        logger.warning("DRY RUN MODE - No changes will be made")

    try:
        authority = ScionPKIAuthority(
            binary=config.authority.binary,
            timeout=config.authority.timeout,
        )
        result = RenewalOrchestrator(config, authority).run()
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        if config.settings.log_level in ("DEBUG", "TRACE"):
            logger.exception("Traceback")
        return 1

    _send_notification(config, result)
    print_execution_summary(result, output_json=args.json_summary)

    return 0 if result.succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
