#!/usr/bin/env python3
"""Command-line interface for identifier resolution, cancellation and sync.

Usage:
    payment-reconciler normalize 0196b315-25b4-27a5-c420-5abf1c4521ba
    payment-reconciler candidates order_1700000000000
    payment-reconciler resolve order_1700000000000 --order-id order_1700000000000
    payment-reconciler cancel order_1700000000000 --reason "Out of stock" --amount 5000
    payment-reconciler sync --status paid --start 2026-01-01 --end 2026-01-31 --format text
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import datetime, timedelta
from typing import Optional

from ..config import GatewayConfig
from ..database import DatabaseManager, get_database_url
from ..exceptions import GatewayUnreachable, InvalidInput, PaymentNotFound
from ..gateway import get_gateway
from ..identifiers import generate_candidates, is_normalized, normalize, uuid_derivation
from .service import ReconciliationService

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ISSUES = 1
EXIT_GATEWAY_FAILURE = 2


def parse_datetime(dt_string: str) -> datetime:
    """Parse datetime string in various formats.

    Args:
        dt_string: Datetime string in ISO format or date format.

    Returns:
        Parsed datetime object.

    Raises:
        ValueError: If the string cannot be parsed.
    """
    formats = [
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%dT%H:%M:%S.%f",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d",
    ]

    for fmt in formats:
        try:
            return datetime.strptime(dt_string, fmt)
        except ValueError:
            continue

    raise ValueError(
        f"Unable to parse datetime: {dt_string}. "
        f"Expected formats: YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS"
    )


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _with_service(provider: str, action) -> int:
    """Open a session and gateway, run action(service), and clean up.

    Gateway failures map to exit code 2, missing payments and bad input to 1.
    """
    config = GatewayConfig.from_env()
    try:
        gateway = get_gateway(provider, config=config)
    except ValueError as e:
        logger.error(str(e))
        return EXIT_ISSUES
    db = DatabaseManager(get_database_url())
    await db.initialize()

    try:
        async with db.session() as session:
            try:
                return await action(ReconciliationService(session, gateway, config=config))
            except GatewayUnreachable as e:
                logger.error(f"Gateway unreachable: {e}")
                return EXIT_GATEWAY_FAILURE
            except (PaymentNotFound, InvalidInput) as e:
                logger.error(str(e))
                return EXIT_ISSUES
    finally:
        await gateway.aclose()
        await db.shutdown()


def run_normalize(raw: str) -> int:
    _print_json({
        "raw": raw,
        "normalized": normalize(raw),
        "already_normalized": is_normalized(raw),
    })
    return EXIT_OK


def run_candidates(raw: str) -> int:
    _print_json({
        "raw": raw,
        "uuid_derivation": uuid_derivation(raw),
        "candidates": generate_candidates(raw),
    })
    return EXIT_OK


async def run_resolve_async(provider: str, raw: str, order_id: Optional[str] = None) -> int:
    async def action(service: ReconciliationService) -> int:
        resolution = await service.resolve_identifier(raw, order_id=order_id)
        _print_json({
            "raw_identifier": raw,
            "payment_id": resolution.payment_id,
            "method": resolution.method.value,
            "attempts": resolution.attempts,
        })
        return EXIT_OK

    return await _with_service(provider, action)


async def run_cancel_async(
    provider: str,
    order_id: str,
    reason: Optional[str] = None,
    amount: Optional[int] = None,
) -> int:
    async def action(service: ReconciliationService) -> int:
        outcome = await service.cancel_order(order_id, reason=reason, amount=amount)
        _print_json(outcome.model_dump(mode="json"))
        if outcome.success:
            return EXIT_OK
        if (outcome.error or {}).get("type") == "GatewayUnreachable":
            return EXIT_GATEWAY_FAILURE
        return EXIT_ISSUES

    return await _with_service(provider, action)


async def run_sync_async(
    provider: str,
    status: Optional[str] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    limit: int = 100,
    output_file: Optional[str] = None,
    output_format: str = "json",
) -> int:
    """Run a batch sync and write the report.

    Returns:
        0 when every payment was resolved and fetched, 1 when some were
        unresolved, 2 when the gateway failed for any payment.
    """
    async def action(service: ReconciliationService) -> int:
        report = await service.sync_payments(
            status=status, start_time=start_time, end_time=end_time, limit=limit
        )
        output = service.generate_report(report, format=output_format)

        if output_file:
            with open(output_file, "w") as f:
                f.write(output)
            logger.info(f"Report written to {output_file}")
        else:
            print(output)

        stats = report.to_summary_dict()["statistics"]
        if stats["failed"]:
            return EXIT_GATEWAY_FAILURE
        if report.has_issues:
            logger.warning(f"Sync completed with {stats['unresolved']} unresolved payment(s)")
            return EXIT_ISSUES
        return EXIT_OK

    return await _with_service(provider, action)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="payment-reconciler",
        description="Resolve stored payment identifiers, cancel and sync payments with the gateway.",
    )
    parser.add_argument(
        "--provider", "-p",
        default=os.getenv("GATEWAY_PROVIDER", "portone"),
        help="Gateway provider (default: portone)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    normalize_parser = subparsers.add_parser("normalize", help="Normalize an identifier")
    normalize_parser.add_argument("raw", help="Stored identifier")

    candidates_parser = subparsers.add_parser("candidates", help="List candidate gateway ids")
    candidates_parser.add_argument("raw", help="Stored identifier")

    resolve_parser = subparsers.add_parser("resolve", help="Resolve an identifier with the gateway")
    resolve_parser.add_argument("raw", help="Stored identifier")
    resolve_parser.add_argument("--order-id", help="Order reference for the lookup fallback")

    cancel_parser = subparsers.add_parser("cancel", help="Cancel an order's payment")
    cancel_parser.add_argument("order_id", help="Merchant order reference")
    cancel_parser.add_argument("--reason", "-r", help="Cancel reason")
    cancel_parser.add_argument("--amount", "-a", type=int, help="Partial cancel amount")

    sync_parser = subparsers.add_parser("sync", help="Converge local payments to the gateway")
    sync_parser.add_argument("--status", help="Only sync payments with this local status")
    sync_parser.add_argument("--start", "-s", help="Start date/time (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS)")
    sync_parser.add_argument("--end", "-e", help="End date/time (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS)")
    sync_parser.add_argument("--limit", type=int, default=100, help="Maximum payments (default: 100)")
    sync_parser.add_argument("--output", "-o", help="Output file path (default: stdout)")
    sync_parser.add_argument(
        "--format", "-f",
        choices=["json", "csv", "text"],
        default="json",
        help="Output format (default: json)",
    )

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if not parsed_args.command:
        parser.print_help()
        return EXIT_ISSUES

    if parsed_args.command == "normalize":
        return run_normalize(parsed_args.raw)

    if parsed_args.command == "candidates":
        return run_candidates(parsed_args.raw)

    if parsed_args.command == "resolve":
        return asyncio.run(run_resolve_async(
            parsed_args.provider, parsed_args.raw, order_id=parsed_args.order_id
        ))

    if parsed_args.command == "cancel":
        return asyncio.run(run_cancel_async(
            parsed_args.provider,
            parsed_args.order_id,
            reason=parsed_args.reason,
            amount=parsed_args.amount,
        ))

    if parsed_args.command == "sync":
        try:
            start_time = parse_datetime(parsed_args.start) if parsed_args.start else None
            end_time = parse_datetime(parsed_args.end) if parsed_args.end else None
        except ValueError as e:
            logger.error(str(e))
            return EXIT_ISSUES

        # A bare end date covers the whole day
        if end_time and "T" not in parsed_args.end and " " not in parsed_args.end:
            end_time = end_time + timedelta(days=1) - timedelta(seconds=1)

        return asyncio.run(run_sync_async(
            parsed_args.provider,
            status=parsed_args.status,
            start_time=start_time,
            end_time=end_time,
            limit=parsed_args.limit,
            output_file=parsed_args.output,
            output_format=parsed_args.format,
        ))

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
