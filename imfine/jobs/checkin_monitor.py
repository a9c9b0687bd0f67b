"""
Check-in Monitor Job: periodic transition scan.

This module runs on an external timer (cron, a platform scheduler or the
`--loop` mode below) and moves overdue subjects ACTIVE -> GRACE -> ESCALATED,
alerting trusted contacts on escalation.

Typical cron schedule: * * * * * (every minute)
"""

import asyncio
import logging
import traceback
from datetime import datetime, timezone
from typing import Any

import httpx

from ..core.config import get_settings
from ..core.database import build_engine, build_session_factory
from ..services.channels import ChannelRegistry, build_channels
from ..services.checkin_engine import CheckinEngine
from ..services.dispatch import DispatchEngine

logger = logging.getLogger(__name__)


# =============================================================================
# ALERTING
# =============================================================================


async def send_alert(
    title: str,
    message: str,
    severity: str = "error",
    details: dict | None = None,
) -> None:
    """
    Send an ops alert when the monitor fails.

    Supports multiple channels:
    - Slack webhook
    - Generic webhook (for PagerDuty, Opsgenie, etc.)
    - Logs (always)
    """
    settings = get_settings()

    # Always log the error
    log_message = f"[MONITOR ALERT] {title}: {message}"
    if details:
        log_message += f" | Details: {details}"

    if severity == "critical":
        logger.critical(log_message)
    elif severity == "warning":
        logger.warning(log_message)
    else:
        logger.error(log_message)

    if settings.alerts_webhook_url:
        try:
            await _send_slack_alert(settings.alerts_webhook_url, title, message, severity, details)
        except httpx.HTTPError as e:
            logger.error(f"Failed to send Slack alert: {e}")

    if settings.alert_webhook_url:
        try:
            await _send_webhook_alert(settings.alert_webhook_url, title, message, severity, details)
        except httpx.HTTPError as e:
            logger.error(f"Failed to send webhook alert: {e}")


async def _send_slack_alert(
    webhook_url: str,
    title: str,
    message: str,
    severity: str,
    details: dict | None,
) -> None:
    """Send alert to Slack."""
    color = "#dc2626" if severity == "critical" else "#f59e0b"  # Red or orange

    blocks = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f"🚨 {title}", "emoji": True},
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": message},
        },
    ]

    if details:
        details_text = "\n".join([f"• *{k}*: {v}" for k, v in details.items()])
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": details_text},
        })

    blocks.append({
        "type": "context",
        "elements": [
            {"type": "mrkdwn", "text": f"Severity: *{severity.upper()}* | Time: {datetime.now(timezone.utc).isoformat()}"},
        ],
    })

    async with httpx.AsyncClient() as client:
        await client.post(
            webhook_url,
            json={"attachments": [{"color": color, "blocks": blocks}]},
            timeout=10,
        )


async def _send_webhook_alert(
    webhook_url: str,
    title: str,
    message: str,
    severity: str,
    details: dict | None,
) -> None:
    """Send alert to generic webhook endpoint."""
    payload = {
        "title": title,
        "message": message,
        "severity": severity,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": "imfine-monitor",
        "details": details or {},
    }

    async with httpx.AsyncClient() as client:
        await client.post(webhook_url, json=payload, timeout=10)


# =============================================================================
# JOB
# =============================================================================


async def run_monitor_job(
    database_url: str,
    channels: ChannelRegistry | None = None,
) -> dict[str, Any]:
    """
    Main entry point for one monitor run.

    Args:
        database_url: PostgreSQL connection string
        channels: Delivery adapters (built from settings when omitted)

    Returns:
        Job result summary
    """
    start_time = datetime.now(timezone.utc)
    logger.info(f"Starting check-in monitor at {start_time.isoformat()}")

    engine = build_engine(database_url)
    session_factory = build_session_factory(engine)
    channels = channels or build_channels(get_settings())

    results: dict[str, Any] = {
        "started_at": start_time.isoformat(),
        "completed_at": None,
        "scanned": 0,
        "to_grace": 0,
        "to_escalated": 0,
        "dispatch_failures": 0,
        "errors": [],
    }

    try:
        async with session_factory() as session:
            checkin_engine = CheckinEngine(session, DispatchEngine(session, channels))
            scan = await checkin_engine.run_scan()
            results.update(
                scanned=scan.scanned,
                to_grace=scan.to_grace,
                to_escalated=scan.to_escalated,
                dispatch_failures=scan.dispatch_failures,
            )
            results["errors"].extend(scan.errors)

    except Exception as e:
        error_msg = f"Monitor job failed: {str(e)}"
        logger.error(error_msg)
        results["errors"].append(error_msg)

        # CRITICAL: subjects may be overdue with nobody alerted
        await send_alert(
            title="Check-in Monitor Failed",
            message="The check-in transition scan crashed unexpectedly.",
            severity="critical",
            details={
                "error": str(e),
                "traceback": traceback.format_exc()[-500:],
                "started_at": results["started_at"],
            },
        )
        raise

    finally:
        await engine.dispose()

    end_time = datetime.now(timezone.utc)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    logger.info(
        f"Monitor completed in {results['duration_seconds']:.2f}s: "
        f"{results['scanned']} scanned, {results['to_grace']} to GRACE, "
        f"{results['to_escalated']} to ESCALATED"
    )

    if results["dispatch_failures"] > 0 or results["errors"]:
        await send_alert(
            title="Check-in Monitor Completed with Warnings",
            message=(
                f"{results['dispatch_failures']} escalation dispatches failed "
                f"and {len(results['errors'])} subjects could not be processed."
            ),
            severity="warning",
            details={
                "to_escalated": results["to_escalated"],
                "dispatch_failures": results["dispatch_failures"],
                "errors": results["errors"][:5],
            },
        )

    return results


async def run_forever(database_url: str, interval_seconds: int) -> None:
    """Run the monitor every `interval_seconds` until cancelled."""
    while True:
        try:
            await run_monitor_job(database_url)
        except Exception as e:
            # Already alerted; keep polling
            logger.error(f"Monitor iteration failed: {e}")
        await asyncio.sleep(interval_seconds)


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the check-in monitor."""
    import argparse
    import os

    settings = get_settings()

    parser = argparse.ArgumentParser(description="Run the check-in monitor scan")
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
        help="PostgreSQL connection string",
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep running and scan every --interval seconds",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=settings.scan_interval_seconds,
        help="Seconds between scans in --loop mode",
    )

    args = parser.parse_args()

    if not args.database_url:
        print("Error: DATABASE_URL is required")
        exit(1)

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        if args.loop:
            asyncio.run(run_forever(args.database_url, args.interval))
        else:
            results = asyncio.run(run_monitor_job(database_url=args.database_url))
            print(f"Job completed: {results}")
    except KeyboardInterrupt:
        print("Monitor stopped")
    except Exception as e:
        print(f"Job failed: {e}")
        exit(1)


if __name__ == "__main__":
    main()
