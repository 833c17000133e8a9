"""Run the invoicing API server, or the scheduled reminder sweep."""

import argparse
import asyncio
import sys

import structlog
import uvicorn

from tradie_invoices.backend import SupabaseClient
from tradie_invoices.config import configure_logging
from tradie_invoices.delivery import ResendClient
from tradie_invoices.workflow import InvoiceWorkflow, ReminderSweep

logger = structlog.get_logger(__name__)


async def run_reminder_sweep() -> ReminderSweep:
    """Send today's automatic reminders across every business."""
    backend = SupabaseClient.service()
    mailer = ResendClient()
    try:
        return await InvoiceWorkflow(backend, mailer).process_reminders()
    finally:
        await mailer.close()
        await backend.close()


def main() -> None:
    """Command line entry point.

    Usage:
        tradie-invoices
        tradie-invoices --port 9000 --reload
        tradie-invoices process-reminders
        python -m tradie_invoices --log-level debug
    """
    parser = argparse.ArgumentParser(description="Tradie Invoices API server")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind")
    parser.add_argument("--port", type=int, default=8000, help="Port to listen on")
    parser.add_argument("--reload", action="store_true", help="Restart on code changes")
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["critical", "error", "warning", "info", "debug"],
        help="Uvicorn log level",
    )
    commands = parser.add_subparsers(dest="command")
    commands.add_parser(
        "process-reminders",
        help="Send the payment reminders scheduled for today, then exit",
    )
    args = parser.parse_args()

    if args.command == "process-reminders":
        configure_logging()
        sweep = asyncio.run(run_reminder_sweep())
        for error in sweep.errors:
            logger.error("reminder_failed", detail=error)
        sys.exit(1 if sweep.errors else 0)

    uvicorn.run(
        "tradie_invoices.api.app:build_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
