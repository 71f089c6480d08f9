"""Run one outbox retry sweep (for cron or a manual kick).

Run from the repository root: `python -m scripts.sweep_outbox --batch 100`.
"""

import argparse
import json

from ledgerbot.common.config import settings
from ledgerbot.common.db import SessionLocal
from ledgerbot.common.logging import configure_logging
from ledgerbot.services.outbox.sender import TelegramSender
from ledgerbot.services.outbox.service import OutboxDispatcher


def main() -> None:
    """Sweep once and print the result with the remaining backlog."""

    parser = argparse.ArgumentParser(description="Re-attempt failed and stuck outbox items, oldest first.")
    parser.add_argument("--batch", type=int, default=settings.outbox_sweep_batch)
    parser.add_argument("--max-retries", type=int, default=settings.outbox_max_retries)
    parser.add_argument("--dry-run", action="store_true", help="only print the backlog")
    args = parser.parse_args()

    configure_logging()
    sender = TelegramSender(settings.bot_token, settings.telegram_api_base, settings.send_timeout_seconds)
    dispatcher = OutboxDispatcher(SessionLocal, sender, max_retries=args.max_retries)
    try:
        result = {} if args.dry_run else dispatcher.sweep_retries(args.batch, args.max_retries).model_dump()
        print(json.dumps({"sweep": result, "backlog": dispatcher.backlog()}, indent=2))
    finally:
        sender.close()


if __name__ == "__main__":
    main()
