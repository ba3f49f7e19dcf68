#!/usr/bin/env python3
"""
Process a Pub/Sub push body for a connected mailbox.

Reads the request body from a file (or stdin) and runs one sync cycle,
printing the dispatched events. Useful for replaying captured webhooks.

Usage:
    python scripts/handle_webhook.py body.json
    cat body.json | python scripts/handle_webhook.py
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mailhook import CheckpointExpired, MailboxDriver, MailhookError
from mailhook.sync import LocalEventBus
from mailhook.utils import Config, setup_logger


async def run(body: str, args, config: Config, logger) -> int:
    bus = LocalEventBus()
    driver = MailboxDriver.from_config(config, bus, mailbox_id=args.mailbox)

    for label_id in driver.subscribed_labels():
        bus.listen(label_id, lambda event: print(f"{event.label_id}\t{event.message_id}"))

    try:
        result = await driver.handle_webhook(body)
    except CheckpointExpired as e:
        logger.error(f"{e}; re-establishing the watch")
        checkpoint = await driver.rewatch()
        logger.warning(
            f"Checkpoint reset to {checkpoint.history_id}; earlier changes were not replayed"
        )
        return 2

    logger.info(
        f"Outcome: {result.outcome.value}, events: {len(result.events)}, "
        f"checkpoint: {result.checkpoint.history_id if result.checkpoint else None}"
    )
    return 0


def main():
    """Run one sync cycle from a captured webhook body."""
    parser = argparse.ArgumentParser(description='Process a Gmail push notification')
    parser.add_argument(
        'body',
        nargs='?',
        type=str,
        default=None,
        help='File holding the request body (default: stdin)'
    )
    parser.add_argument(
        '--mailbox',
        type=str,
        default='primary',
        help='Mailbox key (default: primary)'
    )
    args = parser.parse_args()

    config = Config.load()
    config.validate()
    logger = setup_logger('handle_webhook', level=config.LOG_LEVEL, log_dir=config.LOG_DIR)

    body = Path(args.body).read_text() if args.body else sys.stdin.read()

    try:
        sys.exit(asyncio.run(run(body, args, config, logger)))
    except MailhookError as e:
        logger.error(f"Webhook processing failed: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
