#!/usr/bin/env python3
"""
Connect a Gmail mailbox.

Without arguments, prints the consent URL. After consenting, pass the URL
the browser was redirected to (or just its query string) to finish: the
authorization code is exchanged, the mailbox watch is started and the
history checkpoint is seeded.

Usage:
    python scripts/authorize.py
    python scripts/authorize.py --redirect "http://localhost:8080/oauth/redirect?code=...&state=..."
    python scripts/authorize.py --subscribe Label_12 --subscribe STARRED
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mailhook import MailboxDriver, MailhookError
from mailhook.sync import LocalEventBus
from mailhook.utils import Config, setup_logger


async def run(args, config: Config, logger) -> int:
    driver = MailboxDriver.from_config(config, LocalEventBus(), mailbox_id=args.mailbox)

    if args.redirect:
        checkpoint = await driver.handle_redirect(args.redirect)
        logger.info(f"Mailbox connected; checkpoint at historyId {checkpoint.history_id}")
    elif not args.subscribe:
        url = await driver.setup()
        logger.info("Open this URL to grant access:")
        print(url)

    for label_id in args.subscribe:
        await driver.subscribe_label(label_id)

    if args.subscribe:
        logger.info(f"Subscribed labels: {sorted(driver.subscribed_labels())}")

    return 0


def main():
    """Run the consent flow for one mailbox."""
    parser = argparse.ArgumentParser(description='Connect a Gmail mailbox')
    parser.add_argument(
        '--mailbox',
        type=str,
        default='primary',
        help='Mailbox key (default: primary)'
    )
    parser.add_argument(
        '--redirect',
        type=str,
        default=None,
        help='Redirect URL or query string received after consent'
    )
    parser.add_argument(
        '--subscribe',
        action='append',
        default=[],
        help='Label ID to subscribe to (repeatable)'
    )
    args = parser.parse_args()

    config = Config.load()
    config.validate()
    logger = setup_logger('authorize', level=config.LOG_LEVEL, log_dir=config.LOG_DIR)

    if not Path(config.GMAIL_CLIENT_SECRETS_PATH).exists():
        logger.error(
            f"OAuth client secrets not found: {config.GMAIL_CLIENT_SECRETS_PATH}\n"
            f"\n"
            f"1. Go to https://console.cloud.google.com\n"
            f"2. Enable the Gmail API and the Pub/Sub API\n"
            f"3. Create OAuth 2.0 credentials (Web application type)\n"
            f"4. Add {config.OAUTH_REDIRECT_URI} as an authorized redirect URI\n"
            f"5. Save the downloaded JSON to {config.GMAIL_CLIENT_SECRETS_PATH}\n"
        )
        sys.exit(1)

    try:
        sys.exit(asyncio.run(run(args, config, logger)))
    except MailhookError as e:
        logger.error(f"Authorization failed: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
