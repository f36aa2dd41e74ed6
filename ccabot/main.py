"""
Entry point wiring all components.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys

from web3.exceptions import ProviderConnectionError

from ccabot.app import AuctionBot
from ccabot.chain.client import ChainClient
from ccabot.config.bid_file import load_bid_file
from ccabot.config.config import Settings
from ccabot.errors import BidFileError, FetchError
from ccabot.execution.execution_loop import StopReason
from ccabot.execution.revert_classifier import RevertClassifier
from ccabot.infra.logging_cfg import LOGGER_NAME, build_logger, log_event

EXIT_OK = 0
EXIT_STARTUP_FAILED = 1
EXIT_INTERRUPTED = 130


def _init_logging() -> logging.Logger:
    # Settings are not loaded yet; read the two logging knobs straight from the env.
    level_name = os.getenv("CCA_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    file_path = os.getenv("CCA_LOG_FILE", "ccabot.log") or None
    return build_logger(LOGGER_NAME, level=level, file_path=file_path)


async def main() -> int:
    log = _init_logging()
    try:
        cfg = Settings.load()
        signer = cfg.resolve_signer()
        specs = load_bid_file(cfg.bids_file)
    except (ValueError, RuntimeError) as exc:
        # BidFileError is a ValueError too
        event = "bid_file_invalid" if isinstance(exc, BidFileError) else "config_invalid"
        log_event(log, event, level=logging.ERROR, error=str(exc))
        return EXIT_STARTUP_FAILED

    classifier = RevertClassifier.with_extra_patterns(cfg.permanent_revert_patterns)
    try:
        client = await ChainClient.connect(
            cfg.rpc_url,
            signer,
            cfg.cca_address,
            hook_address=cfg.hook_address,
            soulbound_address=cfg.soulbound_address,
            tx_config=cfg.tx_config(),
            classifier=classifier,
            call_timeout=cfg.rpc_timeout,
            receipt_timeout=cfg.receipt_timeout,
        )
    except (OSError, ValueError, ProviderConnectionError) as exc:
        log_event(log, "chain_connect_failed", level=logging.ERROR, error=str(exc))
        return EXIT_STARTUP_FAILED
    bot = AuctionBot(
        client,
        specs,
        default_owner=cfg.default_owner(signer),
        max_attempts=cfg.max_attempts,
        require_soulbound=cfg.require_soulbound,
        await_window_close=cfg.await_window_close,
        wait_for_receipt=cfg.wait_for_receipt,
        poll_interval=cfg.poll_interval,
        summary_dir=cfg.summary_dir,
    )
    log_event(log, "startup", signer=signer.address, bids=len(specs))

    loop = asyncio.get_running_loop()
    # Windows doesn't support add_signal_handler, so rely on KeyboardInterrupt handling
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, bot.request_stop)
        except NotImplementedError:
            pass

    try:
        await bot.build()
        reason = await bot.run()
    except FetchError as exc:
        log_event(log, "auction_context_unavailable", level=logging.ERROR, error=str(exc))
        return EXIT_STARTUP_FAILED
    finally:
        log.info("Closing chain connection...")
        await client.close()

    for line in bot.outcome_lines():
        log.info(line)
    log.info("Shutdown complete")
    return EXIT_INTERRUPTED if reason == StopReason.SHUTDOWN_REQUESTED else EXIT_OK


def run() -> None:
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        print("\nBidder stopped by user")
        code = EXIT_INTERRUPTED
    sys.exit(code)


if __name__ == "__main__":
    run()
