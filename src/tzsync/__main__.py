"""Command-line entry point: ``python -m tzsync`` / ``tzsync``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any

from tzsync import __version__
from tzsync.config import TzSyncConfig, parse_duration
from tzsync.daemon import TzSyncDaemon
from tzsync.exceptions import TzSyncConfigError
from tzsync.models.timezone import CycleOutcome

_LOG = logging.getLogger("tzsync")


def _duration(value: str) -> float:
    try:
        return parse_duration(value)
    except TzSyncConfigError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="tzsync",
        description="Set the system timezone from IP geolocation whenever iwd reports a new wireless association.",
    )
    parser.add_argument("--debounce-window", type=_duration, help="quiet period before a burst triggers a lookup")
    parser.add_argument("--min-lookup-interval", type=_duration, help="minimum time between two lookups")
    parser.add_argument("--resolver-endpoint", help="geolocation URL returning latitude, longitude and timezone")
    parser.add_argument("--max-retries", type=int, help="lookup attempts per cycle")
    parser.add_argument("--request-timeout", type=_duration, help="timeout for a single lookup attempt")
    parser.add_argument("--once", action="store_true", help="resolve and apply once, then exit")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def _config_from_args(args: argparse.Namespace) -> TzSyncConfig:
    overrides: dict[str, Any] = {}
    for field_name in (
        "debounce_window",
        "min_lookup_interval",
        "resolver_endpoint",
        "max_retries",
        "request_timeout",
    ):
        value = getattr(args, field_name)
        if value is not None:
            overrides[field_name] = value
    return TzSyncConfig.from_env(**overrides)


async def _run(config: TzSyncConfig, *, once: bool) -> int:
    async with TzSyncDaemon(config) as daemon:
        if once:
            report = await daemon.run_once()
            _LOG.info("Lookup finished: %s", report.outcome)
            return 0 if report.outcome in {CycleOutcome.CHANGED, CycleOutcome.NO_CHANGE} else 1

        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, daemon.request_stop)
        try:
            await daemon.run()
        finally:
            for signum in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(signum)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = _config_from_args(args)
    except TzSyncConfigError as exc:
        _LOG.error("Invalid configuration: %s", exc)
        return 2

    _LOG.debug("Starting with %s", config)
    return asyncio.run(_run(config, once=args.once))


if __name__ == "__main__":
    sys.exit(main())
