"""
Replay recorded stats snapshots through a probe.

Loads a YAML configuration, feeds the recorded snapshots to a probe at the
configured sampling period and writes the resulting ticket as JSON.
"""

import asyncio
import json
import logging
import sys
from typing import Optional

from rtcprobe.core.config import load_config
from rtcprobe.core.probe import Probe
from rtcprobe.stats.models import Ticket
from rtcprobe.stats.source import ReplaySource

logger = logging.getLogger(__name__)


async def replay(snapshots_path: str, config_path: Optional[str] = None) -> Optional[Ticket]:
    """
    Run one session over recorded snapshots.

    Args:
        snapshots_path: JSON or JSON lines file of snapshots.
        config_path: Optional path to configuration file.

    Returns:
        The session ticket, or None when the session could not run.
    """
    config = load_config(config_path)
    source = ReplaySource.from_file(snapshots_path)

    if not config.sampling.watchdog_enabled:
        # One report per recorded snapshot, the first one is the reference
        config.sampling.stop_after_ms = max(len(source) - 1, 1) * config.sampling.refresh_every_ms

    tickets = []
    config.ticket.enabled = True
    probe = Probe(config, source)
    probe.onticket = tickets.append
    probe.start()
    await probe.wait()

    return tickets[0] if tickets else None


def main() -> None:
    """Main entry point for the replay tool."""
    import argparse

    parser = argparse.ArgumentParser(description="Replay recorded WebRTC stats snapshots")
    parser.add_argument("snapshots", help="JSON or JSON lines file of recorded snapshots")
    parser.add_argument(
        "-c", "--config",
        help="Path to configuration file",
        default=None
    )
    parser.add_argument(
        "-o", "--output",
        help="Write the ticket to this file instead of stdout",
        default=None
    )
    parser.add_argument(
        "-v", "--verbose",
        help="Enable verbose logging",
        action="store_true"
    )
    parser.add_argument(
        "--debug",
        help="Enable debug logging",
        action="store_true"
    )

    args = parser.parse_args()

    # Setup logging
    log_level = logging.DEBUG if args.debug else (logging.INFO if args.verbose else logging.WARNING)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        ticket = asyncio.run(replay(args.snapshots, args.config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return
    except Exception as e:
        logger.error(f"Replay failed: {e}")
        sys.exit(1)

    if ticket is None:
        logger.error("No ticket produced")
        sys.exit(1)

    output = json.dumps(ticket.to_dict(), indent=2)
    if args.output:
        with open(args.output, "w") as f:
            f.write(output)
        logger.info(f"Ticket written to {args.output}")
    else:
        print(output)


if __name__ == "__main__":
    main()
