#!/usr/bin/env python3
"""
Transition Worker - ends membership transition windows when they come due.

Polls the scheduled_tasks table and deactivates the old membership of
every relocation whose grace period has elapsed.

Usage:
    python -m pipeline.worker
    python -m pipeline.worker --once
    python -m pipeline.worker --verbose
"""

import sys
import time
import signal
import argparse
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from core.config_loader import TransitionConfig, load_config
from core.exceptions import CircleMatchingError
from core.interfaces import CircleRepository
from pipeline.transitions import process_due_transitions

logger = logging.getLogger(__name__)

running = True


def signal_handler(sig, frame):
    global running
    logger.info("Shutdown signal received")
    running = False


def start_worker(
    repo: CircleRepository,
    config: Optional[TransitionConfig] = None,
    once: bool = False,
    now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    sleep: Callable[[float], None] = time.sleep
) -> int:
    """
    Poll for due tasks until stopped.

    Returns:
        Number of transitions completed
    """
    config = config or TransitionConfig()
    completed = 0

    logger.info(f"Starting transition worker (poll interval {config.poll_interval_seconds}s, once={once})")
    while running:
        try:
            batch = process_due_transitions(repo, now(), config)
            completed += batch.completed
        except CircleMatchingError as e:
            logger.error(f"Transition poll failed: {e}")
            if once:
                raise

        if once:
            break

        # Sleep in short chunks to allow responsive shutdown
        waited = 0.0
        while running and waited < config.poll_interval_seconds:
            step = min(1.0, config.poll_interval_seconds - waited)
            sleep(step)
            waited += step

    logger.info(f"Transition worker stopped ({completed} transitions completed)")
    return completed


def main(argv=None):
    parser = argparse.ArgumentParser(description='Circle Matching Transition Worker')
    parser.add_argument('--once', action='store_true', help='Process due tasks and exit')
    parser.add_argument('--config', default='config.yaml', help='Path to config.yaml')
    parser.add_argument('--verbose', action='store_true')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    from database import database
    from database.repository import SqlCircleRepository

    try:
        config = load_config(args.config)
        repo = SqlCircleRepository(database.configure(config.database.url))
        start_worker(repo, config.transitions, once=args.once)
    except CircleMatchingError as e:
        logger.error(f"Error: {e}")
        return 1
    except Exception as e:
        logger.error(f"Transition worker failed: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
