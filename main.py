import sys
import time
import signal
import logging
import argparse
import threading

from core.app_context import AppContext
from core.config_loader import load_config
from core.exceptions import ConfigurationError
from database import database
from database.init_db import init_db
from pipeline.runner import run_matching_algorithm, run_transitions, run_warm_cache

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Set on SIGINT/SIGTERM for graceful shutdown
stop_event = threading.Event()


def signal_handler(sig, frame):
    logger.info("Shutdown signal received")
    stop_event.set()


def run_cycle(ctx: AppContext, mode: str) -> bool:
    """
    Execute one cycle for the given mode.

    Args:
        mode: 'match', 'transitions', 'warm-cache', or 'all'

    Returns:
        True if every executed step succeeded
    """
    cycle_start = time.time()
    ok = True

    if mode in ('warm-cache', 'all'):
        result = run_warm_cache(ctx)
        ok = ok and result.success

    if mode in ('transitions', 'all') and not stop_event.is_set():
        result = run_transitions(ctx)
        ok = ok and result.success

    if mode in ('match', 'all') and not stop_event.is_set():
        result = run_matching_algorithm(ctx, stop_event=stop_event, source="main")
        if result.success:
            logger.info(
                f"Placed {result.users_placed} users, created {result.circles_created} circles, "
                f"started {result.transitions_started} transitions, "
                f"{result.users_left_unmatched} left unmatched, {len(result.errors)} write errors"
            )
        else:
            logger.error(f"Matching run failed: {result.error}")
        ok = ok and result.success

    cycle_elapsed = time.time() - cycle_start
    logger.info(f"=== Cycle Completed in {cycle_elapsed:.2f}s ===")
    return ok


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Circle Matching Driver")
    parser.add_argument('--mode', type=str, choices=['match', 'transitions', 'warm-cache', 'all'], default='match',
                        help='What to run: match (default), transitions, warm-cache, or all')
    parser.add_argument('--loop', action='store_true',
                        help='Repeat every schedule.interval_seconds until stopped')
    parser.add_argument('--config', type=str, default='config.yaml', help='Path to config.yaml')
    args = parser.parse_args(argv)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        config = load_config(args.config)
        session_factory = database.configure(config.database.url)
        # Initialize DB (with retry logic)
        init_db(database.engine)
        ctx = AppContext.build(config, session_factory=session_factory)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        return 1

    mode = args.mode
    logger.info(f"Main driver starting in {mode.upper()} mode...")

    try:
        if not args.loop:
            return 0 if run_cycle(ctx, mode) else 1

        interval = config.schedule.interval_seconds
        cycle_count = 0
        while not stop_event.is_set():
            cycle_count += 1
            cycle_start = time.time()
            logger.info(f"=== Starting Cycle #{cycle_count} ({mode.upper()}) ===")
            try:
                run_cycle(ctx, mode)
            except Exception as e:
                logger.error(f"Error in main loop: {e}", exc_info=True)

            cycle_elapsed = time.time() - cycle_start
            if not stop_event.is_set():
                logger.info(f"=== Cycle #{cycle_count} completed in {cycle_elapsed:.2f}s. Sleeping for {interval} seconds... ===")
                stop_event.wait(interval)
        return 0
    finally:
        ctx.close()


if __name__ == "__main__":
    sys.exit(main())
