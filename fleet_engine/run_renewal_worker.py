# fleet_engine/run_renewal_worker.py
"""Renewal worker - keeps certificates fresh between convergence runs."""

import logging
import signal
import sys
import time
from typing import Callable, Optional

from fleet_engine.container import FleetContainer, get_container
from fleet_engine.core.errors import FleetError, LockTimeoutError

logger = logging.getLogger(__name__)


class RenewalWorker:
    """
    Runs the certificate pass on an interval.

    Each cycle reloads the manifest, takes the host lock and lets the router
    issue, renew or fall back; a cycle that cannot get the lock is skipped.
    """

    def __init__(
        self,
        container: FleetContainer,
        interval_seconds: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.container = container
        self.interval_seconds = interval_seconds or container.settings.renewal_interval_seconds
        self._sleep = sleep
        self._stop_requested = False

        logger.info("Renewal Worker initialized")
        logger.info(f"Interval: {self.interval_seconds}s")

    def start(self):
        """Start the renewal loop."""
        logger.info("=" * 80)
        logger.info("RENEWAL WORKER STARTED")
        logger.info("=" * 80)

        # Register signal handlers
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        while not self._stop_requested:
            try:
                self.run_cycle()
            except Exception as e:
                logger.error(f"Error in renewal cycle: {e}", exc_info=True)

            # Sleep in short steps so a stop signal is honored promptly
            waited = 0
            while not self._stop_requested and waited < self.interval_seconds:
                self._sleep(1)
                waited += 1

        logger.info("Renewal Worker stopped")

    def stop(self):
        self._stop_requested = True

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, stopping...")
        self.stop()

    def run_cycle(self) -> bool:
        """One certificate pass. Returns False when the cycle was skipped or failed."""
        try:
            manifest = self.container.load_manifest()
            summary = self.container.engine(manifest).renew_certificates(manifest)
        except LockTimeoutError as e:
            logger.warning(f"[renewal] skipped: {e}")
            return False
        except FleetError as e:
            logger.error(f"[renewal] failed: {e}")
            return False

        for error in summary.certificate_errors:
            logger.warning(f"[renewal] {error}")
        if summary.routing_error:
            logger.error(f"[renewal] routing: {summary.routing_error}")
            return False

        changed = summary.routing.changed_files if summary.routing else []
        logger.info(f"[renewal] cycle complete, {len(changed)} routing file(s) changed")
        return True


def main():
    """Main entry point."""
    container = get_container()
    logging.basicConfig(
        level=container.settings.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    worker = RenewalWorker(container)

    try:
        worker.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
