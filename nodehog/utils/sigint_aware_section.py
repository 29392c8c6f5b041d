import logging
import signal
import threading

logger = logging.getLogger("all.nodehog.signals")


class SigintAwareSection:
    """Within the section, SIGINT and SIGTERM set `cancel_event` instead of killing the process.

    The orchestrator then stops launching helpers and goes straight to cleanup.
    """

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self, cancel_event: threading.Event):
        self.cancel_event = cancel_event
        self.original_handlers = {}

    def __enter__(self):
        # Save the original signal handlers
        for signum in self.SIGNALS:
            self.original_handlers[signum] = signal.signal(signum, self.signal_handler)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        # Restore the original signal handlers
        for signum, handler in self.original_handlers.items():
            signal.signal(signum, handler)
        self.original_handlers = {}
        return False  # Do not suppress exceptions

    def signal_handler(self, signum, frame):
        if self.cancel_event.is_set():
            logger.warning("Cleanup already in progress, please wait")
            return
        logger.warning(f"{signal.Signals(signum).name} received, aborting the experiment")
        self.cancel_event.set()
