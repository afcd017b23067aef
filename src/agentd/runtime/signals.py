import logging
import signal
import threading

logger = logging.getLogger(__name__)


class SignalController:
    """SIGINT during a tool aborts the tools running at that moment; otherwise SIGINT/SIGTERM request shutdown.

    A second SIGINT while shutdown is pending raises KeyboardInterrupt.
    """

    def __init__(self, stop_event: threading.Event, executor):
        self.stop_event = stop_event
        self.executor = executor
        self._previous: dict[int, object] = {}

    def handle_sigint(self, signum=None, frame=None) -> None:
        aborted = self.executor.abort_running()
        if aborted:
            logger.warning(f"Interrupt received, aborting {aborted} running tool(s)")
            return
        if self.stop_event.is_set():
            raise KeyboardInterrupt
        logger.info("Interrupt received, shutting down after the current step")
        self.stop_event.set()

    def handle_sigterm(self, signum=None, frame=None) -> None:
        logger.info("SIGTERM received, shutting down")
        self.stop_event.set()

    def install(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not in the main thread, signal handlers not installed")
            return
        self._previous[signal.SIGINT] = signal.signal(signal.SIGINT, self.handle_sigint)
        self._previous[signal.SIGTERM] = signal.signal(signal.SIGTERM, self.handle_sigterm)

    def restore(self) -> None:
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous.clear()


def install_signal_handlers(context) -> SignalController:
    controller = SignalController(context.stop_event, context.executor)
    controller.install()
    return controller
