"""Bridges background work back onto the Qt main thread"""

from concurrent.futures import CancelledError, Future

from PyQt6.QtCore import QObject, pyqtBoundSignal, pyqtSignal


class FutureWatcher(QObject):
    """Emits a signal when a future completes.

    The watcher must be created on the main thread. Signals are emitted from
    whichever thread completes the future, Qt queues them to the main thread.
    A future that is already done emits immediately.
    """

    succeeded: pyqtBoundSignal = pyqtSignal(object)
    failed: pyqtBoundSignal = pyqtSignal(object)

    def __init__(self, future: Future, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.future = future

    def start(self):
        """Starts watching. Connect the signals before calling this."""
        self.future.add_done_callback(self._done)

    def _done(self, future: Future):
        try:
            result = future.result()
        except (CancelledError, Exception) as e:
            self.failed.emit(e)
        else:
            self.succeeded.emit(result)
