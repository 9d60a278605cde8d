from typing import Any, Callable, Dict
from PySide6 import QtCore


class WorkerSignals(QtCore.QObject):
    """
    Defines the signals available from a running worker thread.

    Attributes:
        finished (dict): Emitted with the request handler's result dict.
        error (str): Emitted with an error message if the task itself crashes.
    """
    finished = QtCore.Signal(dict)
    error = QtCore.Signal(str)


class BackupTaskWorker(QtCore.QRunnable):
    """
    Runs one backup request (backup, restore, repair, schedule...) in the
    thread pool so the dialog stays responsive while the database is copied
    or uploaded.
    """
    def __init__(self, task: Callable[..., Dict[str, Any]], *args: Any, **kwargs: Any):
        super().__init__()
        self.task = task
        self.args = args
        self.kwargs = kwargs
        self.signals = WorkerSignals()

    @QtCore.Slot()
    def run(self) -> None:
        try:
            result = self.task(*self.args, **self.kwargs)
            self.signals.finished.emit(result)
        except Exception as e:
            self.signals.error.emit(str(e))
