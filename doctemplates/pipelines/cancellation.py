import threading

from ..exceptions import OperationCancelled


class CancellationToken:
    """Cooperative cancellation flag checked between work items."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, what: str = "operation") -> None:
        if self._event.is_set():
            raise OperationCancelled(f"{what} cancelled")


def check_cancelled(token, what: str = "operation") -> None:
    """No-op when ``token`` is None."""
    if token is not None:
        token.raise_if_cancelled(what)
