"""Per-request context carried from the router down to the provider calls."""

import threading
import uuid
from dataclasses import dataclass, field

from cloudnet.errors import OperationCancelledError


@dataclass
class RequestContext:
    actor: str = "system"
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def raise_if_cancelled(self) -> None:
        """Abort before issuing another provider call once the caller is gone."""
        if self.cancel_event.is_set():
            raise OperationCancelledError(
                "Request was cancelled", details={"request_id": self.request_id}
            )
