"""Message channel between methods and a human-facing UI surface.

Outbound messages are handed to a *surface* callable. Inbound responses are
matched against a request table of one-shot :class:`ResponseWaiter` objects,
each identified by a generated correlation id and looked up by event kind and
device identity. A waiter resolves exactly once; resolving it again raises
:class:`~hwconnect.errors.UiChannelError`.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .errors import UiChannelError

logger = logging.getLogger(__name__)

REQUEST_CONFIRMATION = "ui-request_confirmation"
RECEIVE_CONFIRMATION = "ui-receive_confirmation"
BUNDLE_PROGRESS = "ui-bundle_progress"
SELECT_ACCOUNT = "ui-select_account"
RECEIVE_ACCOUNT = "ui-receive_account"
REQUEST_BUTTON = "ui-button"


@dataclass
class UiMessage:
    """Outbound message posted to the UI surface."""

    type: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UiResponse:
    """Inbound response from the UI surface."""

    type: str
    payload: Any = None
    device_id: Optional[str] = None
    correlation_id: Optional[str] = None


UiSurface = Callable[[UiMessage], None]


class ResponseWaiter:
    """Pending result slot for one UI request."""

    def __init__(self, event_type: str, device_id: str | None) -> None:
        self.id = uuid.uuid4().hex
        self.event_type = event_type
        self.device_id = device_id
        self._event = threading.Event()
        self._response: UiResponse | None = None
        self._error: BaseException | None = None

    def done(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> UiResponse:
        """Block until the waiter settles and return the response."""

        if not self._event.wait(timeout):
            raise TimeoutError(f"No {self.event_type} response within {timeout}s")
        if self._error is not None:
            raise self._error
        assert self._response is not None
        return self._response

    def _settle(self, response: UiResponse | None, error: BaseException | None) -> None:
        self._response = response
        self._error = error
        self._event.set()


class UiChannel:
    """One-shot request/response bus to a UI surface."""

    def __init__(self, surface: UiSurface | None = None) -> None:
        self._surface = surface
        self._lock = threading.Lock()
        self._pending: Dict[str, ResponseWaiter] = {}
        self._popup_ready = threading.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def post(self, message: UiMessage) -> None:
        if self._closed:
            logger.debug("UI channel closed, dropping %s", message.type)
            return
        logger.debug("UI message %s payload=%s", message.type, message.payload)
        if self._surface is not None:
            self._surface(message)

    # Popup readiness ------------------------------------------------------

    def mark_popup_ready(self) -> None:
        self._popup_ready.set()

    def wait_for_popup(self, timeout: float | None = None) -> bool:
        """Block until the surface reports ready; ``False`` on timeout or close."""

        ready = self._popup_ready.wait(timeout)
        return ready and not self._closed

    # Request table --------------------------------------------------------

    def create_waiter(self, event_type: str, device_id: str | None = None) -> ResponseWaiter:
        with self._lock:
            if self._closed:
                raise UiChannelError("UI channel is closed")
            for waiter in self._pending.values():
                if waiter.event_type == event_type and waiter.device_id == device_id:
                    raise UiChannelError(
                        f"A {event_type} response is already awaited for device {device_id}"
                    )
            waiter = ResponseWaiter(event_type, device_id)
            self._pending[waiter.id] = waiter
        return waiter

    def pending(self) -> List[ResponseWaiter]:
        with self._lock:
            return list(self._pending.values())

    def handle_response(self, response: UiResponse) -> bool:
        """Route an inbound response to its waiter.

        Returns ``False`` for unsolicited responses without a correlation id.
        """

        if response.correlation_id is not None:
            self.resolve(response.correlation_id, response)
            return True
        with self._lock:
            match = next(
                (
                    waiter
                    for waiter in self._pending.values()
                    if waiter.event_type == response.type and waiter.device_id == response.device_id
                ),
                None,
            )
        if match is None:
            logger.warning(
                "Ignoring unsolicited %s response for device %s", response.type, response.device_id
            )
            return False
        self.resolve(match.id, response)
        return True

    def resolve(self, correlation_id: str, response: UiResponse) -> None:
        waiter = self._take(correlation_id)
        waiter._settle(response, None)

    def reject(self, correlation_id: str, error: BaseException) -> None:
        waiter = self._take(correlation_id)
        waiter._settle(None, error)

    def reject_if_pending(self, correlation_id: str, error: BaseException) -> bool:
        """Reject the waiter unless it already settled or was discarded.

        Returns ``True`` when this call settled the waiter.
        """

        with self._lock:
            waiter = self._pending.pop(correlation_id, None)
        if waiter is None:
            return False
        waiter._settle(None, error)
        return True

    def discard(self, waiter: ResponseWaiter) -> None:
        """Drop ``waiter`` from the table without settling it."""

        with self._lock:
            self._pending.pop(waiter.id, None)

    def close(self) -> None:
        """Close the channel and reject every outstanding waiter."""

        with self._lock:
            self._closed = True
            waiters = list(self._pending.values())
            self._pending.clear()
        for waiter in waiters:
            waiter._settle(None, UiChannelError("UI channel closed"))
        self._popup_ready.set()

    def _take(self, correlation_id: str) -> ResponseWaiter:
        with self._lock:
            waiter = self._pending.pop(correlation_id, None)
        if waiter is None:
            raise UiChannelError(
                f"Response {correlation_id} is not pending (already resolved or unknown)"
            )
        return waiter
