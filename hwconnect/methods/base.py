"""Shared machinery for stateful device methods.

A method validates its payload in ``__init__`` (no device or UI access),
exposes :meth:`AbstractMethod.confirmation` as a one-shot gate and performs
its work in :meth:`AbstractMethod.run`, which returns a :data:`MethodResult`.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, Generic, Iterable, Iterator, List, Mapping, Sequence, TypeVar, Union

from ..config import ConnectConfig
from ..device import Device
from ..errors import MethodCancelled, UiChannelError, ValidationError
from ..networks import DEFAULT_REGISTRY, FirmwareRange, NetworkRegistry
from ..ui import RECEIVE_CONFIRMATION, REQUEST_CONFIRMATION, UiChannel, UiMessage

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConfirmationState(Enum):
    AUTO_CONFIRMED = auto()
    PENDING = auto()
    CONFIRMED = auto()
    REJECTED = auto()

    @property
    def granted(self) -> bool:
        return self in {ConfirmationState.AUTO_CONFIRMED, ConfirmationState.CONFIRMED}


class Bundle(Generic[T]):
    """Ordered, non-empty sequence of work items."""

    def __init__(self, items: Iterable[T]) -> None:
        self._items = tuple(items)
        if not self._items:
            raise ValidationError("Bundle must contain at least one item", field="bundle")

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __getitem__(self, index: int) -> T:
        return self._items[index]

    @property
    def is_single(self) -> bool:
        return len(self._items) == 1


@dataclass(frozen=True)
class SingleResult(Generic[T]):
    value: T

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class BundledResult(Generic[T]):
    values: tuple

    def unwrap(self) -> List[T]:
        return list(self.values)


MethodResult = Union[SingleResult, BundledResult]


def shape_result(bundled: bool, responses: Sequence[T]) -> MethodResult:
    if bundled:
        return BundledResult(tuple(responses))
    return SingleResult(responses[0])


def confirmation_granted(payload: Any) -> bool:
    """Truthy UI answers confirm; the string ``"false"`` rejects."""

    if isinstance(payload, str):
        return payload.strip().lower() not in {"", "false", "0"}
    return bool(payload)


class AbstractMethod:
    """Base class for methods dispatched through :func:`hwconnect.core.call`."""

    name = "abstract"

    def __init__(
        self,
        payload: Mapping[str, Any],
        *,
        ui: UiChannel,
        device: Device | None = None,
        config: ConnectConfig | None = None,
        registry: NetworkRegistry | None = None,
    ) -> None:
        self.payload = payload
        self.ui = ui
        self.device = device
        self.config = config or ConnectConfig()
        self.registry = registry or DEFAULT_REGISTRY
        self.info = ""
        self.use_device = True
        self.use_ui = True
        self.firmware_range = FirmwareRange()
        self.confirmation_state = ConfirmationState.PENDING
        self._confirmation_requested = False
        self._cancelled = threading.Event()

    @property
    def device_id(self) -> str | None:
        return self.device.id if self.device is not None else None

    def post_message(self, message: UiMessage) -> None:
        self.ui.post(message)

    def create_ui_waiter(self, event_type: str):
        return self.ui.create_waiter(event_type, self.device_id)

    def confirmation(self) -> ConfirmationState:
        """Resolve the confirmation gate. May be called once per instance."""

        if self._confirmation_requested:
            raise RuntimeError(f"{self.name}: confirmation already requested")
        self._confirmation_requested = True
        self.confirmation_state = self._confirm()
        logger.info("%s confirmation: %s", self.name, self.confirmation_state.name)
        return self.confirmation_state

    def _confirm(self) -> ConfirmationState:
        raise NotImplementedError

    def _request_confirmation(self, payload: Dict[str, Any]) -> ConfirmationState:
        """Run one confirmation round trip with the UI surface."""

        if not self.ui.wait_for_popup():
            return ConfirmationState.REJECTED
        waiter = self.create_ui_waiter(RECEIVE_CONFIRMATION)
        try:
            self.post_message(UiMessage(REQUEST_CONFIRMATION, payload))
            response = waiter.wait()
        except UiChannelError:
            logger.info("%s: UI channel closed while awaiting confirmation", self.name)
            return ConfirmationState.REJECTED
        finally:
            self.ui.discard(waiter)
        if confirmation_granted(response.payload):
            return ConfirmationState.CONFIRMED
        return ConfirmationState.REJECTED

    def no_backup_confirmation(self) -> bool:
        """Ask the operator to proceed with a device that has no backup."""

        return self._request_confirmation({"view": "no-backup"}).granted

    def get_button_request_data(self, code: str) -> Dict[str, Any] | None:
        return None

    def run(self) -> MethodResult:
        raise NotImplementedError

    def cancel(self) -> None:
        """Request interruption before the next bundle item."""

        self._cancelled.set()

    def check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise MethodCancelled()

    def dispose(self) -> None:
        """Release resources held by the method."""
