"""Device handle wrapping the opaque device-command API.

The transport and message encoding live behind :class:`DeviceCommands`.
:class:`Device` adds what the methods need on top of it: an identity, a
session lock so that one method owns the device at a time, serialised
command calls and an explicit ready signal raised when no call is in flight.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping, Protocol, Sequence

from .errors import DeviceError
from .networks import NetworkInfo
from .paths import get_serialized_path

logger = logging.getLogger(__name__)


@dataclass
class Address:
    address: str
    path: list[int]
    serialized_path: str = ""

    def __post_init__(self) -> None:
        if not self.serialized_path:
            self.serialized_path = get_serialized_path(self.path)

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "path": list(self.path),
            "serializedPath": self.serialized_path,
        }


@dataclass
class AccountDescriptor:
    descriptor: str
    path: list[int] = field(default_factory=list)


class DeviceCommands(Protocol):
    """Protocol implemented by device transports."""

    def get_address(
        self, path: Sequence[int], network: NetworkInfo, show_on_device: bool
    ) -> Address:
        """Return the address for ``path``, displaying it when requested."""

    def get_account_descriptor(
        self, network: NetworkInfo, path: Sequence[int]
    ) -> AccountDescriptor | None:
        """Return the account descriptor (xpub or address) for ``path``."""


class _SerializedCommands:
    """Proxy running every command under the device call lock."""

    def __init__(self, device: "Device") -> None:
        self._device = device

    def get_address(
        self, path: Sequence[int], network: NetworkInfo, show_on_device: bool
    ) -> Address:
        return self._device._invoke(
            "get_address", self._device.commands.get_address, list(path), network, show_on_device
        )

    def get_account_descriptor(
        self, network: NetworkInfo, path: Sequence[int]
    ) -> AccountDescriptor | None:
        return self._device._invoke(
            "get_account_descriptor",
            self._device.commands.get_account_descriptor,
            network,
            list(path),
        )


class Device:
    """A connected device and its command channel."""

    def __init__(
        self,
        commands: DeviceCommands,
        device_id: str,
        features: Mapping[str, Any] | None = None,
    ) -> None:
        self.commands = commands
        self.id = device_id
        self.features: dict[str, Any] = dict(features or {})
        self._session_lock = threading.Lock()
        self._call_lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()
        self._button_listener: Callable[[str], None] | None = None

    @property
    def needs_backup(self) -> bool:
        return bool(self.features.get("needs_backup"))

    @contextmanager
    def session(self) -> Iterator["Device"]:
        """Hold the device for the duration of one method invocation."""

        if not self._session_lock.acquire(blocking=False):
            raise DeviceError("Device call in progress", code="Device_CallInProgress")
        try:
            yield self
        finally:
            self._session_lock.release()

    def get_commands(self) -> _SerializedCommands:
        return _SerializedCommands(self)

    def is_ready(self) -> bool:
        return self._idle.is_set()

    def wait_until_ready(self, timeout: float | None = None) -> bool:
        """Block until no command is in flight."""

        return self._idle.wait(timeout)

    def set_button_listener(self, listener: Callable[[str], None] | None) -> None:
        self._button_listener = listener

    def button_request(self, code: str) -> None:
        """Called by the transport when the device asks for a button press."""

        logger.debug("Device %s button request %s", self.id, code)
        if self._button_listener is not None:
            self._button_listener(code)

    def _invoke(self, name: str, func: Callable[..., Any], *args: Any) -> Any:
        with self._call_lock:
            self._idle.clear()
            logger.debug("Device %s call %s", self.id, name)
            try:
                return func(*args)
            finally:
                self._idle.set()
