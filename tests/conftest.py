from __future__ import annotations

from typing import Any, Callable

import pytest

from hwconnect.backend import AccountInfo, BackendTransportError, Utxo
from hwconnect.device import AccountDescriptor, Address, Device
from hwconnect.paths import get_serialized_path
from hwconnect.ui import (
    RECEIVE_ACCOUNT,
    RECEIVE_CONFIRMATION,
    REQUEST_CONFIRMATION,
    SELECT_ACCOUNT,
    UiChannel,
    UiMessage,
    UiResponse,
)

DEVICE_ID = "device-1"


class StubCommands:
    def __init__(
        self,
        addresses: dict[str, str] | None = None,
        missing_descriptors: set[str] | None = None,
    ) -> None:
        self.addresses = addresses or {}
        self.missing_descriptors = missing_descriptors or set()
        self.calls: list[tuple[Any, ...]] = []

    def get_address(self, path, network, show_on_device):
        serialized = get_serialized_path(path)
        self.calls.append(("get_address", serialized, show_on_device))
        address = self.addresses.get(serialized, f"{network.shortcut.lower()}-{serialized}")
        return Address(address=address, path=list(path))

    def get_account_descriptor(self, network, path):
        serialized = get_serialized_path(path)
        self.calls.append(("get_account_descriptor", serialized))
        if serialized in self.missing_descriptors:
            return None
        return AccountDescriptor(descriptor=f"desc:{serialized}", path=list(path))


class StubBackend:
    def __init__(self, used: set[str] | None = None, everything_used: bool = False) -> None:
        self.used = used or set()
        self.everything_used = everything_used
        self.fail_with: Exception | None = None
        self.queries = []
        self.utxo_requests: list[str] = []

    def get_account_info(self, query):
        self.queries.append(query)
        if self.fail_with is not None:
            raise self.fail_with
        used = self.everything_used or query.descriptor in self.used
        return AccountInfo(
            descriptor=query.descriptor,
            balance="1000" if used else "0",
            available_balance="1000" if used else "0",
            empty=not used,
            history={"total": 2 if used else 0, "unconfirmed": 0},
        )

    def get_account_utxo(self, descriptor):
        self.utxo_requests.append(descriptor)
        return [Utxo(txid="ab" * 32, vout=1, amount="1000", confirmations=6)]


class ScriptedSurface:
    """UI surface answering requests synchronously from the test script."""

    def __init__(self) -> None:
        self.channel: UiChannel | None = None
        self.messages: list[UiMessage] = []
        self.confirm: Any = True
        self.select: Callable[[UiMessage], int | None] | None = None
        self.on_message: Callable[[UiMessage], None] | None = None

    def __call__(self, message: UiMessage) -> None:
        self.messages.append(message)
        if self.on_message is not None:
            self.on_message(message)
        if message.type == REQUEST_CONFIRMATION and self.confirm is not None:
            self.channel.handle_response(
                UiResponse(RECEIVE_CONFIRMATION, self.confirm, device_id=DEVICE_ID)
            )
        if message.type == SELECT_ACCOUNT and self.select is not None:
            index = self.select(message)
            if index is not None:
                self.channel.handle_response(UiResponse(RECEIVE_ACCOUNT, index, device_id=DEVICE_ID))

    def of_type(self, kind: str) -> list[UiMessage]:
        return [message for message in self.messages if message.type == kind]


@pytest.fixture
def surface() -> ScriptedSurface:
    return ScriptedSurface()


@pytest.fixture
def ui(surface: ScriptedSurface) -> UiChannel:
    channel = UiChannel(surface)
    surface.channel = channel
    channel.mark_popup_ready()
    return channel


@pytest.fixture
def commands() -> StubCommands:
    return StubCommands()


@pytest.fixture
def device(commands: StubCommands) -> Device:
    return Device(commands, DEVICE_ID)


@pytest.fixture
def backend() -> StubBackend:
    return StubBackend()


@pytest.fixture
def unreachable_backend() -> StubBackend:
    stub = StubBackend()
    stub.fail_with = BackendTransportError("backend down")
    return stub
