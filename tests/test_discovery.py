import threading
import time

import pytest

from conftest import StubBackend, StubCommands
from hwconnect import core
from hwconnect.config import ConnectConfig
from hwconnect.device import Device
from hwconnect.discovery import AccountType, DiscoveryEngine, DiscoveryStatus, default_account_types
from hwconnect.errors import DescriptorNotFound, MethodCancelled
from hwconnect.backend import BackendTransportError
from hwconnect.methods import GetAccountInfo
from hwconnect.networks import get_network
from hwconnect.ui import SELECT_ACCOUNT

ETH = get_network("eth")
BTC = get_network("btc")


def _eth_descriptor(index: int) -> str:
    return f"desc:m/44'/60'/0'/0/{index}"


def _drain(engine: DiscoveryEngine) -> list:
    events = []
    while True:
        event = engine.next_event(timeout=0.01)
        if event is None:
            return events
        events.append(event)


def test_gap_limit_ends_scan_exactly(device, commands) -> None:
    backend = StubBackend(used={_eth_descriptor(0), _eth_descriptor(2)})
    engine = DiscoveryEngine(ETH, device, backend, account_types=[AccountType("normal", 44, 3)])

    engine.start()
    assert engine.join(timeout=5)

    # used, empty, used, then three empty accounts in a row
    assert [account.index for account in engine.accounts] == [0, 1, 2, 3, 4, 5]
    assert [account.empty for account in engine.accounts] == [False, True, False, True, True, True]
    assert len(commands.calls) == 6
    assert engine.completed is True
    assert engine.status is DiscoveryStatus.COMPLETED

    events = _drain(engine)
    assert [event.kind for event in events] == ["progress"] * 6 + ["complete"]
    assert [len(event.accounts) for event in events[:6]] == [1, 2, 3, 4, 5, 6]


def test_each_account_type_uses_its_own_gap_limit(device) -> None:
    backend = StubBackend()
    types = [AccountType("normal", 84, 2), AccountType("segwit", 49, 1), AccountType("legacy", 44, 3)]
    engine = DiscoveryEngine(BTC, device, backend, account_types=types)

    engine.start()
    engine.join(timeout=5)

    assert [account.type for account in engine.accounts] == [
        "normal",
        "normal",
        "segwit",
        "legacy",
        "legacy",
        "legacy",
    ]
    assert engine.cursor == 2
    assert engine.accounts[2].label == "Bitcoin segwit account #1"


def test_default_account_types_follow_network() -> None:
    assert [t.type for t in default_account_types(BTC)] == ["normal", "segwit", "legacy"]
    assert [t.type for t in default_account_types(get_network("doge"))] == ["normal"]
    assert AccountType("normal", 44).path(ETH, 4)[-1] == 4


def test_stop_is_idempotent_and_safe_before_start(device, backend) -> None:
    engine = DiscoveryEngine(ETH, device, backend)

    engine.stop()
    engine.stop()

    assert engine.status is DiscoveryStatus.STOPPED
    assert engine.listening is False
    assert engine.next_event(timeout=0) is None
    assert engine.join(timeout=0) is True
    with pytest.raises(RuntimeError):
        engine.start()


def test_stop_during_scan_closes_channel(device) -> None:
    backend = StubBackend(everything_used=True)
    engine = DiscoveryEngine(ETH, device, backend)

    engine.start()
    assert engine.next_event(timeout=5).kind == "progress"
    engine.stop()
    engine.stop()

    assert engine.join(timeout=5)
    assert engine.status is DiscoveryStatus.STOPPED
    assert engine.completed is False
    assert engine.listening is False
    assert engine.next_event(timeout=0) is None


def test_scan_error_is_delivered_as_event(device, unreachable_backend) -> None:
    engine = DiscoveryEngine(ETH, device, unreachable_backend)
    engine.start()
    event = engine.next_event(timeout=5)
    assert event.kind == "error"
    assert isinstance(event.error, BackendTransportError)


def test_discovery_returns_the_selected_account(ui, device, surface) -> None:
    backend = StubBackend(used={_eth_descriptor(0), _eth_descriptor(1), _eth_descriptor(2)})
    surface.select = lambda message: 2 if message.payload["type"] == "end" else None

    info = core.call(
        "getAccountInfo",
        {"coin": "eth", "details": "txs"},
        ui=ui,
        device=device,
        backend_factory=lambda network: backend,
    )

    assert info.descriptor == _eth_descriptor(2)
    assert info.path == "m/44'/60'/0'/0/2"
    assert backend.queries[-1].details == "txs"

    select_messages = surface.of_type(SELECT_ACCOUNT)
    assert select_messages[0].payload == {
        "type": "start",
        "accountTypes": ["normal"],
        "coinInfo": "ETH",
    }
    progress = [m for m in select_messages if m.payload["type"] == "progress"]
    assert [len(m.payload["accounts"]) for m in progress] == [1, 2, 3, 4]
    assert select_messages[-1].payload["type"] == "end"
    assert ui.pending() == []


def test_selection_before_completion_waits_for_device(ui, device, surface) -> None:
    backend = StubBackend(everything_used=True)
    surface.select = lambda message: 0 if message.payload["type"] == "progress" else None
    method = GetAccountInfo(
        {"coin": "btc", "details": "txs"},
        ui=ui,
        device=device,
        backend_factory=lambda network: backend,
    )

    info = method.run().unwrap()

    assert info.path == "m/84'/0'/0'"
    assert info.descriptor == "desc:m/84'/0'/0'"
    assert info.utxo is not None
    assert method.discovery.status is DiscoveryStatus.STOPPED
    assert method.discovery.listening is False
    assert device.is_ready()


def test_discovery_error_rejects_selection(ui, device, surface) -> None:
    commands = StubCommands(missing_descriptors={"m/44'/60'/0'/0/0"})
    failing_device = Device(commands, device.id)
    method = GetAccountInfo(
        {"coin": "eth"},
        ui=ui,
        device=failing_device,
        backend_factory=lambda network: StubBackend(),
    )

    with pytest.raises(DescriptorNotFound):
        method.run()
    assert method.discovery.listening is False
    assert ui.pending() == []


def test_dispose_stops_outstanding_discovery(ui, device) -> None:
    backend = StubBackend(everything_used=True)
    method = GetAccountInfo(
        {"coin": "eth"},
        ui=ui,
        device=device,
        config=ConnectConfig(poll_interval=0.01),
        backend_factory=lambda network: backend,
    )
    outcome = {}

    def worker() -> None:
        try:
            method.run()
        except MethodCancelled as exc:
            outcome["error"] = exc

    thread = threading.Thread(target=worker)
    thread.start()
    for _ in range(500):
        if method.discovery is not None and method.discovery.accounts:
            break
        time.sleep(0.01)
    method.dispose()
    thread.join(timeout=5)

    assert isinstance(outcome.get("error"), MethodCancelled)
    assert method.discovery.status is DiscoveryStatus.STOPPED
    assert method.discovery.listening is False


def test_dispose_after_selection_is_harmless(ui, device, surface) -> None:
    backend = StubBackend(used={_eth_descriptor(0)})
    surface.select = lambda message: 0 if message.payload["type"] == "end" else None
    method = GetAccountInfo(
        {"coin": "eth"},
        ui=ui,
        device=device,
        backend_factory=lambda network: backend,
    )

    info = method.run().unwrap()
    method.dispose()
    method.dispose()

    assert info.descriptor == _eth_descriptor(0)
    assert ui.pending() == []
