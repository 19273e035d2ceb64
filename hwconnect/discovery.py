"""Account discovery over the device and the backend.

:class:`DiscoveryEngine` scans account types in a worker thread. For each
type it walks account indices until a run of consecutive empty accounts
reaches the type's gap limit. Results reach the consumer as
:class:`DiscoveryEvent` messages on a queue. Stopping the engine closes that
queue, so no event is delivered after :meth:`DiscoveryEngine.stop` returns.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .backend import AccountInfoQuery, Backend
from .device import Device
from .errors import DescriptorNotFound
from .networks import NetworkInfo
from .paths import get_account_label, get_serialized_path, to_hardened

logger = logging.getLogger(__name__)


class DiscoveryStatus(Enum):
    IDLE = auto()
    SCANNING = auto()
    COMPLETED = auto()
    STOPPED = auto()


@dataclass(frozen=True)
class AccountType:
    """One scanning strategy, e.g. native segwit accounts."""

    type: str
    purpose: int
    gap_limit: int = 1

    def path(self, network: NetworkInfo, index: int) -> List[int]:
        coin = to_hardened(network.slip44)
        if network.type == "ethereum":
            return [to_hardened(self.purpose), coin, to_hardened(0), 0, index]
        if network.type == "ripple":
            return [to_hardened(self.purpose), coin, to_hardened(index), 0, 0]
        return [to_hardened(self.purpose), coin, to_hardened(index)]


def default_account_types(network: NetworkInfo, gap_limit: int = 1) -> Tuple[AccountType, ...]:
    if network.type == "bitcoin" and network.segwit:
        return (
            AccountType("normal", 84, gap_limit),
            AccountType("segwit", 49, gap_limit),
            AccountType("legacy", 44, gap_limit),
        )
    return (AccountType("normal", 44, gap_limit),)


@dataclass(frozen=True)
class DiscoveredAccount:
    type: str
    index: int
    path: Tuple[int, ...]
    descriptor: str
    label: str
    empty: bool
    balance: str = "0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "index": self.index,
            "path": get_serialized_path(self.path),
            "descriptor": self.descriptor,
            "label": self.label,
            "empty": self.empty,
            "balance": self.balance,
        }


@dataclass(frozen=True)
class DiscoveryEvent:
    kind: str
    accounts: Tuple[DiscoveredAccount, ...] = ()
    error: Optional[BaseException] = None


class DiscoveryEngine:
    def __init__(
        self,
        network: NetworkInfo,
        device: Device,
        backend: Backend,
        account_types: Sequence[AccountType] | None = None,
        gap_limit: int = 1,
    ) -> None:
        self.network = network
        self.device = device
        self.backend = backend
        self.account_types: Tuple[AccountType, ...] = tuple(
            account_types or default_account_types(network, gap_limit)
        )
        self.accounts: List[DiscoveredAccount] = []
        self.completed = False
        self.cursor = 0
        self.status = DiscoveryStatus.IDLE
        self._events: "queue.Queue[DiscoveryEvent]" = queue.Queue()
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._closed = False
        self._thread: threading.Thread | None = None

    @property
    def types(self) -> List[str]:
        return [account_type.type for account_type in self.account_types]

    @property
    def listening(self) -> bool:
        """``True`` while events may still be delivered to the consumer."""

        return not self._closed

    def start(self) -> None:
        with self._lock:
            if self.status is not DiscoveryStatus.IDLE:
                raise RuntimeError(f"Discovery already {self.status.name.lower()}")
            self.status = DiscoveryStatus.SCANNING
        logger.info("Starting %s discovery over %s", self.network.shortcut, ", ".join(self.types))
        self._thread = threading.Thread(
            target=self._run, name=f"discovery-{self.network.key}", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop scanning and close the event channel. Safe to call repeatedly."""

        with self._lock:
            self._stop.set()
            if self._closed:
                return
            self._closed = True
            if self.status in {DiscoveryStatus.IDLE, DiscoveryStatus.SCANNING}:
                self.status = DiscoveryStatus.STOPPED
        while True:
            try:
                self._events.get_nowait()
            except queue.Empty:
                break
        logger.info("Discovery for %s stopped", self.network.shortcut)

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the scan thread; ``True`` once it has exited."""

        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def next_event(self, timeout: float | None = None) -> DiscoveryEvent | None:
        if self._closed:
            return None
        try:
            return self._events.get(timeout=timeout)
        except queue.Empty:
            return None

    def snapshot(self) -> Tuple[DiscoveredAccount, ...]:
        with self._lock:
            return tuple(self.accounts)

    def _publish(self, event: DiscoveryEvent) -> None:
        with self._lock:
            if self._closed:
                return
            self._events.put(event)

    def _run(self) -> None:
        try:
            self._scan()
        except Exception as exc:
            logger.error(
                "Discovery for %s failed: %s",
                self.network.shortcut,
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            self._publish(DiscoveryEvent("error", self.snapshot(), error=exc))

    def _scan(self) -> None:
        commands = self.device.get_commands()
        for cursor, account_type in enumerate(self.account_types):
            self.cursor = cursor
            empty_run = 0
            index = 0
            while empty_run < account_type.gap_limit:
                if self._stop.is_set():
                    return
                account = self._discover_account(commands, account_type, index)
                if self._stop.is_set():
                    return
                with self._lock:
                    self.accounts.append(account)
                    accounts = tuple(self.accounts)
                self._publish(DiscoveryEvent("progress", accounts))
                empty_run = empty_run + 1 if account.empty else 0
                index += 1
            logger.debug(
                "Discovery %s/%s finished after %d account(s)",
                self.network.shortcut,
                account_type.type,
                index,
            )

        with self._lock:
            self.completed = True
            if self.status is DiscoveryStatus.SCANNING:
                self.status = DiscoveryStatus.COMPLETED
        self._publish(DiscoveryEvent("complete", self.snapshot()))

    def _discover_account(self, commands, account_type: AccountType, index: int) -> DiscoveredAccount:
        path = account_type.path(self.network, index)
        resolved = commands.get_account_descriptor(self.network, path)
        if resolved is None:
            raise DescriptorNotFound()
        info = self.backend.get_account_info(
            AccountInfoQuery(descriptor=resolved.descriptor, details="basic")
        )
        return DiscoveredAccount(
            type=account_type.type,
            index=index,
            path=tuple(path),
            descriptor=resolved.descriptor,
            label=f"{self.network.label} {get_account_label(path, self.network)}",
            empty=info.empty,
            balance=info.balance,
        )
