"""Coin and network metadata used to resolve work items.

The registry ships a small set of well-known networks and can be extended
from a YAML file (see :func:`NetworkRegistry.load_yaml`). Lookups never touch
the device or the backend.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import yaml

from .errors import ValidationError
from .paths import from_hardened, to_hardened

logger = logging.getLogger(__name__)

DEVICE_MODELS = ("1", "2")


class NetworkRegistryError(RuntimeError):
    """Raised when a networks file cannot be loaded."""


def parse_version(raw: str | Sequence[int]) -> tuple[int, int, int]:
    if isinstance(raw, str):
        pieces = raw.strip().split(".")
    else:
        pieces = [str(piece) for piece in raw]
    try:
        numbers = [int(piece) for piece in pieces]
    except ValueError as exc:
        raise ValueError(f"Invalid firmware version: {raw}") from exc
    numbers = (numbers + [0, 0, 0])[:3]
    return numbers[0], numbers[1], numbers[2]


@dataclass(frozen=True)
class NetworkInfo:
    """Resolved coin descriptor attached to every work item."""

    name: str
    shortcut: str
    label: str
    type: str
    slip44: int
    segwit: bool = False
    bech32_prefix: str | None = None
    script_type: str = "p2pkh"
    decimals: int = 8
    blockchain_link: tuple[str, ...] = ()
    # minimum firmware per device model, ``None`` when the model lacks support
    support: Mapping[str, str | None] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return self.shortcut.lower()


@dataclass(frozen=True)
class VersionRange:
    min: tuple[int, int, int] = (1, 0, 0)
    max: tuple[int, int, int] | None = None
    supported: bool = True

    def narrow(self, other: "VersionRange") -> "VersionRange":
        if self.max is None:
            upper = other.max
        elif other.max is None:
            upper = self.max
        else:
            upper = min(self.max, other.max)
        return VersionRange(
            min=max(self.min, other.min),
            max=upper,
            supported=self.supported and other.supported,
        )

    def is_satisfiable(self) -> bool:
        if not self.supported:
            return False
        return self.max is None or self.min <= self.max


@dataclass(frozen=True)
class FirmwareRange:
    """Per-model firmware requirements of one method invocation."""

    models: Mapping[str, VersionRange] = field(
        default_factory=lambda: {model: VersionRange() for model in DEVICE_MODELS}
    )

    def narrow(self, other: "FirmwareRange") -> "FirmwareRange":
        merged = dict(self.models)
        for model, version_range in other.models.items():
            current = merged.get(model)
            merged[model] = version_range if current is None else current.narrow(version_range)
        return FirmwareRange(models=merged)

    def for_model(self, model: str) -> VersionRange:
        return self.models.get(model, VersionRange())

    def is_satisfiable(self) -> bool:
        return any(version_range.is_satisfiable() for version_range in self.models.values())


def get_firmware_range(
    method: str, network: NetworkInfo, current: FirmwareRange | None = None
) -> FirmwareRange:
    """Narrow ``current`` with the firmware ``network`` needs for ``method``."""

    current = current or FirmwareRange()
    coin_range: dict[str, VersionRange] = {}
    for model in DEVICE_MODELS:
        if model not in network.support:
            continue
        minimum = network.support[model]
        if minimum is None:
            coin_range[model] = VersionRange(supported=False)
        else:
            coin_range[model] = VersionRange(min=parse_version(minimum))
    narrowed = current.narrow(FirmwareRange(models=coin_range))
    if not narrowed.is_satisfiable():
        logger.debug("%s: firmware range for %s is not satisfiable", method, network.shortcut)
    return narrowed


def _trezor_backends(*hosts: str) -> tuple[str, ...]:
    return tuple(f"https://{host}.trezor.io" for host in hosts)


DEFAULT_NETWORKS: tuple[NetworkInfo, ...] = (
    NetworkInfo(
        name="Bitcoin",
        shortcut="BTC",
        label="Bitcoin",
        type="bitcoin",
        slip44=0,
        segwit=True,
        bech32_prefix="bc",
        blockchain_link=_trezor_backends("btc1", "btc2", "btc3", "btc4", "btc5"),
        support={"1": "1.5.2", "2": "2.0.5"},
    ),
    NetworkInfo(
        name="Testnet",
        shortcut="TEST",
        label="Testnet",
        type="bitcoin",
        slip44=1,
        segwit=True,
        bech32_prefix="tb",
        blockchain_link=_trezor_backends("tbtc1", "tbtc2"),
        support={"1": "1.5.2", "2": "2.0.5"},
    ),
    NetworkInfo(
        name="Litecoin",
        shortcut="LTC",
        label="Litecoin",
        type="bitcoin",
        slip44=2,
        segwit=True,
        bech32_prefix="ltc",
        blockchain_link=_trezor_backends("ltc1", "ltc2", "ltc3"),
        support={"1": "1.5.2", "2": "2.0.5"},
    ),
    NetworkInfo(
        name="Dogecoin",
        shortcut="DOGE",
        label="Dogecoin",
        type="bitcoin",
        slip44=3,
        blockchain_link=_trezor_backends("doge1", "doge2"),
        support={"1": "1.5.2", "2": "2.0.5"},
    ),
    NetworkInfo(
        name="DigiByte",
        shortcut="DGB",
        label="DigiByte",
        type="bitcoin",
        slip44=20,
        segwit=True,
        bech32_prefix="dgb",
        blockchain_link=_trezor_backends("dgb1", "dgb2"),
        support={"1": "1.6.3", "2": "2.0.5"},
    ),
    NetworkInfo(
        name="Ethereum",
        shortcut="ETH",
        label="Ethereum",
        type="ethereum",
        slip44=60,
        decimals=18,
        blockchain_link=_trezor_backends("eth1", "eth2"),
        support={"1": "1.6.2", "2": "2.0.7"},
    ),
    NetworkInfo(
        name="Ethereum Classic",
        shortcut="ETC",
        label="Ethereum Classic",
        type="ethereum",
        slip44=61,
        decimals=18,
        blockchain_link=_trezor_backends("etc1", "etc2"),
        support={"1": "1.6.2", "2": "2.0.7"},
    ),
    NetworkInfo(
        name="Ripple",
        shortcut="XRP",
        label="Ripple",
        type="ripple",
        slip44=144,
        decimals=6,
        support={"1": None, "2": "2.1.0"},
    ),
)


class NetworkRegistry:
    """Lookup table of known networks keyed by shortcut."""

    def __init__(self, networks: Iterable[NetworkInfo] = DEFAULT_NETWORKS) -> None:
        self._networks: dict[str, NetworkInfo] = {}
        for network in networks:
            self.register(network)

    def register(self, network: NetworkInfo) -> None:
        self._networks[network.key] = network

    def all(self) -> list[NetworkInfo]:
        return list(self._networks.values())

    def get(self, coin: str) -> NetworkInfo | None:
        """Resolve ``coin`` by shortcut, name or label (case-insensitive)."""

        needle = coin.strip().lower()
        network = self._networks.get(needle)
        if network is not None:
            return network
        for candidate in self._networks.values():
            if needle in {candidate.name.lower(), candidate.label.lower()}:
                return candidate
        return None

    def for_path(self, path: Sequence[int], network_type: str | None = None) -> NetworkInfo | None:
        """Infer a network from the coin-type level (``path[1]``) of ``path``."""

        if len(path) < 2:
            return None
        slip44 = from_hardened(path[1])
        for candidate in self._networks.values():
            if network_type is not None and candidate.type != network_type:
                continue
            if candidate.slip44 == slip44:
                return candidate
        return None

    def load_yaml(self, path: str | Path) -> None:
        """Register every network listed under ``networks:`` in ``path``."""

        path = Path(path).expanduser()
        if not path.exists():
            raise NetworkRegistryError(f"Networks file does not exist: {path}")
        try:
            data = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
            raise NetworkRegistryError(f"Invalid YAML in networks file {path}: {exc}") from exc
        entries = data.get("networks") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise NetworkRegistryError(f"Expected {path} to contain a 'networks' list")
        for entry in entries:
            self.register(_network_from_mapping(entry, source=str(path)))
        logger.debug("Loaded %d networks from %s", len(entries), path)


def _network_from_mapping(entry: Any, *, source: str) -> NetworkInfo:
    if not isinstance(entry, dict):
        raise NetworkRegistryError(f"Network entries in {source} must be mappings")
    try:
        shortcut = str(entry["shortcut"])
        slip44 = int(entry["slip44"])
    except (KeyError, TypeError, ValueError) as exc:
        raise NetworkRegistryError(
            f"Network entry in {source} requires 'shortcut' and integer 'slip44'"
        ) from exc
    name = str(entry.get("name", shortcut))
    support_raw = entry.get("support") or {}
    if not isinstance(support_raw, dict):
        raise NetworkRegistryError(f"'support' for {shortcut} in {source} must be a mapping")
    support = {
        str(model): (None if value in (None, False) else str(value))
        for model, value in support_raw.items()
    }
    links = entry.get("blockchain_link") or []
    if isinstance(links, str):
        links = [links]
    return NetworkInfo(
        name=name,
        shortcut=shortcut.upper(),
        label=str(entry.get("label", name)),
        type=str(entry.get("type", "bitcoin")),
        slip44=slip44,
        segwit=bool(entry.get("segwit", False)),
        bech32_prefix=entry.get("bech32_prefix"),
        decimals=int(entry.get("decimals", 8)),
        blockchain_link=tuple(str(link) for link in links),
        support=support,
    )


DEFAULT_REGISTRY = NetworkRegistry()


def get_network(coin: str, registry: NetworkRegistry | None = None) -> NetworkInfo | None:
    return (registry or DEFAULT_REGISTRY).get(coin)


def get_bitcoin_network(
    coin_or_path: str | Sequence[int], registry: NetworkRegistry | None = None
) -> NetworkInfo | None:
    """Resolve a bitcoin-like network from a coin name or a derivation path."""

    registry = registry or DEFAULT_REGISTRY
    if isinstance(coin_or_path, str):
        network = registry.get(coin_or_path)
        if network is None or network.type != "bitcoin":
            return None
        return network
    return registry.for_path(coin_or_path, network_type="bitcoin")


def validate_coin_path(network: NetworkInfo, path: Sequence[int]) -> None:
    """Ensure the coin-type level of ``path`` belongs to ``network``."""

    if len(path) < 2 or path[1] != to_hardened(network.slip44):
        raise ValidationError('Parameters "path" and "coin" do not match', field="path")


def fix_network_for_path(network: NetworkInfo, path: Sequence[int]) -> NetworkInfo:
    """Set the script type implied by the purpose level of ``path``."""

    if network.type != "bitcoin" or not path:
        return network
    purpose = path[0]
    if network.segwit and purpose == to_hardened(84):
        script_type = "p2wpkh"
    elif network.segwit and purpose == to_hardened(49):
        script_type = "p2sh-p2wpkh"
    elif network.segwit and purpose == to_hardened(86):
        script_type = "p2tr"
    else:
        script_type = "p2pkh"
    if script_type == network.script_type:
        return network
    return replace(network, script_type=script_type)
