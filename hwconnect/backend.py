"""Remote account data backend.

:class:`BlockbookClient` talks to Blockbook-style REST indexers using
``requests``. Methods only depend on the :class:`Backend` protocol, so tests
and alternative indexers can plug in their own implementation.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

import requests
from requests import RequestException, Response

from .config import ConnectConfig
from .errors import UnsupportedBackend
from .networks import NetworkInfo

logger = logging.getLogger(__name__)

EXTENDED_KEY_MIN_LENGTH = 100


class BackendError(RuntimeError):
    """Raised when the backend answers with an error payload."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(f"Backend error: {message}")
        self.message = message
        self.status_code = status_code


class BackendTransportError(RuntimeError):
    """Raised when no backend endpoint is reachable or the reply is malformed."""


@dataclass
class AccountInfoQuery:
    """Backend request for one account."""

    descriptor: str
    details: Optional[str] = None
    tokens: Optional[str] = None
    page: Optional[int] = None
    page_size: Optional[int] = None
    from_height: Optional[int] = None
    to_height: Optional[int] = None
    contract_filter: Optional[str] = None
    gap: Optional[int] = None
    marker: Optional[Dict[str, Any]] = None

    def to_params(self) -> Dict[str, Any]:
        params = {
            "details": self.details,
            "tokens": self.tokens,
            "page": self.page,
            "pageSize": self.page_size,
            "from": self.from_height,
            "to": self.to_height,
            "contract": self.contract_filter,
            "gap": self.gap,
        }
        return {key: value for key, value in params.items() if value is not None}


@dataclass
class Utxo:
    txid: str
    vout: int
    amount: str
    confirmations: int = 0
    height: Optional[int] = None
    address: Optional[str] = None
    path: Optional[str] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Utxo":
        return cls(
            txid=str(data["txid"]),
            vout=int(data.get("vout", 0)),
            amount=str(data.get("value", "0")),
            confirmations=int(data.get("confirmations", 0)),
            height=data.get("height"),
            address=data.get("address"),
            path=data.get("path"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "txid": self.txid,
            "vout": self.vout,
            "amount": self.amount,
            "confirmations": self.confirmations,
            "blockHeight": self.height,
            "address": self.address,
            "path": self.path,
        }


@dataclass
class AccountInfo:
    """Account summary resolved by the backend."""

    descriptor: str
    balance: str = "0"
    available_balance: str = "0"
    empty: bool = True
    history: Dict[str, Any] = field(default_factory=dict)
    page: Optional[Dict[str, int]] = None
    marker: Optional[Dict[str, Any]] = None
    tokens: List[Dict[str, Any]] = field(default_factory=list)
    misc: Dict[str, Any] = field(default_factory=dict)
    utxo: Optional[List[Utxo]] = None
    path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "descriptor": self.descriptor,
            "balance": self.balance,
            "availableBalance": self.available_balance,
            "empty": self.empty,
            "history": dict(self.history),
            "page": self.page,
            "marker": self.marker,
            "tokens": list(self.tokens),
            "misc": dict(self.misc),
            "utxo": [utxo.to_dict() for utxo in self.utxo] if self.utxo is not None else None,
        }


class Backend(Protocol):
    def get_account_info(self, query: AccountInfoQuery) -> AccountInfo:
        """Return the account summary for ``query.descriptor``."""

    def get_account_utxo(self, descriptor: str) -> List[Utxo]:
        """Return the unspent outputs owned by ``descriptor``."""


def is_extended_descriptor(descriptor: str) -> bool:
    return "(" in descriptor or len(descriptor) >= EXTENDED_KEY_MIN_LENGTH


def _sum_amounts(*amounts: Any) -> str:
    try:
        return str(sum(int(str(amount)) for amount in amounts if amount is not None))
    except ValueError:
        return str(amounts[0]) if amounts else "0"


def parse_account_info(descriptor: str, data: Dict[str, Any]) -> AccountInfo:
    """Map a Blockbook account payload onto :class:`AccountInfo`."""

    total = int(data.get("txs", 0) or 0)
    unconfirmed = int(data.get("unconfirmedTxs", 0) or 0)
    balance = str(data.get("balance", "0"))
    history: Dict[str, Any] = {"total": total, "unconfirmed": unconfirmed}
    if "transactions" in data:
        history["transactions"] = data["transactions"]
    if "txids" in data:
        history["txids"] = data["txids"]
    page = None
    if "page" in data:
        page = {
            "index": int(data.get("page", 1)),
            "size": int(data.get("itemsOnPage", 0)),
            "total": int(data.get("totalPages", 0)),
        }
    misc: Dict[str, Any] = {}
    if "nonce" in data:
        misc["nonce"] = data["nonce"]
    return AccountInfo(
        descriptor=descriptor,
        balance=balance,
        available_balance=_sum_amounts(balance, data.get("unconfirmedBalance")),
        empty=total == 0 and unconfirmed == 0,
        history=history,
        page=page,
        tokens=list(data.get("tokens") or []),
        misc=misc,
    )


class BlockbookClient:
    """Blockbook REST client with failover across configured URLs."""

    def __init__(self, urls: Sequence[str], timeout: float = 30.0) -> None:
        if not urls:
            raise ValueError("BlockbookClient requires at least one URL")
        self.urls = [url.rstrip("/") for url in urls]
        self.timeout = timeout
        self._session = requests.Session()

    def get_account_info(self, query: AccountInfoQuery) -> AccountInfo:
        kind = "xpub" if is_extended_descriptor(query.descriptor) else "address"
        if query.marker is not None:
            logger.debug("Blockbook ignores paging marker %s", query.marker)
        data = self._get(f"/api/v2/{kind}/{query.descriptor}", query.to_params())
        if not isinstance(data, dict):
            raise BackendTransportError("Backend returned an unexpected account payload")
        info = parse_account_info(query.descriptor, data)
        info.marker = query.marker
        return info

    def get_account_utxo(self, descriptor: str) -> List[Utxo]:
        data = self._get(f"/api/v2/utxo/{descriptor}", {})
        if not isinstance(data, list):
            raise BackendTransportError("Backend returned an unexpected utxo payload")
        return [Utxo.from_json(entry) for entry in data]

    def _get(self, endpoint: str, params: Dict[str, Any]) -> Any:
        last_error: Exception | None = None
        for url in self.urls:
            logger.debug("Backend GET %s%s params=%s", url, endpoint, params)
            try:
                response = self._session.get(f"{url}{endpoint}", params=params, timeout=self.timeout)
            except RequestException as exc:
                logger.error(
                    "Backend %s unreachable: %s",
                    url,
                    exc,
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                last_error = exc
                continue
            return self._parse(response)
        raise BackendTransportError(
            "No backend endpoint reachable; check the configured backend URLs."
        ) from last_error

    def _parse(self, response: Response) -> Any:
        try:
            body = response.json()
        except ValueError as exc:
            logger.debug("Backend JSON parse error: %s", response.text, exc_info=True)
            raise BackendTransportError("Backend returned malformed JSON") from exc
        if isinstance(body, dict) and body.get("error"):
            error = body["error"]
            message = error.get("message", "unknown") if isinstance(error, dict) else str(error)
            raise BackendError(message, status_code=response.status_code)
        if not response.ok:
            logger.error("Backend HTTP error %s from %s", response.status_code, response.url)
            raise BackendError(f"HTTP {response.status_code}", status_code=response.status_code)
        return body


_BACKENDS: Dict[tuple[str, tuple[str, ...]], BlockbookClient] = {}
_BACKENDS_LOCK = threading.Lock()


def backend_urls(network: NetworkInfo, config: ConnectConfig | None = None) -> list[str]:
    if config is not None and config.backends.get(network.key):
        return list(config.backends[network.key])
    return list(network.blockchain_link)


def ensure_backend_supported(network: NetworkInfo, config: ConnectConfig | None = None) -> None:
    if not backend_urls(network, config):
        raise UnsupportedBackend(network.name)


def init_backend(network: NetworkInfo, config: ConnectConfig | None = None) -> BlockbookClient:
    """Return the shared backend client for ``network``."""

    urls = backend_urls(network, config)
    if not urls:
        raise UnsupportedBackend(network.name)
    key = (network.key, tuple(urls))
    with _BACKENDS_LOCK:
        client = _BACKENDS.get(key)
        if client is None:
            timeout = config.http_timeout if config is not None else 30.0
            client = BlockbookClient(urls, timeout=timeout)
            _BACKENDS[key] = client
            logger.info("Initialised %s backend with %d endpoint(s)", network.shortcut, len(urls))
    return client


def clear_backend_cache() -> None:
    with _BACKENDS_LOCK:
        _BACKENDS.clear()
