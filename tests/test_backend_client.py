from __future__ import annotations

from typing import Any

import pytest
import requests

from hwconnect.backend import (
    AccountInfoQuery,
    BackendError,
    BackendTransportError,
    BlockbookClient,
    clear_backend_cache,
    init_backend,
    parse_account_info,
)
from hwconnect.config import ConnectConfig
from hwconnect.errors import UnsupportedBackend
from hwconnect.networks import get_network

XPUB = "zpub" + "6r" * 50


class FakeResponse:
    def __init__(self, body: Any, status_code: int = 200) -> None:
        self._body = body
        self.status_code = status_code
        self.ok = status_code < 400
        self.text = str(body)
        self.url = "https://fake"

    def json(self) -> Any:
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeSession:
    def __init__(self, replies: dict[str, Any]) -> None:
        self.replies = replies
        self.calls: list[tuple[str, dict]] = []

    def get(self, url: str, params=None, timeout=None):
        self.calls.append((url, dict(params or {})))
        for prefix, reply in self.replies.items():
            if url.startswith(prefix):
                if isinstance(reply, Exception):
                    raise reply
                return reply
        raise AssertionError(f"unexpected url {url}")


def _client(replies: dict[str, Any], urls=("https://bb1.example.com",)) -> tuple[BlockbookClient, FakeSession]:
    client = BlockbookClient(list(urls))
    session = FakeSession(replies)
    client._session = session
    return client, session


@pytest.fixture(autouse=True)
def _fresh_backend_cache():
    clear_backend_cache()
    yield
    clear_backend_cache()


def test_extended_key_uses_xpub_endpoint() -> None:
    body = {"balance": "5000", "unconfirmedBalance": "-1000", "txs": 3, "unconfirmedTxs": 1}
    client, session = _client({"https://bb1.example.com": FakeResponse(body)})

    info = client.get_account_info(AccountInfoQuery(descriptor=XPUB, details="txs", page=2))

    url, params = session.calls[0]
    assert url == f"https://bb1.example.com/api/v2/xpub/{XPUB}"
    assert params == {"details": "txs", "page": 2}
    assert info.balance == "5000"
    assert info.available_balance == "4000"
    assert info.empty is False
    assert info.history == {"total": 3, "unconfirmed": 1}


def test_plain_address_uses_address_endpoint() -> None:
    client, session = _client({"https://bb1.example.com": FakeResponse({"balance": "0", "txs": 0})})

    info = client.get_account_info(AccountInfoQuery(descriptor="0xabc"))

    assert session.calls[0][0] == "https://bb1.example.com/api/v2/address/0xabc"
    assert info.empty is True


def test_failover_to_next_url() -> None:
    client, session = _client(
        {
            "https://down.example.com": requests.ConnectionError("refused"),
            "https://up.example.com": FakeResponse([{"txid": "aa", "vout": 0, "value": "10"}]),
        },
        urls=("https://down.example.com/", "https://up.example.com"),
    )

    utxo = client.get_account_utxo(XPUB)

    assert [call[0].split("/api")[0] for call in session.calls] == [
        "https://down.example.com",
        "https://up.example.com",
    ]
    assert utxo[0].amount == "10"


def test_all_urls_down_raises_transport_error() -> None:
    client, _ = _client({"https://bb1.example.com": requests.Timeout("slow")})
    with pytest.raises(BackendTransportError):
        client.get_account_info(AccountInfoQuery(descriptor="addr"))


def test_error_payload_raises_backend_error() -> None:
    client, _ = _client(
        {"https://bb1.example.com": FakeResponse({"error": "Invalid address"}, status_code=400)}
    )
    with pytest.raises(BackendError) as excinfo:
        client.get_account_info(AccountInfoQuery(descriptor="addr"))
    assert excinfo.value.message == "Invalid address"
    assert excinfo.value.status_code == 400


def test_malformed_json_raises_transport_error() -> None:
    client, _ = _client({"https://bb1.example.com": FakeResponse(ValueError("not json"))})
    with pytest.raises(BackendTransportError):
        client.get_account_info(AccountInfoQuery(descriptor="addr"))


def test_parse_account_info_pages_and_nonce() -> None:
    info = parse_account_info(
        "0xabc",
        {"balance": "1", "txs": 1, "page": 1, "itemsOnPage": 25, "totalPages": 4, "nonce": "7"},
    )
    assert info.page == {"index": 1, "size": 25, "total": 4}
    assert info.misc == {"nonce": "7"}


def test_init_backend_is_cached_per_network_and_urls() -> None:
    btc = get_network("btc")
    first = init_backend(btc)
    assert init_backend(btc) is first

    config = ConnectConfig(backends={"btc": ["https://mine.example.com"]}, http_timeout=3)
    custom = init_backend(btc, config)
    assert custom is not first
    assert custom.urls == ["https://mine.example.com"]
    assert custom.timeout == 3


def test_init_backend_without_urls_is_unsupported() -> None:
    with pytest.raises(UnsupportedBackend):
        init_backend(get_network("xrp"))
