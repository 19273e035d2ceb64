import textwrap
from pathlib import Path

import pytest

from hwconnect.errors import ValidationError
from hwconnect.networks import (
    FirmwareRange,
    NetworkRegistry,
    NetworkRegistryError,
    VersionRange,
    fix_network_for_path,
    get_bitcoin_network,
    get_firmware_range,
    get_network,
    validate_coin_path,
)
from hwconnect.params import Param, normalize_bundle, validate_params
from hwconnect.paths import (
    HD_HARDENED,
    get_account_label,
    get_label,
    get_serialized_path,
    validate_path,
)


def test_validate_path_accepts_strings_and_lists() -> None:
    assert validate_path("m/44'/0'/0'/0/1") == [44 | HD_HARDENED, HD_HARDENED, HD_HARDENED, 0, 1]
    assert validate_path("m/84h/0H/0h") == [84 | HD_HARDENED, HD_HARDENED, HD_HARDENED]
    assert validate_path([1, 2, 3], 3) == [1, 2, 3]
    assert validate_path("m/49'/0'/0'/0/0", base=True) == [49 | HD_HARDENED, HD_HARDENED, HD_HARDENED]


@pytest.mark.parametrize("raw", ["m/44'/0'", "m/44'/x/0", [44, -1, 0], [44, 0, 2**32], 44, "m"])
def test_validate_path_rejects_bad_input(raw) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_path(raw, 3)
    assert excinfo.value.field == "path"


def test_serialized_path_round_trip() -> None:
    assert get_serialized_path(validate_path("m/44'/60'/0'/0/7")) == "m/44'/60'/0'/0/7"


def test_labels() -> None:
    btc = get_network("btc")
    assert get_label("Export #NETWORK address", btc) == "Export Bitcoin address"
    assert get_account_label(validate_path("m/44'/0'/4'"), btc) == "legacy account #5"
    assert get_account_label(validate_path("m/84'/0'/0'"), btc) == "account #1"
    assert get_account_label(validate_path("m/44'/60'/0'/0/2"), get_network("eth")) == "account #3"
    assert get_account_label(validate_path("m/44'/144'/1'/0/0"), get_network("xrp")) == "account #2"


def test_network_lookup() -> None:
    assert get_network("Bitcoin").shortcut == "BTC"
    assert get_network("LTC").slip44 == 2
    assert get_bitcoin_network("eth") is None
    assert get_bitcoin_network(validate_path("m/44'/3'/0'")).shortcut == "DOGE"
    assert get_bitcoin_network(validate_path("m/44'/60'/0'")) is None


def test_validate_coin_path() -> None:
    validate_coin_path(get_network("btc"), validate_path("m/84'/0'/0'"))
    with pytest.raises(ValidationError):
        validate_coin_path(get_network("btc"), validate_path("m/84'/1'/0'"))


def test_fix_network_for_path_sets_script_type() -> None:
    btc = get_network("btc")
    assert fix_network_for_path(btc, validate_path("m/49'/0'/0'")).script_type == "p2sh-p2wpkh"
    assert fix_network_for_path(btc, validate_path("m/86'/0'/0'")).script_type == "p2tr"
    doge = get_network("doge")
    assert fix_network_for_path(doge, validate_path("m/84'/3'/0'")).script_type == "p2pkh"


def test_firmware_range_narrowing() -> None:
    narrowed = get_firmware_range("getAccountInfo", get_network("xrp"))
    assert narrowed.for_model("1").is_satisfiable() is False
    assert narrowed.for_model("2").min == (2, 1, 0)

    impossible = FirmwareRange({"2": VersionRange(min=(2, 0, 0), max=(2, 0, 9))}).narrow(
        FirmwareRange({"2": VersionRange(min=(2, 1, 0))})
    )
    assert impossible.is_satisfiable() is False


def test_registry_loads_yaml(tmp_path: Path) -> None:
    networks_file = tmp_path / "coins.yaml"
    networks_file.write_text(
        textwrap.dedent(
            """
            networks:
              - shortcut: tdgb
                name: DigiByte Testnet
                slip44: 1
                segwit: true
                blockchain_link: https://tdgb.example.com
                support:
                  "1": false
                  "2": 2.1.0
            """
        )
    )
    registry = NetworkRegistry()
    registry.load_yaml(networks_file)

    network = registry.get("TDGB")
    assert network.label == "DigiByte Testnet"
    assert network.blockchain_link == ("https://tdgb.example.com",)
    assert network.support == {"1": None, "2": "2.1.0"}


def test_registry_rejects_malformed_yaml(tmp_path: Path) -> None:
    bad = tmp_path / "bad.yaml"
    bad.write_text("networks:\n  - name: missing slip44\n")
    with pytest.raises(NetworkRegistryError):
        NetworkRegistry().load_yaml(bad)


def test_validate_params_types() -> None:
    schema = [Param("coin", "string", required=True), Param("page", "number"), Param("flag", "boolean")]
    validate_params({"coin": "btc", "page": 1}, schema)
    with pytest.raises(ValidationError) as excinfo:
        validate_params({"coin": "btc", "page": True}, schema)
    assert excinfo.value.field == "page"
    with pytest.raises(ValidationError):
        validate_params({"coin": ""}, schema)


def test_normalize_bundle_wraps_single_payload() -> None:
    items, options = normalize_bundle({"path": "m/44'/0'/0'", "useEventListener": True})
    assert items == [{"path": "m/44'/0'/0'", "useEventListener": True}]
    assert options == {"useEventListener": True}

    items, options = normalize_bundle({"bundle": [{"path": "a"}], "useEventListener": False})
    assert items == [{"path": "a"}]
    assert options == {"useEventListener": False}
