"""Command-line interface for hwconnect.

Only backend-side operations are exposed here: the device transport is
provided by integrators, so commands that need a device are left to
library callers.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from typing import Any, Sequence

from .backend import AccountInfo, BackendError, BackendTransportError, backend_urls
from .config import ConfigurationError, ConnectConfig, load_connect_config, set_default_config_path
from .core import build_registry, call
from .errors import ConnectError
from .networks import NetworkRegistryError
from .ui import BUNDLE_PROGRESS, UiChannel, UiMessage

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class CLIError(RuntimeError):
    """Raised when CLI arguments are invalid."""


class ConsoleSurface:
    """UI surface printing progress messages to stderr."""

    def __init__(self, stream: Any = None) -> None:
        self.stream = stream or sys.stderr

    def __call__(self, message: UiMessage) -> None:
        if message.type == BUNDLE_PROGRESS:
            response = message.payload.get("response")
            descriptor = getattr(response, "descriptor", "?")
            print(f"[{message.payload.get('progress')}] {descriptor}", file=self.stream)
        else:
            logger.debug("Unhandled UI message %s", message.type)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="hwconnect CLI")
    parser.add_argument("--config", default=None, help="Path to a hwconnect YAML config file")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("networks", help="list known networks and their backends")
    subparsers.add_parser("config", help="print the resolved configuration")

    info_parser = subparsers.add_parser(
        "account-info", help="query the backend for one or more account descriptors"
    )
    info_parser.add_argument("--coin", required=True, help="Coin shortcut, e.g. btc")
    info_parser.add_argument(
        "--descriptor",
        action="append",
        required=True,
        help="Account descriptor (xpub or address); repeat for a bundle",
    )
    info_parser.add_argument(
        "--details",
        choices=["basic", "tokens", "tokenBalances", "txids", "txs"],
        default=None,
        help="Level of detail requested from the backend",
    )
    info_parser.add_argument("--tokens", default=None, help="Token filter (nonzero, used, derived)")
    info_parser.add_argument("--page", type=int, default=None)
    info_parser.add_argument("--page-size", type=int, default=None)
    info_parser.add_argument("--from", dest="from_height", type=int, default=None)
    info_parser.add_argument("--to", dest="to_height", type=int, default=None)
    info_parser.add_argument("--contract-filter", default=None)
    info_parser.add_argument("--gap", type=int, default=None)
    return parser


def _account_payload(args: argparse.Namespace, descriptor: str) -> dict[str, Any]:
    fields = {
        "coin": args.coin,
        "descriptor": descriptor,
        "details": args.details,
        "tokens": args.tokens,
        "page": args.page,
        "pageSize": args.page_size,
        "from": args.from_height,
        "to": args.to_height,
        "contractFilter": args.contract_filter,
        "gap": args.gap,
    }
    return {key: value for key, value in fields.items() if value is not None}


def _to_jsonable(result: Any) -> Any:
    if isinstance(result, list):
        return [_to_jsonable(item) for item in result]
    if isinstance(result, AccountInfo):
        return result.to_dict()
    return result


def cmd_account_info(args: argparse.Namespace, config: ConnectConfig) -> None:
    descriptors = [descriptor.strip() for descriptor in args.descriptor if descriptor.strip()]
    if not descriptors:
        raise CLIError("at least one non-empty --descriptor is required")
    if len(descriptors) == 1:
        payload: dict[str, Any] = _account_payload(args, descriptors[0])
    else:
        payload = {"bundle": [_account_payload(args, descriptor) for descriptor in descriptors]}
    ui = UiChannel(ConsoleSurface())
    result = call("getAccountInfo", payload, ui=ui, config=config)
    print(json.dumps(_to_jsonable(result), indent=2))


def cmd_networks(config: ConnectConfig) -> None:
    registry = build_registry(config)
    for network in registry.all():
        urls = backend_urls(network, config)
        backend = urls[0] if urls else "-"
        print(f"{network.shortcut:<6} {network.label:<18} {network.type:<9} {network.slip44:<5} {backend}")


def cmd_config(config: ConnectConfig) -> None:
    data = asdict(config)
    data["coins_file"] = str(config.coins_file) if config.coins_file else None
    print(json.dumps(data, indent=2))


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    try:
        if args.config:
            set_default_config_path(args.config)
        config = load_connect_config()
        if args.command == "networks":
            cmd_networks(config)
        elif args.command == "config":
            cmd_config(config)
        elif args.command == "account-info":
            cmd_account_info(args, config)
        else:  # pragma: no cover - argparse enforces choices
            raise CLIError(f"Unknown command: {args.command}")
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        logger.info("Interrupted by user")
    except (
        CLIError,
        ConfigurationError,
        ConnectError,
        BackendError,
        BackendTransportError,
        NetworkRegistryError,
    ) as exc:
        parser.exit(1, f"error: {exc}\n")


if __name__ == "__main__":
    main(sys.argv[1:])
