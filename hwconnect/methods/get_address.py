"""Export one or more bitcoin-like addresses from the device."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from ..device import Address
from ..errors import AddressMismatch, NoNetworkInfo
from ..networks import (
    NetworkInfo,
    fix_network_for_path,
    get_bitcoin_network,
    get_firmware_range,
    validate_coin_path,
)
from ..params import Param, normalize_bundle, validate_params
from ..paths import get_label, get_serialized_path, validate_path
from ..ui import BUNDLE_PROGRESS, UiMessage
from .base import AbstractMethod, Bundle, ConfirmationState, MethodResult, shape_result

logger = logging.getLogger(__name__)

ITEM_SCHEMA = (
    Param("path", required=True),
    Param("coin", "string"),
    Param("address", "string"),
    Param("showOnTrezor", "boolean"),
    Param("crossChain", "boolean"),
)


@dataclass
class AddressRequest:
    path: List[int]
    network: NetworkInfo
    address: Optional[str] = None
    show_on_device: bool = True


class GetAddress(AbstractMethod):
    name = "getAddress"

    def __init__(self, payload: Mapping[str, Any], **kwargs: Any) -> None:
        super().__init__(payload, **kwargs)
        self.progress = 0

        raw_items, options = normalize_bundle(payload)
        validate_params(options, [Param("useEventListener", "boolean")])

        requests = []
        for raw in raw_items:
            requests.append(self._build_request(raw))
        self.params: Bundle[AddressRequest] = Bundle(requests)

        use_event_listener = bool(
            options.get("useEventListener")
            and self.params.is_single
            and isinstance(self.params[0].address, str)
            and self.params[0].show_on_device
        )
        if use_event_listener:
            self.confirmation_state = ConfirmationState.AUTO_CONFIRMED
        self.use_ui = not use_event_listener
        self.info = self._summary_label()

    def _build_request(self, raw: Mapping[str, Any]) -> AddressRequest:
        validate_params(raw, ITEM_SCHEMA)
        path = validate_path(raw["path"], 3)

        network: NetworkInfo | None = None
        if raw.get("coin"):
            network = get_bitcoin_network(raw["coin"], self.registry)
        if network is not None and not raw.get("crossChain"):
            validate_coin_path(network, path)
        elif network is None:
            network = get_bitcoin_network(path, self.registry)
        if network is None:
            raise NoNetworkInfo()

        self.firmware_range = get_firmware_range(self.name, network, self.firmware_range)
        network = fix_network_for_path(network, path)

        show_on_device = raw.get("showOnTrezor")
        return AddressRequest(
            path=path,
            network=network,
            address=raw.get("address"),
            show_on_device=True if show_on_device is None else show_on_device,
        )

    def _summary_label(self) -> str:
        if self.params.is_single:
            return get_label("Export #NETWORK address", self.params[0].network)
        unique: Dict[str, NetworkInfo] = {}
        for request in self.params:
            unique.setdefault(request.network.key, request.network)
        if len(unique) == 1:
            return get_label("Export multiple #NETWORK addresses", next(iter(unique.values())))
        return "Export multiple addresses"

    def get_button_request_data(self, code: str) -> Dict[str, Any] | None:
        if code != "ButtonRequest_Address" or self.progress >= len(self.params):
            return None
        request = self.params[self.progress]
        return {
            "type": "address",
            "serialized_path": get_serialized_path(request.path),
            "address": request.address or "not-set",
        }

    def _confirm(self) -> ConfirmationState:
        if self.confirmation_state is ConfirmationState.AUTO_CONFIRMED:
            return ConfirmationState.AUTO_CONFIRMED
        return self._request_confirmation({"view": "export-address", "label": self.info})

    def run(self) -> MethodResult:
        commands = self.device.get_commands()
        bundled = not self.params.is_single
        responses: List[Address] = []

        for index, request in enumerate(self.params):
            self.check_cancelled()
            # a silent query guards the displayed address against the caller's expectation
            if request.show_on_device:
                silent = commands.get_address(request.path, request.network, False)
                if isinstance(request.address, str):
                    if request.address != silent.address:
                        logger.error(
                            "Address mismatch at %s: expected %s, device %s",
                            get_serialized_path(request.path),
                            request.address,
                            silent.address,
                        )
                        raise AddressMismatch(request.address, silent.address)
                else:
                    request.address = silent.address

            response = commands.get_address(request.path, request.network, request.show_on_device)
            responses.append(response)

            if bundled:
                self.post_message(
                    UiMessage(BUNDLE_PROGRESS, {"progress": index, "response": response})
                )
            self.progress += 1

        return shape_result(bundled, responses)
