"""Export account info from the backend, discovering accounts when needed."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..backend import AccountInfo, AccountInfoQuery, Backend, ensure_backend_supported, init_backend
from ..discovery import DiscoveryEngine
from ..errors import (
    CrossNetworkDiscoveryUnsupported,
    DescriptorNotFound,
    DeviceError,
    MethodCancelled,
    NoNetworkInfo,
    ValidationError,
)
from ..networks import NetworkInfo, get_firmware_range, get_network
from ..params import Param, normalize_bundle, validate_params
from ..paths import get_account_label, get_serialized_path, validate_path
from ..ui import BUNDLE_PROGRESS, RECEIVE_ACCOUNT, SELECT_ACCOUNT, ResponseWaiter, UiMessage, UiResponse
from .base import AbstractMethod, Bundle, ConfirmationState, MethodResult, SingleResult, shape_result

logger = logging.getLogger(__name__)

ITEM_SCHEMA = (
    Param("coin", "string", required=True),
    Param("descriptor", "string"),
    Param("path"),
    Param("details", "string"),
    Param("tokens", "string"),
    Param("page", "number"),
    Param("pageSize", "number"),
    Param("from", "number"),
    Param("to", "number"),
    Param("contractFilter", "string"),
    Param("gap", "number"),
    Param("marker", "object"),
)

BackendFactory = Callable[[NetworkInfo], Backend]


@dataclass
class AccountInfoRequest:
    network: NetworkInfo
    path: Optional[List[int]] = None
    descriptor: Optional[str] = None
    details: Optional[str] = None
    tokens: Optional[str] = None
    page: Optional[int] = None
    page_size: Optional[int] = None
    from_height: Optional[int] = None
    to_height: Optional[int] = None
    contract_filter: Optional[str] = None
    gap: Optional[int] = None
    marker: Optional[Dict[str, Any]] = None

    @property
    def needs_discovery(self) -> bool:
        return self.path is None and self.descriptor is None

    @property
    def needs_utxo(self) -> bool:
        return (
            self.network.type == "bitcoin"
            and isinstance(self.details, str)
            and self.details != "basic"
        )

    def query(self, descriptor: str) -> AccountInfoQuery:
        return AccountInfoQuery(
            descriptor=descriptor,
            details=self.details,
            tokens=self.tokens,
            page=self.page,
            page_size=self.page_size,
            from_height=self.from_height,
            to_height=self.to_height,
            contract_filter=self.contract_filter,
            gap=self.gap,
            marker=dict(self.marker) if self.marker is not None else None,
        )


class GetAccountInfo(AbstractMethod):
    name = "getAccountInfo"

    def __init__(
        self,
        payload: Mapping[str, Any],
        *,
        backend_factory: BackendFactory | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(payload, **kwargs)
        self.info = "Export account info"
        self.discovery: DiscoveryEngine | None = None
        self._selection_waiter: ResponseWaiter | None = None
        self._backend_factory = backend_factory or self._default_backend

        raw_items, _ = normalize_bundle(payload)
        will_use_device = False
        requests = []
        for raw in raw_items:
            request = self._build_request(raw)
            if request.path is not None and request.descriptor is None:
                will_use_device = True
            if request.needs_discovery:
                if len(raw_items) > 1:
                    raise CrossNetworkDiscoveryUnsupported()
                will_use_device = True
            requests.append(request)
        self.params: Bundle[AccountInfoRequest] = Bundle(requests)

        self.use_device = will_use_device
        self.use_ui = will_use_device

    def _default_backend(self, network: NetworkInfo) -> Backend:
        return init_backend(network, self.config)

    def _build_request(self, raw: Mapping[str, Any]) -> AccountInfoRequest:
        validate_params(raw, ITEM_SCHEMA)
        network = get_network(raw["coin"], self.registry)
        if network is None:
            raise NoNetworkInfo()
        ensure_backend_supported(network, self.config)

        path = validate_path(raw["path"], 3) if raw.get("path") else None
        self.firmware_range = get_firmware_range(self.name, network, self.firmware_range)
        return AccountInfoRequest(
            network=network,
            path=path,
            descriptor=raw.get("descriptor"),
            details=raw.get("details"),
            tokens=raw.get("tokens"),
            page=raw.get("page"),
            page_size=raw.get("pageSize"),
            from_height=raw.get("from"),
            to_height=raw.get("to"),
            contract_filter=raw.get("contractFilter"),
            gap=raw.get("gap"),
            marker=raw.get("marker"),
        )

    def _confirm(self) -> ConfirmationState:
        if self.params.is_single and self.params[0].needs_discovery:
            network = self.params[0].network
            return self._request_confirmation(
                {
                    "view": "export-account-info",
                    "label": f"Export info for {network.label} account of your selection",
                    "custom_confirm_button": {
                        "label": "Proceed to account selection",
                        "className": "not-empty-css",
                    },
                }
            )
        return self._request_confirmation(
            {"view": "export-account-info", "label": f"Export info for: {self._accounts_summary()}"}
        )

    def _accounts_summary(self) -> str:
        grouped: Dict[str, List[str]] = {}
        for request in self.params:
            network = request.network
            if request.descriptor is not None:
                value = request.descriptor
            else:
                value = get_account_label(request.path or [], network)
            grouped.setdefault(network.label, []).append(value)
        parts = [f"{label} {value}" for label, values in grouped.items() for value in values]
        return ", ".join(parts)

    def run(self) -> MethodResult:
        if self.params.is_single and self.params[0].needs_discovery:
            return SingleResult(self.discover(self.params[0]))

        bundled = not self.params.is_single
        responses: List[AccountInfo] = []
        for index, request in enumerate(self.params):
            self.check_cancelled()
            descriptor = request.descriptor
            if request.path is not None and descriptor is None:
                if self.device is None:
                    raise DeviceError("Device not connected", code="Device_NotConnected")
                resolved = self.device.get_commands().get_account_descriptor(
                    request.network, request.path
                )
                if resolved is not None:
                    descriptor = resolved.descriptor
            if descriptor is None:
                raise DescriptorNotFound()

            info = self._fetch_account(request, descriptor)
            if request.path is not None:
                info.path = get_serialized_path(request.path)
            responses.append(info)

            if bundled:
                self.post_message(UiMessage(BUNDLE_PROGRESS, {"progress": index, "response": info}))

        return shape_result(bundled, responses)

    def _fetch_account(self, request: AccountInfoRequest, descriptor: str) -> AccountInfo:
        backend = self._backend_factory(request.network)
        info = backend.get_account_info(request.query(descriptor))
        if request.needs_utxo:
            info.utxo = backend.get_account_utxo(descriptor)
        # keep the caller's descriptor, backends may normalise its case
        info.descriptor = descriptor
        return info

    def discover(self, request: AccountInfoRequest) -> AccountInfo:
        """Let the operator pick an account found by a discovery scan."""

        network = request.network
        backend = self._backend_factory(network)
        waiter = self.create_ui_waiter(RECEIVE_ACCOUNT)
        self._selection_waiter = waiter

        engine = DiscoveryEngine(network, self.device, backend, gap_limit=self.config.gap_limit)
        self.discovery = engine
        engine.start()
        self.post_message(
            UiMessage(
                SELECT_ACCOUNT,
                {"type": "start", "accountTypes": engine.types, "coinInfo": network.shortcut},
            )
        )

        try:
            response = self._await_selection(engine, waiter)
        finally:
            engine.stop()
            self.ui.discard(waiter)
            self._selection_waiter = None

        accounts = engine.snapshot()
        account = accounts[self._selected_index(response, len(accounts))]

        if not engine.completed:
            engine.join(self.config.device_ready_timeout)
            if not self.device.wait_until_ready(self.config.device_ready_timeout):
                raise DeviceError("Device is still busy after discovery", code="Device_NotReady")

        info = self._fetch_account(request, account.descriptor)
        info.path = get_serialized_path(account.path)
        logger.info("Selected %s (%s)", account.label, info.path)
        return info

    def _await_selection(self, engine: DiscoveryEngine, waiter: ResponseWaiter) -> UiResponse:
        network = engine.network
        while not waiter.done():
            event = engine.next_event(self.config.poll_interval)
            if event is None:
                continue
            if event.kind == "progress":
                self.post_message(
                    UiMessage(
                        SELECT_ACCOUNT,
                        {
                            "type": "progress",
                            "coinInfo": network.shortcut,
                            "accounts": [account.to_dict() for account in event.accounts],
                        },
                    )
                )
            elif event.kind == "complete":
                self.post_message(
                    UiMessage(SELECT_ACCOUNT, {"type": "end", "coinInfo": network.shortcut})
                )
            elif event.kind == "error":
                self.ui.reject_if_pending(waiter.id, event.error)
        return waiter.wait()

    @staticmethod
    def _selected_index(response: UiResponse, count: int) -> int:
        try:
            index = int(response.payload)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Invalid account selection", field="payload") from exc
        if index < 0 or index >= count:
            raise ValidationError(f"Account #{index} was not discovered", field="payload")
        return index

    def dispose(self) -> None:
        if self.discovery is not None:
            self.discovery.stop()
        waiter = self._selection_waiter
        if waiter is not None:
            self.ui.reject_if_pending(waiter.id, MethodCancelled("Method disposed during discovery"))
