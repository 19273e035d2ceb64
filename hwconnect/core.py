"""Entry point dispatching caller payloads to device methods."""

from __future__ import annotations

import logging
from contextlib import nullcontext
from typing import Any, Mapping

from .config import ConnectConfig
from .device import Device
from .errors import ActionCancelled, DeviceError, FirmwareNotSupported, ValidationError
from .methods import METHODS, AbstractMethod, ConfirmationState
from .networks import DEFAULT_REGISTRY, NetworkRegistry, parse_version
from .ui import REQUEST_BUTTON, UiChannel, UiMessage

logger = logging.getLogger(__name__)


def build_registry(config: ConnectConfig | None) -> NetworkRegistry:
    """Return the network registry, extended by ``config.coins_file`` if set."""

    if config is None or config.coins_file is None:
        return DEFAULT_REGISTRY
    registry = NetworkRegistry(DEFAULT_REGISTRY.all())
    registry.load_yaml(config.coins_file)
    return registry


def create_method(
    method_name: str,
    payload: Mapping[str, Any],
    *,
    ui: UiChannel,
    device: Device | None = None,
    config: ConnectConfig | None = None,
    registry: NetworkRegistry | None = None,
    **method_kwargs: Any,
) -> AbstractMethod:
    method_cls = METHODS.get(method_name)
    if method_cls is None:
        raise ValidationError(f"Method {method_name} not found", field="method")
    return method_cls(
        payload,
        ui=ui,
        device=device,
        config=config,
        registry=registry or build_registry(config),
        **method_kwargs,
    )


def check_firmware(method: AbstractMethod, device: Device) -> None:
    """Reject devices whose firmware is outside the method's range.

    Devices that do not report ``model`` and ``firmware_version`` pass.
    """

    model = device.features.get("model")
    raw_version = device.features.get("firmware_version")
    if model is None or raw_version is None:
        return
    version = parse_version(raw_version)
    allowed = method.firmware_range.for_model(str(model))
    if not allowed.is_satisfiable():
        raise FirmwareNotSupported(f"{method.name} is not supported by model {model}")
    if version < allowed.min or (allowed.max is not None and version > allowed.max):
        raise FirmwareNotSupported(
            f"{method.name} requires firmware {'.'.join(map(str, allowed.min))} or newer"
        )


def call(
    method_name: str,
    payload: Mapping[str, Any],
    *,
    ui: UiChannel,
    device: Device | None = None,
    config: ConnectConfig | None = None,
    registry: NetworkRegistry | None = None,
    **method_kwargs: Any,
) -> Any:
    """Validate, confirm and run ``method_name`` and return its result.

    A payload with a ``bundle`` of several items returns a list in input
    order; any other payload returns a single value.
    """

    method = create_method(
        method_name,
        payload,
        ui=ui,
        device=device,
        config=config,
        registry=registry,
        **method_kwargs,
    )
    logger.info("Calling %s (%s)", method.name, method.info)
    try:
        if method.use_device and device is None:
            raise DeviceError("Device not connected", code="Device_NotConnected")
        session = device.session() if method.use_device else nullcontext()
        with session:
            if method.use_device:
                check_firmware(method, device)
                device.set_button_listener(lambda code: _on_button_request(method, code))

            if method.use_device and method.use_ui and device.needs_backup:
                if not method.no_backup_confirmation():
                    raise ActionCancelled("Device has no backup")

            if method.use_ui or method.confirmation_state is ConfirmationState.AUTO_CONFIRMED:
                if not method.confirmation().granted:
                    raise ActionCancelled()

            result = method.run()
    finally:
        if device is not None and method.use_device:
            device.set_button_listener(None)
        method.dispose()
    return result.unwrap()


def _on_button_request(method: AbstractMethod, code: str) -> None:
    method.post_message(
        UiMessage(REQUEST_BUTTON, {"code": code, "data": method.get_button_request_data(code)})
    )
