"""Error taxonomy shared by hwconnect methods.

Every error carries a stable ``code`` so that UI surfaces and callers can
branch on the failure without parsing messages.
"""

from __future__ import annotations


class ConnectError(RuntimeError):
    """Base class for failures raised by hwconnect methods."""

    code = "Failure_Unknown"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class ValidationError(ConnectError):
    """Raised when a payload field is missing or has the wrong shape."""

    code = "Method_InvalidParameter"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NoNetworkInfo(ConnectError):
    """Raised when neither the coin nor the path resolve to a network."""

    code = "Method_UnknownCoin"

    def __init__(self, message: str = "Coin not found.") -> None:
        super().__init__(message)


class UnsupportedBackend(ConnectError):
    """Raised when a network has no configured remote backend."""

    code = "Backend_NotSupported"

    def __init__(self, coin_name: str) -> None:
        super().__init__(f"BlockchainLink settings not found in coins.json for {coin_name}")
        self.coin_name = coin_name


class CrossNetworkDiscoveryUnsupported(ConnectError):
    code = "Method_Discovery_MultipleCoins"

    def __init__(self) -> None:
        super().__init__("Discovery for multiple coins in not supported")


class AddressMismatch(ConnectError):
    """Raised when the device reports an address other than the expected one."""

    code = "Method_AddressNotMatch"

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__("Addresses do not match")
        self.expected = expected
        self.actual = actual


class DescriptorNotFound(ConnectError):
    code = "Method_Discovery_DescriptorNotFound"

    def __init__(self) -> None:
        super().__init__("GetAccountInfo: descriptor not found")


class ActionCancelled(ConnectError):
    """Raised when the operator rejects a confirmation request."""

    code = "Method_Cancel"

    def __init__(self, message: str = "Cancelled") -> None:
        super().__init__(message)


class MethodCancelled(ConnectError):
    """Raised when a running method is interrupted between bundle items."""

    code = "Method_Interrupted"

    def __init__(self, message: str = "Method interrupted") -> None:
        super().__init__(message)


class UiChannelError(ConnectError):
    """Raised on misuse of the UI request table."""

    code = "Ui_Channel"


class DeviceError(ConnectError):
    code = "Device_CallInProgress"


class FirmwareNotSupported(ConnectError):
    """Raised when the device firmware falls outside a method's range."""

    code = "Device_FwException"
