"""Host-side command core for hardware wallet methods."""

from .backend import AccountInfo, AccountInfoQuery, BlockbookClient, Utxo
from .config import ConfigurationError, ConnectConfig, load_connect_config
from .core import call, create_method
from .device import AccountDescriptor, Address, Device, DeviceCommands
from .discovery import AccountType, DiscoveredAccount, DiscoveryEngine, DiscoveryStatus
from .errors import (
    ActionCancelled,
    AddressMismatch,
    ConnectError,
    CrossNetworkDiscoveryUnsupported,
    DescriptorNotFound,
    MethodCancelled,
    NoNetworkInfo,
    UnsupportedBackend,
    ValidationError,
)
from .methods import ConfirmationState, GetAccountInfo, GetAddress
from .networks import NetworkInfo, NetworkRegistry, get_network
from .ui import UiChannel, UiMessage, UiResponse

__all__ = [
    "AccountDescriptor",
    "AccountInfo",
    "AccountInfoQuery",
    "AccountType",
    "ActionCancelled",
    "Address",
    "AddressMismatch",
    "BlockbookClient",
    "ConfigurationError",
    "ConfirmationState",
    "ConnectConfig",
    "ConnectError",
    "CrossNetworkDiscoveryUnsupported",
    "DescriptorNotFound",
    "Device",
    "DeviceCommands",
    "DiscoveredAccount",
    "DiscoveryEngine",
    "DiscoveryStatus",
    "GetAccountInfo",
    "GetAddress",
    "MethodCancelled",
    "NetworkInfo",
    "NetworkRegistry",
    "NoNetworkInfo",
    "UiChannel",
    "UiMessage",
    "UiResponse",
    "UnsupportedBackend",
    "Utxo",
    "ValidationError",
    "call",
    "create_method",
    "get_network",
    "load_connect_config",
]
