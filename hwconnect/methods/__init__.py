"""Stateful device methods."""

from .base import (
    AbstractMethod,
    Bundle,
    BundledResult,
    ConfirmationState,
    MethodResult,
    SingleResult,
)
from .get_account_info import AccountInfoRequest, GetAccountInfo
from .get_address import AddressRequest, GetAddress

METHODS = {
    GetAddress.name: GetAddress,
    GetAccountInfo.name: GetAccountInfo,
}

__all__ = [
    "AbstractMethod",
    "AccountInfoRequest",
    "AddressRequest",
    "Bundle",
    "BundledResult",
    "ConfirmationState",
    "GetAccountInfo",
    "GetAddress",
    "METHODS",
    "MethodResult",
    "SingleResult",
]
