"""BIP32 derivation path helpers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Sequence

from .errors import ValidationError

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from .networks import NetworkInfo

HD_HARDENED = 0x80000000
MAX_PATH_COMPONENT = 0xFFFFFFFF
NETWORK_PLACEHOLDER = "#NETWORK"


def to_hardened(index: int) -> int:
    return (index | HD_HARDENED) & MAX_PATH_COMPONENT


def from_hardened(index: int) -> int:
    return (index & ~HD_HARDENED) & MAX_PATH_COMPONENT


def is_hardened(index: int) -> bool:
    return (index & HD_HARDENED) != 0


def parse_path(path: str) -> list[int]:
    """Parse ``m/44'/0'/0'`` style strings into path components.

    ``'``, ``h`` and ``H`` all mark a hardened component.
    """

    parts = path.strip().lower().split("/")
    if parts and parts[0] == "m":
        parts = parts[1:]
    components: list[int] = []
    for part in parts:
        hardened = part.endswith("'") or part.endswith("h")
        digits = part[:-1] if hardened else part
        if not digits.isdigit():
            raise ValidationError("Not a valid path", field="path")
        value = int(digits)
        if value >= HD_HARDENED:
            raise ValidationError("Not a valid path", field="path")
        components.append(to_hardened(value) if hardened else value)
    return components


def validate_path(path: Any, min_length: int = 0, base: bool = False) -> list[int]:
    """Return ``path`` as a list of unsigned components.

    ``path`` may be a string or a sequence of integers. A path shorter than
    ``min_length`` is rejected, as is any component outside the uint32 range.
    With ``base=True`` the path is cut down to its first three (account level)
    components.
    """

    if isinstance(path, str):
        components = parse_path(path)
    elif isinstance(path, (list, tuple)):
        components = []
        for part in path:
            if isinstance(part, bool) or not isinstance(part, int):
                raise ValidationError("Not a valid path", field="path")
            if part < 0 or part > MAX_PATH_COMPONENT:
                raise ValidationError("Not a valid path", field="path")
            components.append(part)
    else:
        raise ValidationError("Not a valid path", field="path")

    if not components or len(components) < min_length:
        raise ValidationError("Not a valid path", field="path")
    if base:
        return components[:3]
    return components


def get_serialized_path(path: Sequence[int]) -> str:
    parts = ["m"]
    for component in path:
        if is_hardened(component):
            parts.append(f"{from_hardened(component)}'")
        else:
            parts.append(str(component))
    return "/".join(parts)


def get_label(template: str, network: NetworkInfo | None) -> str:
    """Render ``template`` with the network label in place of ``#NETWORK``."""

    if network is None:
        return template.replace(NETWORK_PLACEHOLDER, "").replace("  ", " ").strip()
    return template.replace(NETWORK_PLACEHOLDER, network.label)


def get_account_label(path: Sequence[int], network: NetworkInfo) -> str:
    """Describe the account addressed by ``path`` for confirmation screens."""

    if network.type == "bitcoin":
        purpose = from_hardened(path[0])
        account = from_hardened(path[2]) if len(path) > 2 else 0
        prefix = ""
        if purpose == 48:
            prefix = "multisig "
        elif purpose == 49 and network.segwit:
            prefix = "segwit "
        elif purpose == 44 and network.segwit:
            prefix = "legacy "
        return f"{prefix}account #{account + 1}"

    # ripple accounts live on the hardened third level, account-based chains on the last
    if network.type == "ripple" and len(path) > 2:
        account = from_hardened(path[2])
    else:
        account = from_hardened(path[-1])
    return f"account #{account + 1}"
