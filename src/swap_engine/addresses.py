"""Settle-address format checks, keyed by destination network."""

import re
from typing import Protocol

_EVM = re.compile(r"^0x[a-fA-F0-9]{40}$")

ADDRESS_PATTERNS: dict[str, re.Pattern[str]] = {
    "ethereum": _EVM,
    "bsc": _EVM,
    "polygon": _EVM,
    "arbitrum": _EVM,
    "base": _EVM,
    "avalanche": _EVM,
    "optimism": _EVM,
    "fantom": _EVM,
    "bitcoin": re.compile(
        r"^(1[a-km-zA-HJ-NP-Z1-9]{25,34}|3[a-km-zA-HJ-NP-Z1-9]{25,34}"
        r"|bc1[a-zA-HJ-NP-Z0-9]{39,59}|bc1p[qpzry9x8gf2tvdw0s3jn54khce6mua7l]{58})$"
    ),
    "litecoin": re.compile(r"^([LM3][a-km-zA-HJ-NP-Z1-9]{26,33}|ltc1[a-zA-HJ-NP-Z0-9]{39,59})$"),
    "solana": re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$"),
    "tron": re.compile(r"^T[a-zA-HJ-NP-Z0-9]{33}$"),
    "ripple": re.compile(r"^r[0-9a-zA-Z]{24,34}$"),
    "xrp": re.compile(r"^r[0-9a-zA-Z]{24,34}$"),
    "dogecoin": re.compile(r"^D[5-9A-HJ-NP-U][1-9A-HJ-NP-Za-km-z]{32}$"),
    "cosmos": re.compile(r"^cosmos[a-z0-9]{38,45}$"),
    "polkadot": re.compile(r"^1[a-zA-Z0-9]{47}$"),
    "cardano": re.compile(r"^addr1[a-zA-Z0-9]{53,}$"),
    "monero": re.compile(r"^4[0-9AB][1-9A-HJ-NP-Za-km-z]{93}$"),
    "zcash": re.compile(r"^t1[a-zA-Z0-9]{33}$"),
}


class AddressValidator(Protocol):
    """Anything that can tell whether an address is valid on a network."""

    def is_valid(self, address: str, network: str | None = None) -> bool: ...


class RegexAddressValidator:
    """Validate addresses against per-chain regular expressions.

    Unknown networks fall back to the EVM pattern, since most networks
    the swap provider lists are EVM-compatible.
    """

    def __init__(self, patterns: dict[str, re.Pattern[str]] | None = None) -> None:
        self._patterns = patterns if patterns is not None else ADDRESS_PATTERNS

    def is_valid(self, address: str, network: str | None = None) -> bool:
        if not address or not isinstance(address, str):
            return False
        candidate = address.strip()
        if not network:
            return any(pattern.match(candidate) for pattern in self._patterns.values())
        pattern = self._patterns.get(_normalize_network(network), _EVM)
        return pattern.match(candidate) is not None


def _normalize_network(network: str) -> str:
    return re.sub(r"[^a-z]", "", network.lower())
