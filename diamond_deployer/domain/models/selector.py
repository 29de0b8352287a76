"""
Function selectors.

A selector is the first four bytes of keccak256 of a canonical function
signature. Selectors are carried as lowercase 0x-prefixed hex strings and
converted to raw bytes only when encoding a diamond cut.
"""

import re
from typing import Annotated, Any, Dict, Iterable, List

from eth_utils import function_abi_to_4byte_selector
from pydantic import AfterValidator
from web3 import Web3

_SELECTOR_RE = re.compile(r"^(0x)?[0-9a-fA-F]{8}$")


# Well-known EIP-2535 selectors
STANDARD_SELECTORS: Dict[str, str] = {
    "diamondCut((address,uint8,bytes4[])[],address,bytes)": "0x1f931c1c",
    "facets()": "0x7a0ed627",
    "facetFunctionSelectors(address)": "0xadfca15e",
    "facetAddresses()": "0x52ef6b2c",
    "facetAddress(bytes4)": "0xcdffacc6",
    "supportsInterface(bytes4)": "0x01ffc9a7",
}

DIAMOND_CUT_SELECTOR = STANDARD_SELECTORS[
    "diamondCut((address,uint8,bytes4[])[],address,bytes)"
]


def normalize_selector(value: Any) -> str:
    """Return the canonical lowercase 0x-hex form of a selector.

    Accepts 4 raw bytes or an 8-digit hex string with or without prefix.
    Raises ValueError for anything else.
    """
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 4:
            raise ValueError(f"Selector must be exactly 4 bytes, got {len(value)}")
        return "0x" + bytes(value).hex()
    if isinstance(value, str) and _SELECTOR_RE.match(value):
        return "0x" + value[-8:].lower()
    raise ValueError(f"Invalid function selector: {value!r}")


Selector = Annotated[str, AfterValidator(normalize_selector)]


def selector_for_signature(signature: str) -> str:
    """Compute the selector of a canonical signature such as "transfer(address,uint256)"."""
    return "0x" + bytes(Web3.keccak(text=signature.replace(" ", ""))[:4]).hex()


def selector_to_bytes(selector: str) -> bytes:
    """Encode a selector as exactly 4 bytes, no padding."""
    return bytes.fromhex(normalize_selector(selector)[2:])


def selectors_from_abi(abi: Iterable[Dict[str, Any]]) -> List[str]:
    """Derive the selectors of every function entry of a contract ABI, in ABI order."""
    selectors: List[str] = []
    for entry in abi:
        if entry.get("type", "function") != "function":
            continue
        selector = "0x" + function_abi_to_4byte_selector(entry).hex()
        if selector not in selectors:
            selectors.append(selector)
    return selectors


def unique_selectors(values: Iterable[Any]) -> List[str]:
    """Normalise selectors and drop duplicates, keeping first-seen order."""
    seen: List[str] = []
    for value in values:
        selector = normalize_selector(value)
        if selector not in seen:
            seen.append(selector)
    return seen
