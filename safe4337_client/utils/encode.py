import re
from functools import cache
from typing import Any

from eth_abi import encode
from eth_utils import keccak

from safe4337_client.typing import Address

ADDRESS_PATTERN = "^0x[0-9a-fA-F]{40}$"
HEX_BYTES_PATTERN = "^0x([0-9a-fA-F]{2})*$"
ZERO_ADDRESS = Address("0x0000000000000000000000000000000000000000")


def is_address(value: Any) -> bool:
    return isinstance(value, str) and re.match(ADDRESS_PATTERN, value) is not None


def is_hex_bytes(value: Any) -> bool:
    return isinstance(value, str) and re.match(HEX_BYTES_PATTERN, value) is not None


def normalize_address(value: str) -> Address:
    """
    eth_abi rejects mixed-case addresses with an invalid checksum,
    lowercase addresses are always accepted.
    """
    return Address(value.lower())


def address_to_bytes(value: str) -> bytes:
    return bytes.fromhex(value[2:])


def bytes_to_hex(value: bytes) -> str:
    return "0x" + value.hex()


def hex_to_bytes(value: str) -> bytes:
    if value == "0x":
        return b""
    return bytes.fromhex(value[2:])


@cache
def function_selector(signature: str) -> bytes:
    return keccak(text=signature)[:4]


def encode_function_call(signature: str, types: list[str], values: list[Any]) -> str:
    call_data = function_selector(signature) + encode(types, values)
    return bytes_to_hex(call_data)
