"""
EIP-712 typed structured data hashing.

Types are described the same way wallets expect them, a mapping from the
struct name to an ordered list of ``{"name": ..., "type": ...}`` members.
Every value is checked against its declared type before it is encoded, a
mismatch raises an EncodingException instead of being coerced.
"""
import re
from dataclasses import dataclass
from typing import Any

from eth_abi import encode
from eth_utils import keccak

from safe4337_client.exceptions import EncodingException, EncodingExceptionCode
from safe4337_client.typing import Address
from safe4337_client.utils.encode import (hex_to_bytes, is_address,
                                          is_hex_bytes, normalize_address)

TypedFields = list[dict[str, str]]
TypedSchema = dict[str, TypedFields]

EIP712_DOMAIN_TYPES: TypedSchema = {
    "EIP712Domain": [
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ]
}

ARRAY_TYPE_PATTERN = re.compile(r"^(.+)\[(\d*)\]$")
INTEGER_TYPE_PATTERN = re.compile(r"^(u?)int(\d*)$")
FIXED_BYTES_TYPE_PATTERN = re.compile(r"^bytes(\d+)$")


@dataclass(frozen=True)
class TypedDataDomain:
    chain_id: int
    verifying_contract: Address

    def to_message(self) -> dict[str, Any]:
        return {
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }


def _invalid_field(field_name: str, field_type: str, value: Any) -> EncodingException:
    return EncodingException(
        EncodingExceptionCode.InvalidFieldType,
        f"Invalid {field_type} value : {value!r} in field {field_name}",
    )


def _find_dependencies(
    primary_type: str, types: TypedSchema, found: set[str]
) -> set[str]:
    match = ARRAY_TYPE_PATTERN.match(primary_type)
    if match is not None:
        primary_type = match.group(1)
    if primary_type in found or primary_type not in types:
        return found
    found.add(primary_type)
    for member in types[primary_type]:
        _find_dependencies(member["type"], types, found)
    return found


def encode_type(primary_type: str, types: TypedSchema) -> str:
    if primary_type not in types:
        raise EncodingException(
            EncodingExceptionCode.UnknownType,
            f"Unknown struct type : {primary_type}",
        )
    dependencies = _find_dependencies(primary_type, types, set())
    dependencies.discard(primary_type)
    encoded = ""
    for struct_name in [primary_type] + sorted(dependencies):
        members = ",".join(
            f"{member['type']} {member['name']}" for member in types[struct_name]
        )
        encoded += f"{struct_name}({members})"
    return encoded


def type_hash(primary_type: str, types: TypedSchema) -> bytes:
    return keccak(text=encode_type(primary_type, types))


def _as_bytes(field_name: str, field_type: str, value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if is_hex_bytes(value):
        return hex_to_bytes(value)
    raise _invalid_field(field_name, field_type, value)


def _encode_field(
    field_name: str, field_type: str, value: Any, types: TypedSchema
) -> tuple[str, Any]:
    if field_type in types:
        if not isinstance(value, dict):
            raise _invalid_field(field_name, field_type, value)
        return "bytes32", hash_struct(field_type, types, value)

    array_match = ARRAY_TYPE_PATTERN.match(field_type)
    if array_match is not None:
        item_type, length = array_match.groups()
        if not isinstance(value, (list, tuple)):
            raise _invalid_field(field_name, field_type, value)
        if length != "" and len(value) != int(length):
            raise _invalid_field(field_name, field_type, value)
        encoded_items = b""
        for index, item in enumerate(value):
            item_abi_type, item_abi_value = _encode_field(
                f"{field_name}[{index}]", item_type, item, types
            )
            encoded_items += encode([item_abi_type], [item_abi_value])
        return "bytes32", keccak(encoded_items)

    if field_type == "address":
        if isinstance(value, (bytes, bytearray)) and len(value) == 20:
            return "address", "0x" + bytes(value).hex()
        if not is_address(value):
            raise _invalid_field(field_name, field_type, value)
        return "address", normalize_address(value)

    if field_type == "bool":
        if not isinstance(value, bool):
            raise _invalid_field(field_name, field_type, value)
        return "bool", value

    if field_type == "string":
        if not isinstance(value, str):
            raise _invalid_field(field_name, field_type, value)
        return "bytes32", keccak(text=value)

    if field_type == "bytes":
        return "bytes32", keccak(_as_bytes(field_name, field_type, value))

    bytes_match = FIXED_BYTES_TYPE_PATTERN.match(field_type)
    if bytes_match is not None:
        size = int(bytes_match.group(1))
        if not 1 <= size <= 32:
            raise EncodingException(
                EncodingExceptionCode.UnknownType,
                f"Unknown type : {field_type} in field {field_name}",
            )
        value_bytes = _as_bytes(field_name, field_type, value)
        if len(value_bytes) != size:
            raise _invalid_field(field_name, field_type, value)
        return field_type, value_bytes

    integer_match = INTEGER_TYPE_PATTERN.match(field_type)
    if integer_match is not None:
        unsigned, bits_str = integer_match.groups()
        bits = int(bits_str) if bits_str else 256
        if bits % 8 != 0 or not 8 <= bits <= 256:
            raise EncodingException(
                EncodingExceptionCode.UnknownType,
                f"Unknown type : {field_type} in field {field_name}",
            )
        # bool is an int subclass and is never a valid integer value
        if isinstance(value, bool) or not isinstance(value, int):
            raise _invalid_field(field_name, field_type, value)
        if unsigned:
            lower, upper = 0, 2**bits
        else:
            lower, upper = -(2 ** (bits - 1)), 2 ** (bits - 1)
        if not lower <= value < upper:
            raise _invalid_field(field_name, field_type, value)
        return f"{unsigned}int{bits}", value

    raise EncodingException(
        EncodingExceptionCode.UnknownType,
        f"Unknown type : {field_type} in field {field_name}",
    )


def encode_data(primary_type: str, types: TypedSchema, message: dict[str, Any]) -> bytes:
    if not isinstance(message, dict):
        raise _invalid_field(primary_type, primary_type, message)
    abi_types = ["bytes32"]
    abi_values: list[Any] = [type_hash(primary_type, types)]
    for member in types[primary_type]:
        name = member["name"]
        if name not in message:
            raise EncodingException(
                EncodingExceptionCode.InvalidFieldType,
                f"{primary_type} missing {name} field",
            )
        abi_type, abi_value = _encode_field(name, member["type"], message[name], types)
        abi_types.append(abi_type)
        abi_values.append(abi_value)
    return encode(abi_types, abi_values)


def hash_struct(primary_type: str, types: TypedSchema, message: dict[str, Any]) -> bytes:
    return keccak(encode_data(primary_type, types, message))


def hash_domain(domain: TypedDataDomain) -> bytes:
    return hash_struct("EIP712Domain", EIP712_DOMAIN_TYPES, domain.to_message())


def hash_typed_data(
    domain: TypedDataDomain,
    primary_type: str,
    types: TypedSchema,
    message: dict[str, Any],
) -> bytes:
    domain_separator = hash_domain(domain)
    struct_hash = hash_struct(primary_type, types, message)
    return keccak(b"\x19\x01" + domain_separator + struct_hash)
