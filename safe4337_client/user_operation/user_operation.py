import dataclasses
from dataclasses import dataclass
from typing import Any

from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from safe4337_client.exceptions import EncodingException, EncodingExceptionCode
from safe4337_client.typing import Address
from safe4337_client.utils.encode import (address_to_bytes, bytes_to_hex,
                                          hex_to_bytes, is_address,
                                          is_hex_bytes, normalize_address)

UINT128_MAX = 2**128 - 1
UINT256_MAX = 2**256 - 1
# paymaster address + verification gas limit + post op gas limit
PAYMASTER_DATA_OFFSET = 20 + 16 + 16


def verify_and_get_address(field_name: str, value: Address | None) -> Address:
    if is_address(value):
        return value  # type: ignore
    raise EncodingException(
        EncodingExceptionCode.InvalidFieldType,
        f"Invalid address value : {value} in field {field_name}",
    )


def verify_and_get_uint(field_name: str, value: str | None) -> int:
    if value == "0x":
        return 0
    if isinstance(value, str) and value[:2] == "0x":
        try:
            return int(value, 16)
        except ValueError:
            pass
    raise EncodingException(
        EncodingExceptionCode.InvalidFieldType,
        f"Invalid uint hex value : {value} in field {field_name}",
    )


def verify_and_get_bytes(field_name: str, value: str | None) -> bytes:
    if is_hex_bytes(value):
        return hex_to_bytes(value)  # type: ignore
    raise EncodingException(
        EncodingExceptionCode.InvalidFieldType,
        f"Invalid bytes value : {value} in field {field_name}",
    )


def _uint128_bytes(field_name: str, value: int) -> bytes:
    if not 0 <= value <= UINT128_MAX:
        raise EncodingException(
            EncodingExceptionCode.MalformedPackedField,
            f"{field_name} does not fit in 128 bits : {value}",
        )
    return value.to_bytes(16, "big")


def build_paymaster_and_data(
    paymaster: Address,
    paymaster_verification_gas_limit: int,
    paymaster_post_op_gas_limit: int,
    paymaster_data: bytes = b"",
) -> bytes:
    return (
        address_to_bytes(paymaster) +
        _uint128_bytes(
            "paymasterVerificationGasLimit", paymaster_verification_gas_limit) +
        _uint128_bytes("paymasterPostOpGasLimit", paymaster_post_op_gas_limit) +
        paymaster_data
    )


@dataclass(frozen=True)
class UserOperation:
    sender: Address
    nonce: int
    init_code: bytes
    call_data: bytes
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    paymaster_and_data: bytes = b""
    signature: bytes = b""

    def __post_init__(self) -> None:
        for field_name in (
            "nonce",
            "call_gas_limit",
            "verification_gas_limit",
            "pre_verification_gas",
            "max_fee_per_gas",
            "max_priority_fee_per_gas",
        ):
            value = getattr(self, field_name)
            if (
                isinstance(value, bool) or not isinstance(value, int) or
                not 0 <= value <= UINT256_MAX
            ):
                raise EncodingException(
                    EncodingExceptionCode.InvalidFieldType,
                    f"Invalid uint256 value : {value!r} in field {field_name}",
                )
        verify_and_get_address("sender", self.sender)
        if 0 < len(self.init_code) < 20:
            raise EncodingException(
                EncodingExceptionCode.MalformedPackedField,
                "initCode must start with a factory address",
            )
        if 0 < len(self.paymaster_and_data) < PAYMASTER_DATA_OFFSET:
            raise EncodingException(
                EncodingExceptionCode.MalformedPackedField,
                "paymasterAndData must start with a paymaster address "
                "and its verification and post op gas limits",
            )

    def replace(self, **changes: Any) -> "UserOperation":
        return dataclasses.replace(self, **changes)

    @property
    def factory(self) -> Address | None:
        if len(self.init_code) == 0:
            return None
        return Address(to_checksum_address(self.init_code[:20]))

    @property
    def factory_data(self) -> bytes | None:
        if len(self.init_code) == 0:
            return None
        return self.init_code[20:]

    @property
    def paymaster(self) -> Address | None:
        if len(self.paymaster_and_data) == 0:
            return None
        return Address(to_checksum_address(self.paymaster_and_data[:20]))

    @property
    def paymaster_verification_gas_limit(self) -> int | None:
        if len(self.paymaster_and_data) == 0:
            return None
        return int.from_bytes(self.paymaster_and_data[20:36], "big")

    @property
    def paymaster_post_op_gas_limit(self) -> int | None:
        if len(self.paymaster_and_data) == 0:
            return None
        return int.from_bytes(self.paymaster_and_data[36:52], "big")

    @property
    def paymaster_data(self) -> bytes | None:
        if len(self.paymaster_and_data) == 0:
            return None
        return self.paymaster_and_data[PAYMASTER_DATA_OFFSET:]

    @property
    def sequence(self) -> int:
        return self.nonce & (2**64 - 1)

    @property
    def nonce_key(self) -> int:
        return self.nonce >> 64

    def get_user_operation_json(self) -> dict[str, str]:
        user_operation_json = {
            "sender": self.sender,
            "nonce": hex(self.nonce),
            "callData": bytes_to_hex(self.call_data),
            "callGasLimit": hex(self.call_gas_limit),
            "verificationGasLimit": hex(self.verification_gas_limit),
            "preVerificationGas": hex(self.pre_verification_gas),
            "maxFeePerGas": hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": hex(self.max_priority_fee_per_gas),
            "signature": bytes_to_hex(self.signature),
        }
        # bundlers reject zero length placeholders, absent keys mean empty
        if self.factory is not None:
            user_operation_json["factory"] = self.factory
            user_operation_json["factoryData"] = bytes_to_hex(
                self.factory_data)  # type: ignore
        if self.paymaster is not None:
            user_operation_json["paymaster"] = self.paymaster
            user_operation_json["paymasterVerificationGasLimit"] = hex(
                self.paymaster_verification_gas_limit)  # type: ignore
            user_operation_json["paymasterPostOpGasLimit"] = hex(
                self.paymaster_post_op_gas_limit)  # type: ignore
            user_operation_json["paymasterData"] = bytes_to_hex(
                self.paymaster_data)  # type: ignore
        return user_operation_json

    def get_gas_sum(self) -> int:
        gas = (
            self.pre_verification_gas +
            self.verification_gas_limit +
            self.call_gas_limit
        )
        if self.paymaster_verification_gas_limit is not None:
            gas += self.paymaster_verification_gas_limit
        if self.paymaster_post_op_gas_limit is not None:
            gas += self.paymaster_post_op_gas_limit
        return gas

    def get_required_prefund(self) -> int:
        return self.get_gas_sum() * self.max_fee_per_gas


def user_operation_from_json(json_dict: dict[str, Any]) -> UserOperation:
    """
    Parse the bundler rpc shape of a v0.7 UserOperation.
    Missing factory and paymaster keys mean the fields are empty.
    """
    for field_name in [
        "sender",
        "nonce",
        "callData",
        "callGasLimit",
        "verificationGasLimit",
        "preVerificationGas",
        "maxFeePerGas",
        "maxPriorityFeePerGas",
    ]:
        if field_name not in json_dict:
            raise EncodingException(
                EncodingExceptionCode.InvalidFieldType,
                f"UserOperation missing {field_name} field",
            )

    init_code = b""
    factory = json_dict.get("factory")
    if factory is not None:
        init_code = address_to_bytes(
            verify_and_get_address("factory", factory)
        ) + verify_and_get_bytes("factoryData", json_dict.get("factoryData", "0x"))

    paymaster_and_data = b""
    paymaster = json_dict.get("paymaster")
    if paymaster is not None:
        paymaster_and_data = build_paymaster_and_data(
            verify_and_get_address("paymaster", paymaster),
            verify_and_get_uint(
                "paymasterVerificationGasLimit",
                json_dict.get("paymasterVerificationGasLimit"),
            ),
            verify_and_get_uint(
                "paymasterPostOpGasLimit",
                json_dict.get("paymasterPostOpGasLimit"),
            ),
            verify_and_get_bytes(
                "paymasterData", json_dict.get("paymasterData", "0x")),
        )

    return UserOperation(
        sender=verify_and_get_address("sender", json_dict["sender"]),
        nonce=verify_and_get_uint("nonce", json_dict["nonce"]),
        init_code=init_code,
        call_data=verify_and_get_bytes("callData", json_dict["callData"]),
        call_gas_limit=verify_and_get_uint(
            "callGasLimit", json_dict["callGasLimit"]),
        verification_gas_limit=verify_and_get_uint(
            "verificationGasLimit", json_dict["verificationGasLimit"]),
        pre_verification_gas=verify_and_get_uint(
            "preVerificationGas", json_dict["preVerificationGas"]),
        max_fee_per_gas=verify_and_get_uint(
            "maxFeePerGas", json_dict["maxFeePerGas"]),
        max_priority_fee_per_gas=verify_and_get_uint(
            "maxPriorityFeePerGas", json_dict["maxPriorityFeePerGas"]),
        paymaster_and_data=paymaster_and_data,
        signature=verify_and_get_bytes(
            "signature", json_dict.get("signature", "0x")),
    )


@dataclass(frozen=True)
class PackedUserOperation:
    sender: Address
    nonce: int
    init_code: bytes
    call_data: bytes
    account_gas_limits: bytes
    pre_verification_gas: int
    gas_fees: bytes
    paymaster_and_data: bytes
    signature: bytes

    def to_list(self) -> list[Address | int | bytes]:
        return [
            normalize_address(self.sender),
            self.nonce,
            self.init_code,
            self.call_data,
            self.account_gas_limits,
            self.pre_verification_gas,
            self.gas_fees,
            self.paymaster_and_data,
            self.signature,
        ]


def pack(user_operation: UserOperation) -> PackedUserOperation:
    account_gas_limits = (
        _uint128_bytes(
            "verificationGasLimit", user_operation.verification_gas_limit) +
        _uint128_bytes("callGasLimit", user_operation.call_gas_limit)
    )
    gas_fees = (
        _uint128_bytes(
            "maxPriorityFeePerGas", user_operation.max_priority_fee_per_gas) +
        _uint128_bytes("maxFeePerGas", user_operation.max_fee_per_gas)
    )
    return PackedUserOperation(
        sender=user_operation.sender,
        nonce=user_operation.nonce,
        init_code=user_operation.init_code,
        call_data=user_operation.call_data,
        account_gas_limits=account_gas_limits,
        pre_verification_gas=user_operation.pre_verification_gas,
        gas_fees=gas_fees,
        paymaster_and_data=user_operation.paymaster_and_data,
        signature=user_operation.signature,
    )


def unpack(packed_user_operation: PackedUserOperation) -> UserOperation:
    for field_name in ("account_gas_limits", "gas_fees"):
        if len(getattr(packed_user_operation, field_name)) != 32:
            raise EncodingException(
                EncodingExceptionCode.MalformedPackedField,
                f"{field_name} must be exactly 32 bytes",
            )
    account_gas_limits = packed_user_operation.account_gas_limits
    gas_fees = packed_user_operation.gas_fees
    return UserOperation(
        sender=packed_user_operation.sender,
        nonce=packed_user_operation.nonce,
        init_code=packed_user_operation.init_code,
        call_data=packed_user_operation.call_data,
        verification_gas_limit=int.from_bytes(account_gas_limits[:16], "big"),
        call_gas_limit=int.from_bytes(account_gas_limits[16:], "big"),
        pre_verification_gas=packed_user_operation.pre_verification_gas,
        max_priority_fee_per_gas=int.from_bytes(gas_fees[:16], "big"),
        max_fee_per_gas=int.from_bytes(gas_fees[16:], "big"),
        paymaster_and_data=packed_user_operation.paymaster_and_data,
        signature=packed_user_operation.signature,
    )


def pack_user_operation_for_signature(
    packed_user_operation: PackedUserOperation
) -> bytes:
    return encode(
        [
            "address",
            "uint256",
            "bytes32",
            "bytes32",
            "bytes32",
            "uint256",
            "bytes32",
            "bytes32",
        ],
        [
            normalize_address(packed_user_operation.sender),
            packed_user_operation.nonce,
            keccak(packed_user_operation.init_code),
            keccak(packed_user_operation.call_data),
            packed_user_operation.account_gas_limits,
            packed_user_operation.pre_verification_gas,
            packed_user_operation.gas_fees,
            keccak(packed_user_operation.paymaster_and_data),
        ],
    )


def get_user_operation_hash(
    packed_user_operation: PackedUserOperation,
    entry_point: Address,
    chain_id: int,
) -> bytes:
    """
    EntryPoint v0.7 getUserOpHash, signed by the passkey launchpad
    SafeInitOp instead of the SafeOp message.
    """
    encoded_user_operation_hash = encode(
        ["(bytes32,address,uint256)"],
        [[
            keccak(pack_user_operation_for_signature(packed_user_operation)),
            normalize_address(entry_point),
            chain_id,
        ]],
    )
    return keccak(encoded_user_operation_hash)
