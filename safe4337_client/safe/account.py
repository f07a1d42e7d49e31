from dataclasses import dataclass, field

from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from safe4337_client.exceptions import EncodingException, EncodingExceptionCode
from safe4337_client.typing import Address
from safe4337_client.user_operation.models import MetaTransaction, OperationType
from safe4337_client.utils.encode import (ZERO_ADDRESS, address_to_bytes,
                                          encode_function_call, hex_to_bytes,
                                          normalize_address)

UINT48_MAX = 2**48 - 1


@dataclass(frozen=True)
class SafeDeployment:
    """
    Contract addresses an account is deployed and operated with.
    """
    proxy_factory: Address
    safe_singleton: Address
    safe_module_setup: Address
    safe_4337_module: Address
    # creation code of the SafeProxy as returned by proxyCreationCode()
    proxy_creation_code: bytes
    multi_send: Address | None = None


@dataclass(frozen=True)
class SafeSetup:
    owners: list[Address]
    threshold: int = 1
    salt_nonce: int = 0
    modules: list[Address] = field(default_factory=list)


def encode_execute_user_op(call: MetaTransaction) -> bytes:
    return hex_to_bytes(encode_function_call(
        "executeUserOp(address,uint256,bytes,uint8)",
        ["address", "uint256", "bytes", "uint8"],
        [normalize_address(call.to), call.value, call.data, int(call.operation)],
    ))


def encode_execute_user_op_with_error_string(call: MetaTransaction) -> bytes:
    return hex_to_bytes(encode_function_call(
        "executeUserOpWithErrorString(address,uint256,bytes,uint8)",
        ["address", "uint256", "bytes", "uint8"],
        [normalize_address(call.to), call.value, call.data, int(call.operation)],
    ))


def encode_multi_send(calls: list[MetaTransaction]) -> bytes:
    transactions = b""
    for call in calls:
        transactions += (
            int(call.operation).to_bytes(1, "big") +
            address_to_bytes(call.to) +
            call.value.to_bytes(32, "big") +
            len(call.data).to_bytes(32, "big") +
            call.data
        )
    return hex_to_bytes(encode_function_call(
        "multiSend(bytes)", ["bytes"], [transactions]
    ))


def build_multi_send_call(
    calls: list[MetaTransaction], deployment: SafeDeployment
) -> MetaTransaction:
    if deployment.multi_send is None:
        raise EncodingException(
            EncodingExceptionCode.InvalidFieldType,
            "MultiSend address is required to batch calls",
        )
    return MetaTransaction(
        to=deployment.multi_send,
        value=0,
        data=encode_multi_send(calls),
        operation=OperationType.DelegateCall,
    )


def build_initializer(setup: SafeSetup, deployment: SafeDeployment) -> bytes:
    modules = [deployment.safe_4337_module] + list(setup.modules)
    enable_modules_data = hex_to_bytes(encode_function_call(
        "enableModules(address[])",
        ["address[]"],
        [[normalize_address(module) for module in modules]],
    ))
    return hex_to_bytes(encode_function_call(
        "setup(address[],uint256,address,bytes,address,address,uint256,address)",
        [
            "address[]",
            "uint256",
            "address",
            "bytes",
            "address",
            "address",
            "uint256",
            "address",
        ],
        [
            [normalize_address(owner) for owner in setup.owners],
            setup.threshold,
            normalize_address(deployment.safe_module_setup),
            enable_modules_data,
            # the module doubles as fallback handler
            normalize_address(deployment.safe_4337_module),
            ZERO_ADDRESS,
            0,
            ZERO_ADDRESS,
        ],
    ))


def build_init_code(setup: SafeSetup, deployment: SafeDeployment) -> bytes:
    deploy_data = hex_to_bytes(encode_function_call(
        "createProxyWithNonce(address,bytes,uint256)",
        ["address", "bytes", "uint256"],
        [
            normalize_address(deployment.safe_singleton),
            build_initializer(setup, deployment),
            setup.salt_nonce,
        ],
    ))
    return address_to_bytes(deployment.proxy_factory) + deploy_data


def calculate_proxy_address(setup: SafeSetup, deployment: SafeDeployment) -> Address:
    initializer = build_initializer(setup, deployment)
    salt = keccak(keccak(initializer) + setup.salt_nonce.to_bytes(32, "big"))
    deployment_code = (
        deployment.proxy_creation_code +
        encode(["address"], [normalize_address(deployment.safe_singleton)])
    )
    create2_hash = keccak(
        b"\xff" +
        address_to_bytes(deployment.proxy_factory) +
        salt +
        keccak(deployment_code)
    )
    return Address(to_checksum_address(create2_hash[12:]))


def pack_validation_data(
    authorizer: int, valid_until: int, valid_after: int
) -> int:
    """
    ERC-4337 validation data word: aggregator or signature failure flag in
    the lowest 160 bits, validUntil and validAfter above it.
    """
    for name, value in (("validUntil", valid_until), ("validAfter", valid_after)):
        if not 0 <= value <= UINT48_MAX:
            raise EncodingException(
                EncodingExceptionCode.InvalidValidityWindow,
                f"{name} does not fit in 48 bits : {value}",
            )
    return authorizer | (valid_until << 160) | (valid_after << 208)


def unpack_validation_data(validation_data: int) -> tuple[int, int, int]:
    authorizer = validation_data & (2**160 - 1)
    valid_until = (validation_data >> 160) & UINT48_MAX
    valid_after = (validation_data >> 208) & UINT48_MAX
    return authorizer, valid_until, valid_after
