import pytest
from eth_abi import encode
from eth_utils import keccak

from safe4337_client.exceptions import EncodingException, EncodingExceptionCode
from safe4337_client.safe.account import encode_execute_user_op
from safe4337_client.user_operation.models import MetaTransaction, SafeAccount
from safe4337_client.user_operation.safe_operation import (
    PLACEHOLDER_CALL_GAS_LIMIT, PLACEHOLDER_PRE_VERIFICATION_GAS,
    PLACEHOLDER_VERIFICATION_GAS_LIMIT, build_unsigned, compute_operation_hash)
from safe4337_client.user_operation.user_operation import (
    PackedUserOperation, UserOperation, build_paymaster_and_data,
    get_user_operation_hash, pack, unpack, user_operation_from_json)
from safe4337_client.utils.encode import function_selector

from conftest import (CHAIN_ID, ENTRY_POINT, PAYMASTER, RECIPIENT,
                      SAFE_4337_MODULE, SENDER)

FACTORY = "0x4e1DCf7AD4e460CfD30791CCC4F9c8a4f820ec67"


def user_operation(**changes) -> UserOperation:
    return UserOperation(
        sender=SENDER,
        nonce=0,
        init_code=b"",
        call_data=bytes.fromhex("7bb37428"),
        call_gas_limit=2_000_000,
        verification_gas_limit=500_000,
        pre_verification_gas=60_000,
        max_fee_per_gas=10_000_000_000,
        max_priority_fee_per_gas=2_000_000_000,
    ).replace(**changes)


def test_pack_layout():
    """
    Gas limits and fees are packed high half first into 32 byte words.
    """
    packed = pack(user_operation())

    assert packed.account_gas_limits == \
        (500_000).to_bytes(16, "big") + (2_000_000).to_bytes(16, "big")
    assert packed.gas_fees == \
        (2_000_000_000).to_bytes(16, "big") + (10_000_000_000).to_bytes(16, "big")


def test_pack_unpack_with_factory_and_paymaster():
    operation = user_operation(
        init_code=bytes.fromhex(FACTORY[2:]) + b"\x12\x34",
        paymaster_and_data=build_paymaster_and_data(
            PAYMASTER, 100_000, 50_000, b"\xde\xad"),
        signature=b"\x01" * 77,
    )
    packed = pack(operation)

    assert unpack(packed) == operation
    assert pack(unpack(packed)) == packed


def test_pack_rejects_values_over_128_bits():
    with pytest.raises(EncodingException) as excinfo:
        pack(user_operation(call_gas_limit=2**128))
    assert excinfo.value.exception_code == EncodingExceptionCode.MalformedPackedField


def test_unpack_rejects_short_packed_word():
    packed = pack(user_operation())
    malformed = PackedUserOperation(
        **{**packed.__dict__, "gas_fees": packed.gas_fees[1:]})
    with pytest.raises(EncodingException) as excinfo:
        unpack(malformed)
    assert excinfo.value.exception_code == EncodingExceptionCode.MalformedPackedField


def test_user_operation_rejects_invalid_values():
    with pytest.raises(EncodingException):
        user_operation(nonce=-1)
    with pytest.raises(EncodingException):
        user_operation(sender="0x1234")
    with pytest.raises(EncodingException):
        user_operation(init_code=b"\x01" * 10)
    with pytest.raises(EncodingException):
        user_operation(paymaster_and_data=b"\x01" * 40)


def test_json_omits_empty_factory_and_paymaster():
    """
    Bundlers receive no placeholder keys for an empty initCode or paymasterAndData.
    """
    user_operation_json = user_operation().get_user_operation_json()

    for key in (
        "factory",
        "factoryData",
        "paymaster",
        "paymasterVerificationGasLimit",
        "paymasterPostOpGasLimit",
        "paymasterData",
    ):
        assert key not in user_operation_json
    assert user_operation_json["nonce"] == "0x0"
    assert user_operation_json["callGasLimit"] == "0x1e8480"
    assert user_operation_json["signature"] == "0x"


def test_json_decomposes_factory_and_paymaster():
    operation = user_operation(
        init_code=bytes.fromhex(FACTORY[2:]) + b"\x12\x34",
        paymaster_and_data=build_paymaster_and_data(
            PAYMASTER, 100_000, 50_000, b"\xde\xad"),
    )
    user_operation_json = operation.get_user_operation_json()

    assert user_operation_json["factory"].lower() == FACTORY.lower()
    assert user_operation_json["factoryData"] == "0x1234"
    assert user_operation_json["paymaster"] == PAYMASTER
    assert user_operation_json["paymasterVerificationGasLimit"] == hex(100_000)
    assert user_operation_json["paymasterPostOpGasLimit"] == hex(50_000)
    assert user_operation_json["paymasterData"] == "0xdead"
    assert user_operation_from_json(user_operation_json) == operation


def test_from_json_requires_core_fields():
    user_operation_json = user_operation().get_user_operation_json()
    del user_operation_json["callData"]
    with pytest.raises(EncodingException) as excinfo:
        user_operation_from_json(user_operation_json)
    assert excinfo.value.exception_code == EncodingExceptionCode.InvalidFieldType


def test_gas_sum_includes_paymaster_limits():
    operation = user_operation(paymaster_and_data=build_paymaster_and_data(
        PAYMASTER, 100_000, 50_000))
    assert operation.get_gas_sum() == 60_000 + 500_000 + 2_000_000 + 150_000
    assert operation.get_required_prefund() == \
        operation.get_gas_sum() * 10_000_000_000


def test_user_operation_hash():
    """
    The EntryPoint hash commits to the packed operation, EntryPoint and chain id.
    """
    operation = user_operation(signature=b"\x01" * 65)
    packed = pack(operation)
    inner = encode(
        ["address", "uint256", "bytes32", "bytes32",
         "bytes32", "uint256", "bytes32", "bytes32"],
        [
            SENDER.lower(),
            0,
            keccak(b""),
            keccak(operation.call_data),
            packed.account_gas_limits,
            60_000,
            packed.gas_fees,
            keccak(b""),
        ],
    )
    expected = keccak(encode(
        ["bytes32", "address", "uint256"],
        [keccak(inner), ENTRY_POINT.lower(), CHAIN_ID],
    ))

    assert get_user_operation_hash(packed, ENTRY_POINT, CHAIN_ID) == expected
    # the signature is not part of the hash
    assert get_user_operation_hash(
        pack(operation.replace(signature=b"")), ENTRY_POINT, CHAIN_ID) == expected


def test_build_unsigned_uses_placeholders(transfer_call, account):
    """
    The unsigned operation is well formed enough to be estimated.
    """
    operation = build_unsigned(transfer_call, account, 0)

    assert operation.sender == SENDER
    assert operation.nonce == 0
    assert operation.init_code == b""
    assert operation.signature == b""
    assert operation.paymaster_and_data == b""
    assert operation.call_gas_limit == PLACEHOLDER_CALL_GAS_LIMIT
    assert operation.verification_gas_limit == PLACEHOLDER_VERIFICATION_GAS_LIMIT
    assert operation.pre_verification_gas == PLACEHOLDER_PRE_VERIFICATION_GAS
    assert operation.max_fee_per_gas > 0
    assert operation.call_data[:4] == \
        function_selector("executeUserOp(address,uint256,bytes,uint8)")
    assert operation.call_data == encode_execute_user_op(transfer_call)


def test_build_unsigned_rejects_deployment_with_used_nonce(transfer_call):
    account = SafeAccount(SENDER, init_code=bytes.fromhex(FACTORY[2:]) + b"\x01")

    with pytest.raises(EncodingException) as excinfo:
        build_unsigned(transfer_call, account, 1)
    assert excinfo.value.exception_code == EncodingExceptionCode.InvalidDeploymentNonce

    # a fresh sequence under a non zero key is still a valid deployment nonce
    operation = build_unsigned(transfer_call, account, 5 << 64)
    assert operation.nonce_key == 5
    assert operation.sequence == 0
    assert operation.factory.lower() == FACTORY.lower()


def test_compute_operation_hash_depends_on_window():
    operation = build_unsigned(
        MetaTransaction(to=RECIPIENT, value=100), SafeAccount(SENDER), 0)

    base = compute_operation_hash(operation, ENTRY_POINT, CHAIN_ID, SAFE_4337_MODULE)

    assert base == compute_operation_hash(
        operation, ENTRY_POINT, CHAIN_ID, SAFE_4337_MODULE)
    assert base != compute_operation_hash(
        operation, ENTRY_POINT, CHAIN_ID, SAFE_4337_MODULE, valid_until=10)
    # the signature is never covered
    assert base == compute_operation_hash(
        operation.replace(signature=b"\x01"), ENTRY_POINT, CHAIN_ID, SAFE_4337_MODULE)
