import pytest
from eth_account.messages import encode_typed_data
from eth_utils import keccak, to_checksum_address

from safe4337_client.exceptions import EncodingException, EncodingExceptionCode
from safe4337_client.safe.allowance import (AllowanceTransfer,
                                            get_allowance_transfer_hash)
from safe4337_client.safe.launchpad import SafeInitializer, get_init_hash
from safe4337_client.typed_data.eip712 import (EIP712_DOMAIN_TYPES,
                                               TypedDataDomain, encode_type,
                                               hash_struct, hash_typed_data)
from safe4337_client.typed_data.schemas import (ALLOWANCE_TRANSFER_TYPES,
                                                SAFE_INIT_TYPES, SAFE_OP_TYPES)
from safe4337_client.user_operation.safe_operation import SafeOperation
from safe4337_client.user_operation.user_operation import UserOperation

from conftest import CHAIN_ID, ENTRY_POINT, RECIPIENT, SAFE_4337_MODULE, SENDER

MAIL_TYPES = {
    "Person": [
        {"name": "name", "type": "string"},
        {"name": "wallet", "type": "address"},
    ],
    "Mail": [
        {"name": "from", "type": "Person"},
        {"name": "to", "type": "Person"},
        {"name": "contents", "type": "string"},
    ],
}
MAIL_MESSAGE = {
    "from": {"name": "Cow", "wallet": "0xCD2a3d9F938E13CD947Ec05AbC7FE734Df8DD826"},
    "to": {"name": "Bob", "wallet": "0xbBbBBBBbbBBBbbbBbbBbbbbBBbBbbbbBbBbbBBbB"},
    "contents": "Hello, Bob!",
}


def eth_account_hash(domain: TypedDataDomain, primary_type, types, message):
    signable_message = encode_typed_data(full_message={
        "types": {**EIP712_DOMAIN_TYPES, **types},
        "primaryType": primary_type,
        "domain": {
            "chainId": domain.chain_id,
            "verifyingContract": to_checksum_address(domain.verifying_contract),
        },
        "message": message,
    })
    return keccak(
        b"\x19" + signable_message.version +
        signable_message.header + signable_message.body
    )


def safe_operation(**changes) -> SafeOperation:
    user_operation = UserOperation(
        sender=SENDER,
        nonce=3,
        init_code=b"",
        call_data=bytes.fromhex("7bb37428") + bytes(96),
        call_gas_limit=2_000_000,
        verification_gas_limit=500_000,
        pre_verification_gas=60_000,
        max_fee_per_gas=10_000_000_000,
        max_priority_fee_per_gas=1_000_000_000,
    )
    return SafeOperation.from_user_operation(
        user_operation.replace(**changes), ENTRY_POINT, 1_700_000_000, 1_800_000_000
    )


def checksummed(message):
    return {
        key: to_checksum_address(value)
        if isinstance(value, str) and value.startswith("0x") and len(value) == 42
        else value
        for key, value in message.items()
    }


def test_encode_type_orders_dependencies():
    """
    Referenced struct types are appended after the primary type in name order.
    """
    assert encode_type("Mail", MAIL_TYPES) == \
        "Mail(Person from,Person to,string contents)Person(string name,address wallet)"


def test_nested_struct_hash_matches_eth_account():
    """
    Struct members are hashed recursively the way wallets do.
    """
    domain = TypedDataDomain(1, "0xCcCCccccCCCCcCCCCCCcCcCccCcCCCcCcccccccC")
    signable_message = encode_typed_data(full_message={
        "types": {**EIP712_DOMAIN_TYPES, **MAIL_TYPES},
        "primaryType": "Mail",
        "domain": domain.to_message(),
        "message": MAIL_MESSAGE,
    })
    assert hash_struct("Mail", MAIL_TYPES, MAIL_MESSAGE) == signable_message.body
    assert hash_typed_data(domain, "Mail", MAIL_TYPES, MAIL_MESSAGE) == \
        eth_account_hash(domain, "Mail", MAIL_TYPES, MAIL_MESSAGE)


def test_safe_op_hash_matches_eth_account():
    """
    The SafeOp digest equals the one a wallet computes for the same message.
    """
    operation = safe_operation()
    domain = TypedDataDomain(CHAIN_ID, SAFE_4337_MODULE)

    expected = eth_account_hash(
        domain, "SafeOp", SAFE_OP_TYPES, checksummed(operation.to_message()))

    assert operation.get_operation_hash(CHAIN_ID, SAFE_4337_MODULE) == expected


def test_safe_init_hash_matches_eth_account():
    initializer = SafeInitializer(
        singleton="0x29fcB43b46531BcA003ddC8FCB67FFE91900C762",
        signer_factory="0x1d31F259eE307358a26dFb23EB365939E8641195",
        signer_data=bytes(64),
        setup_to="0x2dd68b007B46fBe91B9A7c3EDa5A7a1063cB5b47",
        setup_data=bytes.fromhex("8d0dc49f") + bytes(64),
        fallback_handler=SAFE_4337_MODULE,
    )
    launchpad = "0x765d6d58F3Bd8A3C1a5bD0EEdB0Ac9e5a01c2b08"

    expected = eth_account_hash(
        TypedDataDomain(CHAIN_ID, launchpad),
        "SafeInit",
        SAFE_INIT_TYPES,
        checksummed(initializer.to_message()),
    )

    assert get_init_hash(initializer, launchpad, CHAIN_ID) == expected


def test_allowance_transfer_hash_matches_eth_account():
    allowance_module = "0xAA46724893dedD72658219405185Fb0Fc91e091C"
    transfer = AllowanceTransfer(
        safe=SENDER, token=RECIPIENT, to=RECIPIENT, amount=10**18, nonce=2)

    expected = eth_account_hash(
        TypedDataDomain(CHAIN_ID, allowance_module),
        "AllowanceTransfer",
        ALLOWANCE_TRANSFER_TYPES,
        {
            "safe": to_checksum_address(SENDER),
            "token": to_checksum_address(RECIPIENT),
            "to": to_checksum_address(RECIPIENT),
            "amount": 10**18,
            "paymentToken": "0x0000000000000000000000000000000000000000",
            "payment": 0,
            "nonce": 2,
        },
    )

    assert get_allowance_transfer_hash(
        transfer, allowance_module, CHAIN_ID) == expected


def test_safe_op_hash_is_deterministic():
    """
    Identical operations hash identically.
    """
    assert safe_operation().get_operation_hash(CHAIN_ID, SAFE_4337_MODULE) == \
        safe_operation().get_operation_hash(CHAIN_ID, SAFE_4337_MODULE)


@pytest.mark.parametrize("changes", [
    {"nonce": 4},
    {"init_code": bytes.fromhex("4e1dcf7ad4e460cfd30791ccc4f9c8a4f820ec67")},
    {"call_data": b"\x01"},
    {"call_gas_limit": 2_000_001},
    {"verification_gas_limit": 500_001},
    {"pre_verification_gas": 60_001},
    {"max_fee_per_gas": 10_000_000_001},
    {"max_priority_fee_per_gas": 1_000_000_001},
    {"paymaster_and_data": bytes.fromhex("11" * 20) + bytes(32)},
    {"sender": RECIPIENT},
])
def test_safe_op_hash_covers_every_field(changes):
    """
    Changing any covered operation field changes the digest.
    """
    base = safe_operation().get_operation_hash(CHAIN_ID, SAFE_4337_MODULE)
    assert safe_operation(**changes).get_operation_hash(
        CHAIN_ID, SAFE_4337_MODULE) != base


def test_safe_op_hash_covers_domain_and_window():
    operation = safe_operation()
    base = operation.get_operation_hash(CHAIN_ID, SAFE_4337_MODULE)

    assert operation.get_operation_hash(CHAIN_ID + 1, SAFE_4337_MODULE) != base
    assert operation.get_operation_hash(CHAIN_ID, RECIPIENT) != base
    for window_changes in (
        {"valid_after": 1}, {"valid_until": 2}, {"entry_point": RECIPIENT}
    ):
        changed = SafeOperation(**{**operation.__dict__, **window_changes})
        assert changed.get_operation_hash(CHAIN_ID, SAFE_4337_MODULE) != base


@pytest.mark.parametrize("field_name,value", [
    ("nonce", "3"),
    ("nonce", True),
    ("nonce", -1),
    ("validAfter", 2**48),
    ("safe", "0x1234"),
    ("initCode", "not hex"),
    ("callData", 12),
])
def test_invalid_field_value_is_rejected(field_name, value):
    """
    Values are checked against their declared type instead of being coerced.
    """
    message = safe_operation().to_message()
    message[field_name] = value
    with pytest.raises(EncodingException) as excinfo:
        hash_typed_data(
            TypedDataDomain(CHAIN_ID, SAFE_4337_MODULE), "SafeOp", SAFE_OP_TYPES, message)
    assert excinfo.value.exception_code == EncodingExceptionCode.InvalidFieldType


def test_missing_field_is_rejected():
    message = safe_operation().to_message()
    del message["entryPoint"]
    with pytest.raises(EncodingException) as excinfo:
        hash_struct("SafeOp", SAFE_OP_TYPES, message)
    assert excinfo.value.exception_code == EncodingExceptionCode.InvalidFieldType


def test_fixed_bytes_length_is_enforced():
    types = {"Check": [{"name": "digest", "type": "bytes32"}]}
    with pytest.raises(EncodingException):
        hash_struct("Check", types, {"digest": bytes(31)})
    hash_struct("Check", types, {"digest": bytes(32)})


def test_unknown_type_is_rejected():
    types = {"Check": [{"name": "value", "type": "uint7"}]}
    with pytest.raises(EncodingException) as excinfo:
        hash_struct("Check", types, {"value": 1})
    assert excinfo.value.exception_code == EncodingExceptionCode.UnknownType

    with pytest.raises(EncodingException) as excinfo:
        encode_type("Missing", types)
    assert excinfo.value.exception_code == EncodingExceptionCode.UnknownType
