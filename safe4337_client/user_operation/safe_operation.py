import logging
from dataclasses import dataclass
from typing import Any

from safe4337_client.exceptions import EncodingException, EncodingExceptionCode
from safe4337_client.safe.account import encode_execute_user_op
from safe4337_client.typed_data.eip712 import TypedDataDomain, hash_typed_data
from safe4337_client.typed_data.schemas import SAFE_OP_TYPES
from safe4337_client.typing import Address
from safe4337_client.user_operation.models import MetaTransaction, SafeAccount
from safe4337_client.user_operation.user_operation import UserOperation

PLACEHOLDER_CALL_GAS_LIMIT = 2_000_000
PLACEHOLDER_VERIFICATION_GAS_LIMIT = 500_000
PLACEHOLDER_PRE_VERIFICATION_GAS = 60_000
PLACEHOLDER_FEE_PER_GAS = 10_000_000_000  # 10 gwei


@dataclass(frozen=True)
class SafeOperation:
    safe: Address
    nonce: int
    init_code: bytes
    call_data: bytes
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    paymaster_and_data: bytes
    valid_after: int
    valid_until: int
    entry_point: Address

    @classmethod
    def from_user_operation(
        cls,
        user_operation: UserOperation,
        entry_point: Address,
        valid_after: int = 0,
        valid_until: int = 0,
    ) -> "SafeOperation":
        return cls(
            safe=user_operation.sender,
            nonce=user_operation.nonce,
            init_code=user_operation.init_code,
            call_data=user_operation.call_data,
            call_gas_limit=user_operation.call_gas_limit,
            verification_gas_limit=user_operation.verification_gas_limit,
            pre_verification_gas=user_operation.pre_verification_gas,
            max_fee_per_gas=user_operation.max_fee_per_gas,
            max_priority_fee_per_gas=user_operation.max_priority_fee_per_gas,
            paymaster_and_data=user_operation.paymaster_and_data,
            valid_after=valid_after,
            valid_until=valid_until,
            entry_point=entry_point,
        )

    def to_message(self) -> dict[str, Any]:
        return {
            "safe": self.safe,
            "nonce": self.nonce,
            "initCode": self.init_code,
            "callData": self.call_data,
            "callGasLimit": self.call_gas_limit,
            "verificationGasLimit": self.verification_gas_limit,
            "preVerificationGas": self.pre_verification_gas,
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            "paymasterAndData": self.paymaster_and_data,
            "validAfter": self.valid_after,
            "validUntil": self.valid_until,
            "entryPoint": self.entry_point,
        }

    def get_operation_hash(self, chain_id: int, module_address: Address) -> bytes:
        return hash_typed_data(
            TypedDataDomain(chain_id, module_address),
            "SafeOp",
            SAFE_OP_TYPES,
            self.to_message(),
        )


def compute_operation_hash(
    user_operation: UserOperation,
    entry_point: Address,
    chain_id: int,
    module_address: Address,
    valid_after: int = 0,
    valid_until: int = 0,
) -> bytes:
    return SafeOperation.from_user_operation(
        user_operation, entry_point, valid_after, valid_until
    ).get_operation_hash(chain_id, module_address)


def build_unsigned(
    call: MetaTransaction,
    account: SafeAccount,
    nonce: int,
    init_code: bytes | None = None,
) -> UserOperation:
    if init_code is None:
        init_code = account.init_code
    if len(init_code) > 0 and nonce & (2**64 - 1) != 0:
        raise EncodingException(
            EncodingExceptionCode.InvalidDeploymentNonce,
            f"Account {account.address} is not deployed, "
            f"nonce sequence must be 0 but got nonce {hex(nonce)}",
        )
    user_operation = UserOperation(
        sender=account.address,
        nonce=nonce,
        init_code=init_code,
        call_data=encode_execute_user_op(call),
        call_gas_limit=PLACEHOLDER_CALL_GAS_LIMIT,
        verification_gas_limit=PLACEHOLDER_VERIFICATION_GAS_LIMIT,
        pre_verification_gas=PLACEHOLDER_PRE_VERIFICATION_GAS,
        max_fee_per_gas=PLACEHOLDER_FEE_PER_GAS,
        max_priority_fee_per_gas=PLACEHOLDER_FEE_PER_GAS,
    )
    logging.debug(
        f"Built unsigned UserOperation for {account.address} "
        f"with nonce {hex(nonce)}"
    )
    return user_operation
