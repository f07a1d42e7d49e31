from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from safe4337_client.typing import (Address, TransactionHash,
                                    UserOperationHash)


class OperationType(IntEnum):
    Call = 0
    DelegateCall = 1


@dataclass(frozen=True)
class MetaTransaction:
    to: Address
    value: int
    data: bytes = b""
    operation: OperationType = OperationType.Call


@dataclass(frozen=True)
class SafeAccount:
    address: Address
    # factory address + deployment call data, empty once deployed
    init_code: bytes = b""
    nonce_key: int = 0


@dataclass(frozen=True)
class FeeData:
    max_fee_per_gas: int
    max_priority_fee_per_gas: int


@dataclass(frozen=True)
class GasEstimate:
    pre_verification_gas: int
    verification_gas_limit: int
    call_gas_limit: int
    paymaster_verification_gas_limit: int | None = None
    paymaster_post_op_gas_limit: int | None = None


@dataclass(frozen=True)
class SponsorshipResult:
    paymaster_and_data: bytes
    pre_verification_gas: int | None = None
    verification_gas_limit: int | None = None
    call_gas_limit: int | None = None
    max_fee_per_gas: int | None = None
    max_priority_fee_per_gas: int | None = None


@dataclass
class DepositInfo:
    deposit: int
    staked: bool
    stake: int
    unstake_delay_sec: int
    withdraw_time: int


@dataclass
class ReceiptInfo:
    transaction_hash: TransactionHash
    transaction_index: str
    block_hash: str
    block_number: str
    from_address: Address
    to_address: Address | None
    cumulative_gas_used: str
    gas_used: str
    contract_address: Address | None
    logs: list[Any]
    logs_bloom: str
    status: str
    effective_gas_price: str


@dataclass
class UserOperationReceipt:
    user_operation_hash: UserOperationHash
    entry_point: Address
    sender: Address
    nonce: int
    paymaster: Address | None
    actual_gas_cost: int
    actual_gas_used: int
    success: bool
    reason: str | None
    logs: list[Any] = field(default_factory=list)
    receipt: ReceiptInfo | None = None
