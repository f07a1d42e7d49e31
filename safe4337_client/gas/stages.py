from dataclasses import dataclass
from enum import Enum

from safe4337_client.typing import Address
from safe4337_client.user_operation.models import (FeeData, GasEstimate,
                                                   SponsorshipResult)
from safe4337_client.user_operation.user_operation import UserOperation


class OperationStage(Enum):
    Unestimated = "unestimated"
    Estimated = "estimated"
    Sponsored = "sponsored"
    ReadyToSign = "ready_to_sign"
    Signed = "signed"
    Submitted = "submitted"
    Included = "included"
    TimedOut = "timed_out"

    def __str__(self):
        return self.value


@dataclass(frozen=True)
class UnestimatedOperation:
    user_operation: UserOperation
    entry_point: Address


@dataclass(frozen=True)
class EstimatedOperation:
    # carries the placeholder signature used for estimation
    user_operation: UserOperation
    entry_point: Address
    gas_estimate: GasEstimate
    fee_data: FeeData


@dataclass(frozen=True)
class SponsoredOperation:
    user_operation: UserOperation
    entry_point: Address
    sponsorship: SponsorshipResult


@dataclass(frozen=True)
class ReadyToSignOperation:
    user_operation: UserOperation
    entry_point: Address
    valid_after: int
    valid_until: int
    # None when a paymaster pays for the operation
    required_funds: int | None


@dataclass(frozen=True)
class SignedOperation:
    user_operation: UserOperation
    entry_point: Address
    operation_hash: bytes
    valid_after: int
    valid_until: int
