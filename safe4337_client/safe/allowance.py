from dataclasses import dataclass

from safe4337_client.typed_data.eip712 import TypedDataDomain, hash_typed_data
from safe4337_client.typed_data.schemas import ALLOWANCE_TRANSFER_TYPES
from safe4337_client.typing import Address
from safe4337_client.utils.encode import ZERO_ADDRESS


@dataclass(frozen=True)
class AllowanceTransfer:
    safe: Address
    token: Address
    to: Address
    amount: int
    nonce: int
    payment_token: Address = ZERO_ADDRESS
    payment: int = 0


def get_allowance_transfer_hash(
    transfer: AllowanceTransfer, allowance_module: Address, chain_id: int
) -> bytes:
    return hash_typed_data(
        TypedDataDomain(chain_id, allowance_module),
        "AllowanceTransfer",
        ALLOWANCE_TRANSFER_TYPES,
        {
            "safe": transfer.safe,
            "token": transfer.token,
            "to": transfer.to,
            "amount": transfer.amount,
            "paymentToken": transfer.payment_token,
            "payment": transfer.payment,
            "nonce": transfer.nonce,
        },
    )
