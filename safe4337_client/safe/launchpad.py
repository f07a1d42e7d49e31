"""
Hashes signed when an account is deployed through the signer launchpad.

The launchpad is set as the proxy singleton until the first UserOperation
runs, so the initial operation is authorized by a SafeInitOp over the
ERC-4337 UserOperation hash instead of the module SafeOp message.
"""
from dataclasses import dataclass
from typing import Any

from safe4337_client.typed_data.eip712 import TypedDataDomain, hash_typed_data
from safe4337_client.typed_data.schemas import (SAFE_INIT_OP_TYPES,
                                                SAFE_INIT_TYPES)
from safe4337_client.typing import Address
from safe4337_client.user_operation.user_operation import (
    UserOperation, get_user_operation_hash, pack)


@dataclass(frozen=True)
class SafeInitializer:
    singleton: Address
    signer_factory: Address
    signer_data: bytes
    setup_to: Address
    setup_data: bytes
    fallback_handler: Address

    def to_message(self) -> dict[str, Any]:
        return {
            "singleton": self.singleton,
            "signerFactory": self.signer_factory,
            "signerData": self.signer_data,
            "setupTo": self.setup_to,
            "setupData": self.setup_data,
            "fallbackHandler": self.fallback_handler,
        }


def get_init_hash(
    initializer: SafeInitializer, launchpad: Address, chain_id: int
) -> bytes:
    return hash_typed_data(
        TypedDataDomain(chain_id, launchpad),
        "SafeInit",
        SAFE_INIT_TYPES,
        initializer.to_message(),
    )


def get_init_operation_hash(
    user_operation: UserOperation,
    entry_point: Address,
    launchpad: Address,
    chain_id: int,
    valid_after: int = 0,
    valid_until: int = 0,
) -> bytes:
    user_operation_hash = get_user_operation_hash(
        pack(user_operation), entry_point, chain_id
    )
    return hash_typed_data(
        TypedDataDomain(chain_id, launchpad),
        "SafeInitOp",
        SAFE_INIT_OP_TYPES,
        {
            "userOpHash": user_operation_hash,
            "validAfter": valid_after,
            "validUntil": valid_until,
            "entryPoint": entry_point,
        },
    )
