from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from eth_account import Account
from eth_account.messages import encode_defunct

from safe4337_client.typed_data.eip712 import TypedDataDomain, hash_typed_data
from safe4337_client.typed_data.schemas import SAFE_MESSAGE_TYPES
from safe4337_client.typing import Address
from safe4337_client.utils.encode import address_to_bytes

from .signature_composer import (ContractSignature, EcdsaSignature,
                                 SignatureEntry, compose_signatures)
from .webauthn import (WebAuthnAssertion, encode_webauthn_assertion,
                       get_dummy_webauthn_signature)

# r, s and v of a well formed signature that never recovers to an owner
DUMMY_ECDSA_SIGNATURE = bytes.fromhex(
    "fffffffffffffffffffffffffffffff000000000000000000000000000000000"
    "7aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa7aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
    "1c"
)


def prevalidated_signature(signer: Address) -> bytes:
    return bytes(12) + address_to_bytes(signer) + bytes(32) + b"\x01"


class Signer(ABC):
    address: Address
    is_contract: bool = False

    @abstractmethod
    async def sign_hash(self, message_hash: bytes) -> bytes:
        pass

    @abstractmethod
    def get_dummy_signature(self) -> bytes:
        pass


class LocalAccountSigner(Signer):
    """
    Signs with a private key held in memory. With eth_sign the hash is
    signed as an EIP-191 personal message and v is shifted by 4, the Safe
    marker for that scheme.
    """

    def __init__(self, private_key: str | bytes, eth_sign: bool = False) -> None:
        self.account = Account.from_key(private_key)
        self.address = Address(self.account.address)
        self.eth_sign = eth_sign

    async def sign_hash(self, message_hash: bytes) -> bytes:
        if self.eth_sign:
            signed_message = self.account.sign_message(
                encode_defunct(primitive=message_hash)
            )
            signature = bytearray(signed_message.signature)
            signature[64] += 4
            return bytes(signature)
        return bytes(self.account.unsafe_sign_hash(message_hash).signature)

    def get_dummy_signature(self) -> bytes:
        return DUMMY_ECDSA_SIGNATURE


class PrevalidatedSigner(Signer):
    """
    Owner that approved the hash on chain or is the transaction sender.
    """

    def __init__(self, address: Address) -> None:
        self.address = address

    async def sign_hash(self, message_hash: bytes) -> bytes:
        return prevalidated_signature(self.address)

    def get_dummy_signature(self) -> bytes:
        return prevalidated_signature(self.address)


class WebAuthnSigner(Signer):
    is_contract = True

    def __init__(
        self,
        address: Address,
        authenticator: Callable[[bytes], Awaitable[WebAuthnAssertion]],
    ) -> None:
        self.address = address
        self.authenticator = authenticator

    async def sign_hash(self, message_hash: bytes) -> bytes:
        assertion = await self.authenticator(message_hash)
        return encode_webauthn_assertion(assertion)

    def get_dummy_signature(self) -> bytes:
        return get_dummy_webauthn_signature()


class NestedSafeSigner(Signer):
    """
    A Safe owning another Safe, its owners sign the SafeMessage wrapping
    the hash and the account verifies it through EIP-1271.
    """
    is_contract = True

    def __init__(self, address: Address, chain_id: int, owners: list[Signer]) -> None:
        self.address = address
        self.chain_id = chain_id
        self.owners = owners

    def get_message_hash(self, message_hash: bytes) -> bytes:
        return hash_typed_data(
            TypedDataDomain(self.chain_id, self.address),
            "SafeMessage",
            SAFE_MESSAGE_TYPES,
            {"message": message_hash},
        )

    async def sign_hash(self, message_hash: bytes) -> bytes:
        safe_message_hash = self.get_message_hash(message_hash)
        entries = [
            await sign_operation_hash(safe_message_hash, owner)
            for owner in self.owners
        ]
        return compose_signatures(entries, with_validity_window=False)

    def get_dummy_signature(self) -> bytes:
        return compose_signatures(
            [dummy_signature_entry(owner) for owner in self.owners],
            with_validity_window=False,
        )


def _to_entry(signer: Signer, data: bytes) -> SignatureEntry:
    if signer.is_contract:
        return ContractSignature(signer.address, data)
    return EcdsaSignature(signer.address, data)


async def sign_operation_hash(operation_hash: bytes, signer: Signer) -> SignatureEntry:
    return _to_entry(signer, await signer.sign_hash(operation_hash))


def dummy_signature_entry(signer: Signer) -> SignatureEntry:
    return _to_entry(signer, signer.get_dummy_signature())


def build_dummy_signature(
    signers: list[Signer], with_validity_window: bool = True
) -> bytes:
    return compose_signatures(
        [dummy_signature_entry(signer) for signer in signers],
        with_validity_window=with_validity_window,
    )
