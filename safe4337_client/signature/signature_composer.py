"""
Safe signature bytes.

Static entries are 65 byte ECDSA style slots. A contract signature takes a
65 byte slot as well, holding the verifier address, the position of its
data and a zero type byte:

    {32-bytes signature verifier}{32-bytes dynamic data position}{0x00}

The position is counted from the start of the signature bytes and points
into the dynamic part appended after all slots:

    {32-bytes signature length}{bytes signature data}

Operations validated by the Safe4337Module are prefixed with a 12 bytes
validity window, uint48 validAfter followed by uint48 validUntil.
"""
from dataclasses import dataclass
from typing import ClassVar

from safe4337_client.exceptions import EncodingException, EncodingExceptionCode
from safe4337_client.typing import Address
from safe4337_client.utils.encode import address_to_bytes

SIGNATURE_SLOT_LENGTH = 65
VALIDITY_WINDOW_LENGTH = 12
UINT48_MAX = 2**48 - 1


@dataclass(frozen=True)
class SignatureEntry:
    signer: Address
    data: bytes
    dynamic: ClassVar[bool] = False


@dataclass(frozen=True)
class EcdsaSignature(SignatureEntry):
    dynamic: ClassVar[bool] = False


@dataclass(frozen=True)
class ContractSignature(SignatureEntry):
    dynamic: ClassVar[bool] = True


def encode_validity_window(valid_after: int, valid_until: int) -> bytes:
    for name, value in (("validAfter", valid_after), ("validUntil", valid_until)):
        if isinstance(value, bool) or not isinstance(value, int) or \
                not 0 <= value <= UINT48_MAX:
            raise EncodingException(
                EncodingExceptionCode.InvalidValidityWindow,
                f"{name} does not fit in 48 bits : {value!r}",
            )
    return valid_after.to_bytes(6, "big") + valid_until.to_bytes(6, "big")


def decode_validity_window(signature: bytes) -> tuple[int, int, bytes]:
    if len(signature) < VALIDITY_WINDOW_LENGTH:
        raise EncodingException(
            EncodingExceptionCode.InvalidSignatureLength,
            "signature is shorter than the validity window",
        )
    return (
        int.from_bytes(signature[:6], "big"),
        int.from_bytes(signature[6:12], "big"),
        signature[VALIDITY_WINDOW_LENGTH:],
    )


def _verify_entries(entries: list[SignatureEntry]) -> None:
    if len(entries) == 0:
        raise EncodingException(
            EncodingExceptionCode.EmptySignature,
            "At least one owner signature is required",
        )
    signers = set()
    for entry in entries:
        signer = entry.signer.lower()
        if signer in signers:
            raise EncodingException(
                EncodingExceptionCode.DuplicateSigner,
                f"Duplicate signature for signer {entry.signer}",
            )
        signers.add(signer)
        if len(entry.data) == 0:
            raise EncodingException(
                EncodingExceptionCode.EmptySignature,
                f"Empty signature for signer {entry.signer}",
            )
        if not entry.dynamic and len(entry.data) != SIGNATURE_SLOT_LENGTH:
            raise EncodingException(
                EncodingExceptionCode.InvalidSignatureLength,
                f"Signature for signer {entry.signer} must be "
                f"{SIGNATURE_SLOT_LENGTH} bytes, got {len(entry.data)}",
            )


def compose_signatures(
    entries: list[SignatureEntry],
    valid_after: int = 0,
    valid_until: int = 0,
    with_validity_window: bool = True,
) -> bytes:
    if not with_validity_window and (valid_after != 0 or valid_until != 0):
        raise EncodingException(
            EncodingExceptionCode.InvalidValidityWindow,
            "A validity window was given for a signature without window prefix",
        )
    _verify_entries(entries)

    sorted_entries = sorted(entries, key=lambda entry: entry.signer.lower())
    static_part = b""
    dynamic_part = b""
    for entry in sorted_entries:
        if entry.dynamic:
            dynamic_position = (
                len(sorted_entries) * SIGNATURE_SLOT_LENGTH + len(dynamic_part)
            )
            static_part += (
                bytes(12) + address_to_bytes(entry.signer) +
                dynamic_position.to_bytes(32, "big") +
                b"\x00"
            )
            dynamic_part += len(entry.data).to_bytes(32, "big") + entry.data
        else:
            static_part += entry.data

    signature = static_part + dynamic_part
    if with_validity_window:
        signature = encode_validity_window(valid_after, valid_until) + signature
    return signature
