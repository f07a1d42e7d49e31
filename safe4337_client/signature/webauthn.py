import re
from dataclasses import dataclass

from eth_abi import encode

from safe4337_client.exceptions import EncodingException, EncodingExceptionCode

USER_VERIFICATION_PREFERRED = 0x01
USER_VERIFICATION_REQUIRED = 0x04

CLIENT_DATA_FIELDS_PATTERN = re.compile(
    r'^\{"type":"webauthn.get","challenge":"[A-Za-z0-9\-_]{43}",(.*)\}$',
    re.DOTALL,
)

DUMMY_CLIENT_DATA_FIELDS = ",".join([
    '"origin":"http://safe.global"',
    '"padding":"This pads the clientDataJSON so that we can leave room for '
    "additional implementation specific fields for a more accurate "
    "'preVerificationGas' estimate.\"",
])

# rp id hash (32 bytes) + flags (1 byte) + signature counter (4 bytes)
DUMMY_AUTHENTICATOR_DATA = (
    b"\xfe" * 32 + bytes([USER_VERIFICATION_REQUIRED]) + b"\xfe" * 4
)
DUMMY_R = int("ec" * 32, 16)
DUMMY_S = int("d5a" * 21 + "f", 16)


@dataclass(frozen=True)
class WebAuthnAssertion:
    """
    Raw authenticator response of a navigator.credentials.get() call.
    """
    authenticator_data: bytes
    client_data_json: bytes
    # ASN.1 DER encoded P-256 signature
    signature: bytes


def extract_client_data_fields(client_data_json: bytes) -> str:
    try:
        decoded = client_data_json.decode("utf-8")
    except UnicodeDecodeError as excp:
        raise EncodingException(
            EncodingExceptionCode.InvalidFieldType,
            "client data JSON is not valid UTF-8",
        ) from excp
    match = CLIENT_DATA_FIELDS_PATTERN.match(decoded)
    if match is None:
        raise EncodingException(
            EncodingExceptionCode.InvalidFieldType,
            "challenge not found in client data JSON",
        )
    return match.group(1)


def extract_signature(der_signature: bytes) -> tuple[int, int]:
    def check(condition: bool) -> None:
        if not condition:
            raise EncodingException(
                EncodingExceptionCode.InvalidFieldType,
                "invalid signature encoding",
            )

    def read_int(offset: int) -> tuple[int, int]:
        check(len(der_signature) > offset + 1 and der_signature[offset] == 0x02)
        length = der_signature[offset + 1]
        start = offset + 2
        end = start + length
        check(end <= len(der_signature))
        value = int.from_bytes(der_signature[start:end], "big")
        check(value < 2**256)
        return value, end

    check(len(der_signature) > 2 and der_signature[0] == 0x30)
    check(der_signature[1] == len(der_signature) - 2)
    r, s_offset = read_int(2)
    s, _ = read_int(s_offset)
    return r, s


def encode_webauthn_signature(
    authenticator_data: bytes, client_data_fields: str, r: int, s: int
) -> bytes:
    return encode(
        ["bytes", "string", "uint256", "uint256"],
        [authenticator_data, client_data_fields, r, s],
    )


def encode_webauthn_assertion(assertion: WebAuthnAssertion) -> bytes:
    r, s = extract_signature(assertion.signature)
    return encode_webauthn_signature(
        assertion.authenticator_data,
        extract_client_data_fields(assertion.client_data_json),
        r,
        s,
    )


def get_dummy_webauthn_signature() -> bytes:
    return encode_webauthn_signature(
        DUMMY_AUTHENTICATOR_DATA, DUMMY_CLIENT_DATA_FIELDS, DUMMY_R, DUMMY_S
    )
