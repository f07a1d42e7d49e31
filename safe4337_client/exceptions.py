from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ConfigurationExceptionCode(Enum):
    MissingSponsorshipPolicy = -32400
    MissingEndpoint = -32401
    UnsupportedEntryPoint = -32402
    InvalidFeeMultiplier = -32403
    ChainIdMismatch = -32404


@dataclass
class ConfigurationException(Exception):
    exception_code: ConfigurationExceptionCode
    message: str


class EncodingExceptionCode(Enum):
    InvalidFieldType = -32602
    UnknownType = -32610
    MalformedPackedField = -32611
    InvalidDeploymentNonce = -32612
    DuplicateSigner = -32613
    EmptySignature = -32614
    InvalidSignatureLength = -32615
    InvalidValidityWindow = -32616


@dataclass
class EncodingException(Exception):
    exception_code: EncodingExceptionCode
    message: str


class ExternalServiceExceptionCode(Enum):
    GasEstimationFailed = -32520
    SponsorshipFailed = -32521
    SubmissionFailed = -32522
    ChainQueryFailed = -32523


@dataclass
class ExternalServiceException(Exception):
    exception_code: ExternalServiceExceptionCode
    message: str
    stage: str
    request: dict[str, Any] = field(default_factory=dict)
    # error object exactly as returned by the remote service
    rpc_error: dict[str, Any] | None = None


class InclusionExceptionCode(Enum):
    InclusionTimeout = -32530
    InclusionCancelled = -32531
    ValidityWindowExpired = -32532


@dataclass
class InclusionException(Exception):
    exception_code: InclusionExceptionCode
    message: str


@dataclass
class RpcErrorException(Exception):
    code: int
    message: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


@dataclass
class TransportException(Exception):
    url: str
    message: str
