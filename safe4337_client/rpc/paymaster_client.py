import logging
from typing import Any

from safe4337_client.exceptions import (EncodingException,
                                        ExternalServiceException,
                                        ExternalServiceExceptionCode)
from safe4337_client.typing import Address
from safe4337_client.user_operation.models import SponsorshipResult
from safe4337_client.user_operation.user_operation import (
    UserOperation, build_paymaster_and_data, verify_and_get_address,
    verify_and_get_bytes, verify_and_get_uint)

from .transport import JsonRpcTransport, send_rpc_request

SPONSOR_USER_OPERATION_METHOD = "pm_sponsorUserOperation"
ALCHEMY_SPONSOR_USER_OPERATION_METHOD = "alchemy_requestGasAndPaymasterAndData"

REVISED_GAS_FIELDS = {
    "preVerificationGas": "pre_verification_gas",
    "verificationGasLimit": "verification_gas_limit",
    "callGasLimit": "call_gas_limit",
    "maxFeePerGas": "max_fee_per_gas",
    "maxPriorityFeePerGas": "max_priority_fee_per_gas",
}


def decode_sponsorship_result(result: dict[str, Any]) -> SponsorshipResult:
    """
    Accepts both a packed paymasterAndData and the decomposed
    paymaster fields of the v0.7 rpc shape.
    """
    if result.get("paymasterAndData") is not None:
        paymaster_and_data = verify_and_get_bytes(
            "paymasterAndData", result["paymasterAndData"])
    elif result.get("paymaster") is not None:
        paymaster_and_data = build_paymaster_and_data(
            verify_and_get_address("paymaster", result["paymaster"]),
            verify_and_get_uint(
                "paymasterVerificationGasLimit",
                result.get("paymasterVerificationGasLimit")),
            verify_and_get_uint(
                "paymasterPostOpGasLimit",
                result.get("paymasterPostOpGasLimit")),
            verify_and_get_bytes(
                "paymasterData", result.get("paymasterData", "0x")),
        )
    else:
        paymaster_and_data = b""

    revised_gas_fields = {
        field_name: verify_and_get_uint(key, result[key])
        for key, field_name in REVISED_GAS_FIELDS.items()
        if result.get(key) is not None
    }
    return SponsorshipResult(
        paymaster_and_data=paymaster_and_data, **revised_gas_fields)


class PaymasterClient:
    def __init__(
        self,
        transport: JsonRpcTransport,
        method: str = SPONSOR_USER_OPERATION_METHOD,
    ) -> None:
        self.transport = transport
        self.method = method

    def build_params(
        self,
        user_operation: UserOperation,
        entry_point: Address,
        sponsorship_policy_id: str,
    ) -> list[Any]:
        user_operation_json = user_operation.get_user_operation_json()
        if self.method == ALCHEMY_SPONSOR_USER_OPERATION_METHOD:
            return [{
                "policyId": sponsorship_policy_id,
                "entryPoint": entry_point,
                "dummySignature": user_operation_json.pop("signature"),
                "userOperation": user_operation_json,
            }]
        return [
            user_operation_json,
            entry_point,
            {"sponsorshipPolicyId": sponsorship_policy_id},
        ]

    async def sponsor_user_operation(
        self,
        user_operation: UserOperation,
        entry_point: Address,
        sponsorship_policy_id: str,
    ) -> SponsorshipResult:
        params = self.build_params(
            user_operation, entry_point, sponsorship_policy_id)
        result = await send_rpc_request(
            self.transport,
            self.method,
            params,
            ExternalServiceExceptionCode.SponsorshipFailed,
            "sponsorship",
        )
        try:
            sponsorship_result = decode_sponsorship_result(result)
        except (EncodingException, AttributeError) as excp:
            raise ExternalServiceException(
                ExternalServiceExceptionCode.SponsorshipFailed,
                f"Invalid sponsorship result : {result!r}",
                "sponsorship",
                {"method": self.method, "params": params},
            ) from excp
        if len(sponsorship_result.paymaster_and_data) == 0:
            raise ExternalServiceException(
                ExternalServiceExceptionCode.SponsorshipFailed,
                "Paymaster returned no paymasterAndData",
                "sponsorship",
                {"method": self.method, "params": params},
            )
        logging.debug(
            f"Sponsorship granted for {user_operation.sender} "
            f"with policy {sponsorship_policy_id}"
        )
        return sponsorship_result
