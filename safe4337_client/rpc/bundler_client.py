import logging
from typing import Any

from safe4337_client.exceptions import (EncodingException,
                                        ExternalServiceException,
                                        ExternalServiceExceptionCode)
from safe4337_client.typing import Address, UserOperationHash
from safe4337_client.user_operation.models import (GasEstimate, ReceiptInfo,
                                                   UserOperationReceipt)
from safe4337_client.user_operation.user_operation import (
    UserOperation, user_operation_from_json, verify_and_get_address,
    verify_and_get_uint)

from .transport import JsonRpcTransport, send_rpc_request


def decode_gas_estimate(result: Any) -> GasEstimate:
    paymaster_verification_gas_limit = result.get("paymasterVerificationGasLimit")
    paymaster_post_op_gas_limit = result.get("paymasterPostOpGasLimit")
    return GasEstimate(
        pre_verification_gas=verify_and_get_uint(
            "preVerificationGas", result.get("preVerificationGas")),
        verification_gas_limit=verify_and_get_uint(
            "verificationGasLimit", result.get("verificationGasLimit")),
        call_gas_limit=verify_and_get_uint(
            "callGasLimit", result.get("callGasLimit")),
        paymaster_verification_gas_limit=None
        if paymaster_verification_gas_limit is None
        else verify_and_get_uint(
            "paymasterVerificationGasLimit", paymaster_verification_gas_limit),
        paymaster_post_op_gas_limit=None
        if paymaster_post_op_gas_limit is None
        else verify_and_get_uint(
            "paymasterPostOpGasLimit", paymaster_post_op_gas_limit),
    )


def decode_receipt_info(receipt: dict[str, Any]) -> ReceiptInfo:
    return ReceiptInfo(
        transaction_hash=receipt["transactionHash"],
        transaction_index=receipt["transactionIndex"],
        block_hash=receipt["blockHash"],
        block_number=receipt["blockNumber"],
        from_address=receipt["from"],
        to_address=receipt.get("to"),
        cumulative_gas_used=receipt["cumulativeGasUsed"],
        gas_used=receipt["gasUsed"],
        contract_address=receipt.get("contractAddress"),
        logs=receipt.get("logs", []),
        logs_bloom=receipt.get("logsBloom", "0x"),
        status=receipt["status"],
        effective_gas_price=receipt.get("effectiveGasPrice", "0x0"),
    )


def decode_user_operation_receipt(result: dict[str, Any]) -> UserOperationReceipt:
    receipt = result.get("receipt")
    return UserOperationReceipt(
        user_operation_hash=result["userOpHash"],
        entry_point=result["entryPoint"],
        sender=result["sender"],
        nonce=verify_and_get_uint("nonce", result["nonce"]),
        paymaster=result.get("paymaster"),
        actual_gas_cost=verify_and_get_uint(
            "actualGasCost", result["actualGasCost"]),
        actual_gas_used=verify_and_get_uint(
            "actualGasUsed", result["actualGasUsed"]),
        success=result["success"],
        reason=result.get("reason"),
        logs=result.get("logs", []),
        receipt=None if receipt is None else decode_receipt_info(receipt),
    )


class BundlerClient:
    def __init__(self, transport: JsonRpcTransport) -> None:
        self.transport = transport

    async def supported_entry_points(self) -> list[Address]:
        result = await send_rpc_request(
            self.transport,
            "eth_supportedEntryPoints",
            [],
            ExternalServiceExceptionCode.ChainQueryFailed,
            "supported entry points",
        )
        return [
            verify_and_get_address("entryPoint", entry_point)
            for entry_point in result
        ]

    async def estimate_user_operation_gas(
        self, user_operation: UserOperation, entry_point: Address
    ) -> GasEstimate:
        params = [user_operation.get_user_operation_json(), entry_point]
        result = await send_rpc_request(
            self.transport,
            "eth_estimateUserOperationGas",
            params,
            ExternalServiceExceptionCode.GasEstimationFailed,
            "gas estimation",
        )
        try:
            return decode_gas_estimate(result)
        except (EncodingException, AttributeError) as excp:
            raise ExternalServiceException(
                ExternalServiceExceptionCode.GasEstimationFailed,
                f"Invalid gas estimation result : {result!r}",
                "gas estimation",
                {"method": "eth_estimateUserOperationGas", "params": params},
            ) from excp

    async def send_user_operation(
        self, user_operation: UserOperation, entry_point: Address
    ) -> UserOperationHash:
        params = [user_operation.get_user_operation_json(), entry_point]
        result = await send_rpc_request(
            self.transport,
            "eth_sendUserOperation",
            params,
            ExternalServiceExceptionCode.SubmissionFailed,
            "submission",
        )
        logging.info(f"UserOperation submitted with hash {result}")
        return UserOperationHash(result)

    async def get_user_operation_by_hash(
        self, user_operation_hash: UserOperationHash
    ) -> UserOperation | None:
        result = await send_rpc_request(
            self.transport,
            "eth_getUserOperationByHash",
            [user_operation_hash],
            ExternalServiceExceptionCode.ChainQueryFailed,
            "user operation lookup",
        )
        if result is None:
            return None
        return user_operation_from_json(result["userOperation"])

    async def get_user_operation_receipt(
        self, user_operation_hash: UserOperationHash
    ) -> UserOperationReceipt | None:
        result = await send_rpc_request(
            self.transport,
            "eth_getUserOperationReceipt",
            [user_operation_hash],
            ExternalServiceExceptionCode.ChainQueryFailed,
            "receipt lookup",
        )
        if result is None:
            return None
        try:
            return decode_user_operation_receipt(result)
        except (EncodingException, KeyError, TypeError, AttributeError) as excp:
            raise ExternalServiceException(
                ExternalServiceExceptionCode.ChainQueryFailed,
                f"Invalid user operation receipt : {result!r}",
                "receipt lookup",
                {"method": "eth_getUserOperationReceipt",
                 "params": [user_operation_hash]},
            ) from excp
