import asyncio
import logging
from typing import Any

from eth_abi import decode
from eth_abi.exceptions import DecodingError

from safe4337_client.exceptions import (EncodingException,
                                        ExternalServiceException,
                                        ExternalServiceExceptionCode)
from safe4337_client.typing import Address, TransactionHash
from safe4337_client.user_operation.models import DepositInfo, FeeData
from safe4337_client.user_operation.user_operation import (
    PackedUserOperation, verify_and_get_uint)
from safe4337_client.utils.encode import (encode_function_call, hex_to_bytes,
                                          normalize_address)

from .bundler_client import decode_receipt_info
from .transport import JsonRpcTransport, send_rpc_request

CHAIN_QUERY = ExternalServiceExceptionCode.ChainQueryFailed
DEFAULT_MAX_PRIORITY_FEE_PER_GAS = 1_000_000_000


class ChainClient:
    def __init__(self, transport: JsonRpcTransport, is_legacy_mode: bool = False) -> None:
        self.transport = transport
        self.is_legacy_mode = is_legacy_mode

    async def _eth_call(self, to: Address, call_data: str, stage: str) -> bytes:
        result = await send_rpc_request(
            self.transport,
            "eth_call",
            [{"to": to, "data": call_data}, "latest"],
            CHAIN_QUERY,
            stage,
        )
        return hex_to_bytes(result)

    def _decode(self, types: list[str], data: bytes, stage: str) -> tuple[Any, ...]:
        try:
            return decode(types, data)
        except DecodingError as excp:
            logging.critical(f"{stage} eth_call returned undecodable data")
            raise ExternalServiceException(
                CHAIN_QUERY,
                f"{stage} eth_call returned undecodable data : 0x{data.hex()}",
                stage,
            ) from excp

    async def get_chain_id(self) -> int:
        result = await send_rpc_request(
            self.transport, "eth_chainId", [], CHAIN_QUERY, "chain id")
        return int(result, 16)

    async def get_nonce(self, entry_point: Address, sender: Address, key: int = 0) -> int:
        call_data = encode_function_call(
            "getNonce(address,uint192)",
            ["address", "uint192"],
            [normalize_address(sender), key],
        )
        result = await self._eth_call(entry_point, call_data, "nonce")
        return self._decode(["uint256"], result, "nonce")[0]

    async def get_code(self, address: Address) -> bytes:
        result = await send_rpc_request(
            self.transport,
            "eth_getCode",
            [address, "latest"],
            CHAIN_QUERY,
            "deployment check",
        )
        return hex_to_bytes(result)

    async def is_deployed(self, address: Address) -> bool:
        return len(await self.get_code(address)) > 0

    async def get_balance(self, address: Address) -> int:
        result = await send_rpc_request(
            self.transport,
            "eth_getBalance",
            [address, "latest"],
            CHAIN_QUERY,
            "balance",
        )
        return int(result, 16)

    async def get_deposit_info(self, entry_point: Address, address: Address) -> DepositInfo:
        call_data = encode_function_call(
            "getDepositInfo(address)", ["address"], [normalize_address(address)]
        )
        result = await self._eth_call(entry_point, call_data, "deposit info")
        (deposit, staked, stake, unstake_delay_sec, withdraw_time) = self._decode(
            ["(uint256,bool,uint112,uint32,uint48)"], result, "deposit info"
        )[0]
        return DepositInfo(deposit, staked, stake, unstake_delay_sec, withdraw_time)

    async def get_supported_entry_point(self, module: Address) -> Address:
        call_data = encode_function_call("SUPPORTED_ENTRYPOINT()", [], [])
        result = await self._eth_call(module, call_data, "module entry point")
        return Address(self._decode(["address"], result, "module entry point")[0])

    async def get_operation_hash(
        self, module: Address, packed_user_operation: PackedUserOperation
    ) -> bytes:
        call_data = encode_function_call(
            "getOperationHash((address,uint256,bytes,bytes,bytes32,uint256,bytes32,bytes,bytes))",
            ["(address,uint256,bytes,bytes,bytes32,uint256,bytes32,bytes,bytes)"],
            [packed_user_operation.to_list()],
        )
        result = await self._eth_call(module, call_data, "operation hash")
        return self._decode(["bytes32"], result, "operation hash")[0]

    async def get_block_timestamp(self, block: str = "latest") -> int:
        result = await send_rpc_request(
            self.transport,
            "eth_getBlockByNumber",
            [block, False],
            CHAIN_QUERY,
            "block",
        )
        if result is None:
            raise ExternalServiceException(
                CHAIN_QUERY, f"block {block} not found", "block")
        return int(result["timestamp"], 16)

    async def get_fee_data(self) -> FeeData:
        if self.is_legacy_mode:
            gas_price = await send_rpc_request(
                self.transport, "eth_gasPrice", [], CHAIN_QUERY, "fee data")
            return FeeData(int(gas_price, 16), int(gas_price, 16))

        block, max_priority_fee_per_gas_hex = await asyncio.gather(
            send_rpc_request(
                self.transport,
                "eth_getBlockByNumber",
                ["latest", False],
                CHAIN_QUERY,
                "fee data",
            ),
            send_rpc_request(
                self.transport,
                "eth_maxPriorityFeePerGas",
                [],
                CHAIN_QUERY,
                "fee data",
            ),
        )
        if block is None:
            raise ExternalServiceException(
                CHAIN_QUERY, "latest block not found", "fee data")
        try:
            base_fee = verify_and_get_uint("baseFeePerGas", block.get("baseFeePerGas"))
        except EncodingException as excp:
            raise ExternalServiceException(
                CHAIN_QUERY,
                "latest block has no baseFeePerGas, use legacy mode",
                "fee data",
            ) from excp
        max_priority_fee_per_gas = int(max_priority_fee_per_gas_hex, 16)
        if max_priority_fee_per_gas == 0:
            max_priority_fee_per_gas = DEFAULT_MAX_PRIORITY_FEE_PER_GAS
        return FeeData(
            max_fee_per_gas=2 * base_fee + max_priority_fee_per_gas,
            max_priority_fee_per_gas=max_priority_fee_per_gas,
        )

    async def get_transaction_receipt(self, transaction_hash: TransactionHash):
        result = await send_rpc_request(
            self.transport,
            "eth_getTransactionReceipt",
            [transaction_hash],
            CHAIN_QUERY,
            "transaction receipt",
        )
        if result is None:
            return None
        return decode_receipt_info(result)
