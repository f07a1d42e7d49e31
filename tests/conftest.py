from typing import Any, Callable

import pytest
from eth_abi import encode

from safe4337_client.exceptions import RpcErrorException
from safe4337_client.rpc.transport import JsonRpcTransport
from safe4337_client.signature.signers import LocalAccountSigner
from safe4337_client.typing import Address
from safe4337_client.user_operation.models import MetaTransaction, SafeAccount
from safe4337_client.utils.encode import function_selector

CHAIN_ID = 1337
ENTRY_POINT = Address("0x0000000071727De22E5E9d8BAf0edAc6f37da032")
SAFE_4337_MODULE = Address("0x75cf11467937ce3F2f357CE24ffc3DBF8fD5c226")
SENDER = Address("0xAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA")
RECIPIENT = Address("0xBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBB")
PAYMASTER = Address("0x1111111111111111111111111111111111111111")

OWNER_KEYS = [
    "0x897368deaa9f3797c02570ef7d3fa4df179b0fc7ad8d8fc2547d04701604eb72",
    "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318",
]

GET_NONCE_SELECTOR = "0x" + function_selector("getNonce(address,uint192)").hex()
GET_DEPOSIT_INFO_SELECTOR = "0x" + function_selector("getDepositInfo(address)").hex()
SUPPORTED_ENTRYPOINT_SELECTOR = "0x" + function_selector("SUPPORTED_ENTRYPOINT()").hex()

Response = Any | Callable[[list[Any] | None], Any]


class FakeTransport(JsonRpcTransport):
    """
    Scripted JSON-RPC backend. A response is either a value, an exception
    to raise or a callable receiving the request params.
    """

    def __init__(self, responses: dict[str, Response] | None = None) -> None:
        self.responses = {} if responses is None else responses
        self.requests: list[tuple[str, list[Any] | None]] = []

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        self.requests.append((method, params))
        if method not in self.responses:
            raise RpcErrorException(-32601, f"Method {method} not found")
        response = self.responses[method]
        if callable(response):
            response = response(params)
        if isinstance(response, Exception):
            raise response
        return response

    async def request_batch(
        self, calls: list[tuple[str, list[Any] | None]]
    ) -> list[Any]:
        return [await self.request(method, params) for method, params in calls]

    def params_of(self, method: str) -> list[list[Any] | None]:
        return [params for called, params in self.requests if called == method]


def encode_result(types: list[str], values: list[Any]) -> str:
    return "0x" + encode(types, values).hex()


def eth_call_handler(
    nonce: Callable[[], int] | int = 0,
    deposit: int = 0,
    supported_entry_point: Address = ENTRY_POINT,
) -> Callable[[list[Any] | None], Any]:
    def handler(params):
        data = params[0]["data"]
        selector = data[:10]
        if selector == GET_NONCE_SELECTOR:
            current_nonce = nonce() if callable(nonce) else nonce
            if isinstance(current_nonce, Exception):
                return current_nonce
            return encode_result(["uint256"], [current_nonce])
        if selector == GET_DEPOSIT_INFO_SELECTOR:
            return encode_result(
                ["(uint256,bool,uint112,uint32,uint48)"],
                [(deposit, False, 0, 0, 0)],
            )
        if selector == SUPPORTED_ENTRYPOINT_SELECTOR:
            return encode_result(["address"], [supported_entry_point.lower()])
        return RpcErrorException(3, "execution reverted")
    return handler


def latest_block(base_fee: int = 5_000_000_000, timestamp: int = 1_700_000_000):
    return {"baseFeePerGas": hex(base_fee), "timestamp": hex(timestamp), "number": "0x10"}


@pytest.fixture
def owners() -> list[LocalAccountSigner]:
    return [LocalAccountSigner(key) for key in OWNER_KEYS]


@pytest.fixture
def transfer_call() -> MetaTransaction:
    return MetaTransaction(to=RECIPIENT, value=100, data=b"")


@pytest.fixture
def account() -> SafeAccount:
    return SafeAccount(address=SENDER)
