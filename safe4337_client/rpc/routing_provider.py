import logging
from typing import Any

from .transport import JsonRpcTransport

BUNDLER_METHODS = frozenset([
    "eth_supportedEntryPoints",
    "eth_estimateUserOperationGas",
    "eth_sendUserOperation",
    "eth_getUserOperationByHash",
    "eth_getUserOperationReceipt",
])


class RoutingProvider(JsonRpcTransport):
    """
    Single provider for both ERC-4337 bundler methods and regular node
    methods. Anything not served by the bundler goes to the node.
    """

    def __init__(
        self,
        bundler_transport: JsonRpcTransport,
        node_transport: JsonRpcTransport,
        bundler_methods: frozenset[str] = BUNDLER_METHODS,
    ) -> None:
        self.bundler_transport = bundler_transport
        self.node_transport = node_transport
        self.bundler_methods = bundler_methods

    def get_transport(self, method: str) -> JsonRpcTransport:
        if method in self.bundler_methods:
            return self.bundler_transport
        return self.node_transport

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        transport = self.get_transport(method)
        logging.debug(
            f"Routing {method} to "
            f"{'bundler' if transport is self.bundler_transport else 'node'}"
        )
        return await transport.request(method, params)

    async def request_batch(
        self, calls: list[tuple[str, list[Any] | None]]
    ) -> list[Any]:
        return await self.node_transport.request_batch(calls)
