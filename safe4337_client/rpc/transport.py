import asyncio
import itertools
import json
import logging
from abc import ABC, abstractmethod
from typing import Any

from aiohttp import ClientError, ClientSession, ClientTimeout

from safe4337_client.exceptions import (ExternalServiceException,
                                        ExternalServiceExceptionCode,
                                        RpcErrorException, TransportException)
from safe4337_client.metrics.metrics import RPC_REQUEST_TIME

from .jsonrpc import build_json_rpc_request, validate_and_get_json_rpc_result


class JsonRpcTransport(ABC):
    @abstractmethod
    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        pass

    @abstractmethod
    async def request_batch(
        self, calls: list[tuple[str, list[Any] | None]]
    ) -> list[Any]:
        pass


class HttpJsonRpcTransport(JsonRpcTransport):
    """
    JSON-RPC 2.0 over HTTP POST. A request is sent once, failures are
    raised to the caller.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.url = url
        self.timeout = ClientTimeout(total=timeout)
        self.headers = {
            "content-type": "application/json",
            "connection": "keep-alive",
        }
        if headers is not None:
            self.headers.update(headers)
        self._request_ids = itertools.count(1)

    async def _post(self, json_request: Any) -> Any:
        try:
            async with ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    self.url,
                    json=json_request,
                    headers=self.headers
                ) as response:
                    resp = await response.read()
                    if response.status >= 400 and len(resp) == 0:
                        raise TransportException(
                            self.url, f"HTTP status {response.status}")
                    return json.loads(resp)
        except json.decoder.JSONDecodeError:
            logging.error(f"Invalid json response from {self.url}")
            raise TransportException(self.url, "Invalid json response")
        except (ClientError, asyncio.TimeoutError) as excp:
            logging.error(f"Call to {self.url} failed. error: {str(excp)}")
            raise TransportException(self.url, str(excp)) from excp

    async def request(self, method: str, params: list[Any] | None = None) -> Any:
        json_request = build_json_rpc_request(
            method, params, next(self._request_ids))
        with RPC_REQUEST_TIME.labels(method=method).time():
            json_result = await self._post(json_request)
        return validate_and_get_json_rpc_result(json_result, self.url)

    async def request_batch(
        self, calls: list[tuple[str, list[Any] | None]]
    ) -> list[Any]:
        json_requests = [
            build_json_rpc_request(method, params, next(self._request_ids))
            for method, params in calls
        ]
        json_results = await self._post(json_requests)
        if not isinstance(json_results, list) or \
                len(json_results) != len(json_requests):
            raise TransportException(self.url, "Invalid batch response")
        results_by_id = {
            json_result.get("id"): json_result
            for json_result in json_results
            if isinstance(json_result, dict)
        }
        return [
            validate_and_get_json_rpc_result(
                results_by_id.get(json_request["id"]), self.url)
            for json_request in json_requests
        ]


async def send_rpc_request(
    transport: JsonRpcTransport,
    method: str,
    params: list[Any] | None,
    exception_code: ExternalServiceExceptionCode,
    stage: str,
) -> Any:
    """
    Send a request and surface failures as ExternalServiceException,
    keeping the request payload and the service error object untouched.
    """
    try:
        return await transport.request(method, params)
    except RpcErrorException as excp:
        logging.error(
            f"{stage}: {method} failed with {excp.code} {excp.message}")
        raise ExternalServiceException(
            exception_code,
            excp.message,
            stage,
            {"method": method, "params": params},
            excp.to_dict(),
        ) from excp
    except TransportException as excp:
        raise ExternalServiceException(
            exception_code,
            excp.message,
            stage,
            {"method": method, "params": params},
        ) from excp
