from typing import Any

from safe4337_client.exceptions import RpcErrorException, TransportException

# JSON-RPC 2.0 error-codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_METHOD_PARAMS = -32602  # invalid number/type of parameters
INTERNAL_ERROR = -32603

# human-readable messages
ERROR_MESSAGE = {
    PARSE_ERROR: "Parse error.",
    INVALID_REQUEST: "Invalid Request.",
    METHOD_NOT_FOUND: "Method not found.",
    INVALID_METHOD_PARAMS: "Invalid parameters.",
    INTERNAL_ERROR: "Internal error.",
}


def build_json_rpc_request(
    method: str, params: list[Any] | None, request_id: int
) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": method,
        "params": [] if params is None else params,
    }


def validate_and_get_json_rpc_result(data: Any, url: str) -> Any:
    """
    Return the result of a JSON-RPC 2.0 response object.
    Error objects are raised unchanged as RpcErrorException.
    """
    if not isinstance(data, dict):
        raise TransportException(url, "No valid RPC-package.")
    if data.get("jsonrpc") != "2.0":
        raise TransportException(url, "Invalid Response, 'jsonrpc' missing.")
    if "error" in data and data["error"] is not None:
        error = data["error"]
        if not isinstance(error, dict) or "code" not in error:
            raise TransportException(url, f"Invalid Response, error : {error!r}")
        code = error["code"]
        return_message = error.get("message", ERROR_MESSAGE.get(code, ""))
        raise RpcErrorException(code, return_message, error.get("data"))
    if "result" not in data:
        raise TransportException(url, "Invalid Response, 'result' missing.")
    return data["result"]
