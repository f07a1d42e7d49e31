import logging

from prometheus_client import Counter, Summary, start_http_server

RPC_REQUEST_TIME = Summary(
    "safe4337_rpc_request_seconds",
    "Time spent waiting for JSON-RPC responses",
    ["method"],
)
STAGE_TRANSITIONS = Counter(
    "safe4337_user_operation_stage_transitions",
    "UserOperations reaching a pipeline stage",
    ["stage"],
)
INCLUSION_RESULTS = Counter(
    "safe4337_user_operation_inclusion_results",
    "Outcome of waiting for UserOperation inclusion",
    ["result"],
)


def run_metrics_server(host="localhost", port=8000):
    """
    run prometheus metrics server
    """
    logging.info(f"Starting Metrics Http Server at: {host}:{port}")
    start_http_server(port, addr=host)
