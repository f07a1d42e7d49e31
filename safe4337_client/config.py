import logging
import os
import re
from argparse import ArgumentParser, ArgumentTypeError, Namespace
from dataclasses import dataclass
from importlib.metadata import version

from safe4337_client.exceptions import (ConfigurationException,
                                        ConfigurationExceptionCode,
                                        ExternalServiceException)
from safe4337_client.rpc.chain_client import ChainClient
from safe4337_client.rpc.paymaster_client import SPONSOR_USER_OPERATION_METHOD
from safe4337_client.typing import Address

__version__ = version("safe4337_client")

ENTRY_POINT_V07 = Address("0x0000000071727De22E5E9d8BAf0edAc6f37da032")


@dataclass(frozen=True)
class ClientConfig:
    chain_id: int
    ethereum_node_url: str
    bundler_url: str
    entry_point: Address
    safe_4337_module: Address
    fee_bump_percentage: int
    paymaster_url: str | None = None
    sponsorship_policy_id: str | None = None
    paymaster_method: str = SPONSOR_USER_OPERATION_METHOD
    poll_interval: float = 1.0
    inclusion_timeout: float = 60.0
    rpc_timeout: float = 30.0
    is_legacy_mode: bool = False
    verbose: bool = False


def address(ep: str):
    address_pattern = "^0x[0-9,a-f,A-F]{40}$"
    if not isinstance(ep, str) or re.match(address_pattern, ep) is None:
        raise ArgumentTypeError(f"Wrong address format : {ep}")
    return ep


def unsigned_int(value):
    ivalue = int(value)
    if ivalue < 0:
        raise ArgumentTypeError(
                "%s is an invalid unsigned int value" % value)
    return ivalue


def percentage(value):
    ivalue = int(value)
    if ivalue < 100:
        raise ArgumentTypeError(
                "%s is an invalid percentage, it should be minimum 100" % value)
    return ivalue


def positive_float(value):
    fvalue = float(value)
    if fvalue <= 0:
        raise ArgumentTypeError(
                "%s is an invalid positive value" % value)
    return fvalue


def _get_env_or_default(env_var, default, value_type):
    """
    Helper function to get the value from an environment variable or return the default value.
    """
    value = os.getenv(env_var, None)
    if value is not None:
        if value_type == bool:
            return value.lower() in ("1", "true", "yes")
        return value_type(value)
    return default


def initialize_argument_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="safe4337_client",
        description="Safe ERC-4337 UserOperation client",
    )

    parser.add_argument(
        "--chain_id",
        type=unsigned_int,
        help="Chain id of the network the operations are sent to",
        default=_get_env_or_default("SAFE4337_CHAIN_ID", None, unsigned_int),
    )

    parser.add_argument(
        "--ethereum_node_url",
        type=str,
        help="Eth Client JSON-RPC Url - defaults to http://0.0.0.0:8545",
        nargs="?",
        const="http://0.0.0.0:8545",
        default=_get_env_or_default(
            "SAFE4337_ETHEREUM_NODE_URL", "http://0.0.0.0:8545", str),
    )

    parser.add_argument(
        "--bundler_url",
        type=str,
        help="Bundler JSON-RPC Url - defaults to http://0.0.0.0:3000/rpc",
        nargs="?",
        const="http://0.0.0.0:3000/rpc",
        default=_get_env_or_default(
            "SAFE4337_BUNDLER_URL", "http://0.0.0.0:3000/rpc", str),
    )

    parser.add_argument(
        "--paymaster_url",
        type=str,
        help="Paymaster JSON-RPC Url - sponsorship is disabled without it",
        nargs="?",
        default=_get_env_or_default("SAFE4337_PAYMASTER_URL", None, str),
    )

    parser.add_argument(
        "--sponsorship_policy_id",
        type=str,
        help="Paymaster sponsorship policy id",
        nargs="?",
        default=_get_env_or_default("SAFE4337_SPONSORSHIP_POLICY_ID", None, str),
    )

    parser.add_argument(
        "--paymaster_method",
        type=str,
        help=f"Paymaster sponsorship method - defaults to {SPONSOR_USER_OPERATION_METHOD}",
        nargs="?",
        const=SPONSOR_USER_OPERATION_METHOD,
        default=_get_env_or_default(
            "SAFE4337_PAYMASTER_METHOD", SPONSOR_USER_OPERATION_METHOD, str),
    )

    parser.add_argument(
        "--entry_point",
        type=address,
        help=f"EntryPoint address - defaults to {ENTRY_POINT_V07}",
        nargs="?",
        const=ENTRY_POINT_V07,
        default=_get_env_or_default("SAFE4337_ENTRY_POINT", ENTRY_POINT_V07, address),
    )

    parser.add_argument(
        "--safe_4337_module",
        type=address,
        help="Safe4337Module address, the typed data verifying contract",
        default=_get_env_or_default("SAFE4337_MODULE", None, address),
    )

    parser.add_argument(
        "--fee_bump_percentage",
        type=percentage,
        help="Percentage applied to fee data and required funds, minimum 100",
        default=_get_env_or_default("SAFE4337_FEE_BUMP_PERCENTAGE", None, percentage),
    )

    parser.add_argument(
        "--poll_interval",
        type=positive_float,
        help="Seconds between inclusion checks - defaults to 1",
        nargs="?",
        const=1.0,
        default=_get_env_or_default("SAFE4337_POLL_INTERVAL", 1.0, positive_float),
    )

    parser.add_argument(
        "--inclusion_timeout",
        type=positive_float,
        help="Seconds to wait for inclusion - defaults to 60",
        nargs="?",
        const=60.0,
        default=_get_env_or_default("SAFE4337_INCLUSION_TIMEOUT", 60.0, positive_float),
    )

    parser.add_argument(
        "--rpc_timeout",
        type=positive_float,
        help="Seconds before a JSON-RPC request is abandoned - defaults to 30",
        nargs="?",
        const=30.0,
        default=_get_env_or_default("SAFE4337_RPC_TIMEOUT", 30.0, positive_float),
    )

    parser.add_argument(
        "--legacy_mode",
        help="for networks that doesn't support EIP-1559",
        nargs="?",
        const=True,
        default=_get_env_or_default("SAFE4337_LEGACY_MODE", False, bool),
    )

    parser.add_argument(
        "--verbose",
        help="show debug log",
        nargs="?",
        const=True,
        default=_get_env_or_default("SAFE4337_VERBOSE", False, bool),
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser


def init_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s.%(msecs)03d %(levelname)s %(message)s",
        datefmt="%b %d %H:%M:%S",
    )

    logging.getLogger("Safe4337Client")


def parse_args(cmd_args: list[str]) -> ClientConfig:
    argument_parser: ArgumentParser = initialize_argument_parser()
    args = argument_parser.parse_args(cmd_args)
    for required in ("chain_id", "safe_4337_module", "fee_bump_percentage"):
        if getattr(args, required) is None:
            argument_parser.error(
                f"You must specify --{required} or set "
                f"SAFE4337_{required.upper().replace('SAFE_4337_', '')} "
                "environment variable."
            )
    if args.sponsorship_policy_id is not None and args.paymaster_url is None:
        argument_parser.error(
            "You must specify --paymaster_url when a sponsorship policy id is set")
    init_logging(args.verbose)
    return get_client_config(args)


def get_client_config(args: Namespace) -> ClientConfig:
    return ClientConfig(
        chain_id=args.chain_id,
        ethereum_node_url=args.ethereum_node_url,
        bundler_url=args.bundler_url,
        entry_point=Address(args.entry_point),
        safe_4337_module=Address(args.safe_4337_module),
        fee_bump_percentage=args.fee_bump_percentage,
        paymaster_url=args.paymaster_url,
        sponsorship_policy_id=args.sponsorship_policy_id,
        paymaster_method=args.paymaster_method,
        poll_interval=args.poll_interval,
        inclusion_timeout=args.inclusion_timeout,
        rpc_timeout=args.rpc_timeout,
        is_legacy_mode=bool(args.legacy_mode),
        verbose=bool(args.verbose),
    )


async def check_chain_id(chain: ChainClient, chain_id: int) -> None:
    try:
        node_chain_id = await chain.get_chain_id()
    except ExternalServiceException as excp:
        logging.critical(f"Error when connecting to Eth node: {excp.message}")
        raise
    if node_chain_id != chain_id:
        logging.critical(
            f"Invalid chain id {chain_id} with Eth node chain id {node_chain_id}"
        )
        raise ConfigurationException(
            ConfigurationExceptionCode.ChainIdMismatch,
            f"Configured chain id {chain_id} does not match node chain id "
            f"{node_chain_id}",
        )
