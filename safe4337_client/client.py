import asyncio
import logging

from safe4337_client.config import ClientConfig
from safe4337_client.exceptions import (ConfigurationException,
                                        ConfigurationExceptionCode)
from safe4337_client.gas.gas_negotiator import GasNegotiator, log_stage
from safe4337_client.gas.stages import (OperationStage, ReadyToSignOperation,
                                        SignedOperation, UnestimatedOperation)
from safe4337_client.inclusion.inclusion_tracker import (InclusionReceipt,
                                                         InclusionTracker)
from safe4337_client.rpc.bundler_client import BundlerClient
from safe4337_client.rpc.chain_client import ChainClient
from safe4337_client.rpc.paymaster_client import PaymasterClient
from safe4337_client.rpc.routing_provider import RoutingProvider
from safe4337_client.rpc.transport import HttpJsonRpcTransport, JsonRpcTransport
from safe4337_client.signature.signers import Signer, build_dummy_signature
from safe4337_client.typing import UserOperationHash
from safe4337_client.user_operation.models import MetaTransaction, SafeAccount
from safe4337_client.user_operation.safe_operation import build_unsigned


class Safe4337Client:
    """
    Runs a call from a Safe through the ERC-4337 pipeline:
    build, estimate, sponsor or prefund, sign, submit and wait.
    """

    def __init__(
        self,
        config: ClientConfig,
        provider: JsonRpcTransport | None = None,
        paymaster_transport: JsonRpcTransport | None = None,
    ) -> None:
        if provider is None:
            provider = RoutingProvider(
                HttpJsonRpcTransport(config.bundler_url, config.rpc_timeout),
                HttpJsonRpcTransport(config.ethereum_node_url, config.rpc_timeout),
            )
        if paymaster_transport is None and config.paymaster_url is not None:
            paymaster_transport = HttpJsonRpcTransport(
                config.paymaster_url, config.rpc_timeout)

        self.config = config
        self.provider = provider
        self.bundler = BundlerClient(provider)
        self.chain = ChainClient(provider, config.is_legacy_mode)
        self.paymaster = None
        if paymaster_transport is not None:
            self.paymaster = PaymasterClient(
                paymaster_transport, config.paymaster_method)
        self.negotiator = GasNegotiator(
            self.bundler,
            self.chain,
            config.chain_id,
            config.safe_4337_module,
            config.fee_bump_percentage,
            self.paymaster,
            config.sponsorship_policy_id,
        )
        self.tracker = InclusionTracker(
            self.bundler,
            self.chain,
            config.entry_point,
            config.poll_interval,
            config.inclusion_timeout,
        )

    async def check_entry_point(self) -> None:
        entry_point = self.config.entry_point.lower()
        supported_entry_points = await self.bundler.supported_entry_points()
        if entry_point not in [ep.lower() for ep in supported_entry_points]:
            logging.critical(
                f"EntryPoint {self.config.entry_point} is not supported by the "
                f"bundler, supported: {supported_entry_points}"
            )
            raise ConfigurationException(
                ConfigurationExceptionCode.UnsupportedEntryPoint,
                f"Bundler does not support EntryPoint {self.config.entry_point}",
            )
        module_entry_point = await self.chain.get_supported_entry_point(
            self.config.safe_4337_module)
        if module_entry_point.lower() != entry_point:
            raise ConfigurationException(
                ConfigurationExceptionCode.UnsupportedEntryPoint,
                f"Module {self.config.safe_4337_module} supports EntryPoint "
                f"{module_entry_point} and not {self.config.entry_point}",
            )

    async def build(
        self, call: MetaTransaction, account: SafeAccount
    ) -> UnestimatedOperation:
        # the on chain nonce is the only source of truth, never cached
        nonce = await self.chain.get_nonce(
            self.config.entry_point, account.address, account.nonce_key)
        init_code = b""
        if len(account.init_code) > 0 and \
                not await self.chain.is_deployed(account.address):
            init_code = account.init_code
        user_operation = build_unsigned(call, account, nonce, init_code)
        log_stage(OperationStage.Unestimated, user_operation)
        return UnestimatedOperation(user_operation, self.config.entry_point)

    async def prepare(
        self,
        call: MetaTransaction,
        account: SafeAccount,
        signers: list[Signer],
        sponsor: bool = False,
        valid_after: int = 0,
        valid_until: int = 0,
    ) -> ReadyToSignOperation:
        unestimated = await self.build(call, account)
        estimated = await self.negotiator.estimate(
            unestimated, build_dummy_signature(signers))
        if sponsor:
            return self.negotiator.finalize(
                await self.negotiator.sponsor(estimated), valid_after, valid_until)
        return self.negotiator.finalize(estimated, valid_after, valid_until)

    async def required_prefund(self, ready: ReadyToSignOperation) -> int:
        return await self.negotiator.required_prefund(ready)

    async def send(
        self,
        call: MetaTransaction,
        account: SafeAccount,
        signers: list[Signer],
        sponsor: bool = False,
        valid_after: int = 0,
        valid_until: int = 0,
    ) -> tuple[SignedOperation, UserOperationHash]:
        ready = await self.prepare(
            call, account, signers, sponsor, valid_after, valid_until)
        signed = await self.negotiator.sign(ready, signers)
        user_operation_hash = await self.tracker.submit(signed)
        return signed, user_operation_hash

    async def execute(
        self,
        call: MetaTransaction,
        account: SafeAccount,
        signers: list[Signer],
        sponsor: bool = False,
        valid_after: int = 0,
        valid_until: int = 0,
        timeout: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> InclusionReceipt:
        signed, user_operation_hash = await self.send(
            call, account, signers, sponsor, valid_after, valid_until)
        return await self.tracker.await_inclusion(
            signed.user_operation.sender,
            signed.user_operation.nonce,
            timeout,
            user_operation_hash,
            cancel_event,
        )
