import asyncio
import logging
from dataclasses import dataclass

from safe4337_client.exceptions import (ExternalServiceException,
                                        InclusionException,
                                        InclusionExceptionCode)
from safe4337_client.gas.gas_negotiator import log_stage
from safe4337_client.gas.stages import OperationStage, SignedOperation
from safe4337_client.metrics.metrics import INCLUSION_RESULTS
from safe4337_client.rpc.bundler_client import BundlerClient
from safe4337_client.rpc.chain_client import ChainClient
from safe4337_client.typing import Address, UserOperationHash
from safe4337_client.user_operation.models import UserOperationReceipt


@dataclass(frozen=True)
class InclusionReceipt:
    sender: Address
    nonce: int
    # first on chain nonce observed past the submitted one
    observed_nonce: int
    user_operation_hash: UserOperationHash | None
    user_operation_receipt: UserOperationReceipt | None


class InclusionTracker:
    bundler: BundlerClient
    chain: ChainClient
    entry_point: Address
    poll_interval: float
    timeout: float

    def __init__(
        self,
        bundler: BundlerClient,
        chain: ChainClient,
        entry_point: Address,
        poll_interval: float = 1.0,
        timeout: float = 60.0,
    ) -> None:
        self.bundler = bundler
        self.chain = chain
        self.entry_point = entry_point
        self.poll_interval = poll_interval
        self.timeout = timeout

    async def submit(self, signed: SignedOperation) -> UserOperationHash:
        """
        Send the operation to the bundler once, without waiting for it
        to be included.
        """
        if signed.valid_until != 0:
            block_timestamp = await self.chain.get_block_timestamp()
            if block_timestamp > signed.valid_until:
                raise InclusionException(
                    InclusionExceptionCode.ValidityWindowExpired,
                    f"validUntil {signed.valid_until} is before the latest "
                    f"block timestamp {block_timestamp}",
                )
        user_operation_hash = await self.bundler.send_user_operation(
            signed.user_operation, signed.entry_point
        )
        log_stage(
            OperationStage.Submitted,
            signed.user_operation,
            f"user operation hash {user_operation_hash}",
        )
        return user_operation_hash

    async def await_inclusion(
        self,
        sender: Address,
        nonce: int,
        timeout: float | None = None,
        user_operation_hash: UserOperationHash | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> InclusionReceipt:
        """
        Poll the EntryPoint nonce of the sender for the key of the
        submitted nonce until the sequence moves past it.
        """
        if timeout is None:
            timeout = self.timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        key = nonce >> 64
        attempt = 0
        while True:
            if cancel_event is not None and cancel_event.is_set():
                INCLUSION_RESULTS.labels(result="cancelled").inc()
                raise InclusionException(
                    InclusionExceptionCode.InclusionCancelled,
                    f"Stopped waiting for {sender} nonce {hex(nonce)}",
                )
            if loop.time() >= deadline:
                INCLUSION_RESULTS.labels(result="timeout").inc()
                logging.error(
                    f"UserOperation {sender} nonce {hex(nonce)} -> "
                    f"{OperationStage.TimedOut} after {timeout}s "
                    f"user operation hash {user_operation_hash}"
                )
                raise InclusionException(
                    InclusionExceptionCode.InclusionTimeout,
                    f"UserOperation of {sender} with nonce {hex(nonce)} "
                    f"not included after {timeout}s",
                )

            attempt += 1
            try:
                on_chain_nonce = await asyncio.wait_for(
                    self.chain.get_nonce(self.entry_point, sender, key),
                    timeout=deadline - loop.time(),
                )
            except ExternalServiceException as excp:
                logging.warning(
                    f"Nonce query attempt No. {attempt} failed: {excp.message}")
            except asyncio.TimeoutError:
                logging.warning(
                    f"Nonce query attempt No. {attempt} still pending at the deadline")
            else:
                logging.debug(
                    f"Attempt No. {attempt}: on chain nonce of {sender} "
                    f"is {hex(on_chain_nonce)}"
                )
                if on_chain_nonce > nonce:
                    return await self._included(
                        sender, nonce, on_chain_nonce, user_operation_hash)

            remaining = deadline - loop.time()
            if remaining > 0:
                await asyncio.sleep(min(self.poll_interval, remaining))

    async def _included(
        self,
        sender: Address,
        nonce: int,
        observed_nonce: int,
        user_operation_hash: UserOperationHash | None,
    ) -> InclusionReceipt:
        INCLUSION_RESULTS.labels(result="included").inc()
        user_operation_receipt = None
        if user_operation_hash is not None:
            try:
                user_operation_receipt = await self.bundler.get_user_operation_receipt(
                    user_operation_hash)
            except ExternalServiceException as excp:
                # inclusion is already established by the nonce
                logging.warning(
                    f"Receipt lookup for {user_operation_hash} failed: {excp.message}")
        logging.info(
            f"UserOperation {sender} nonce {hex(nonce)} -> "
            f"{OperationStage.Included} user operation hash {user_operation_hash}"
        )
        return InclusionReceipt(
            sender=sender,
            nonce=nonce,
            observed_nonce=observed_nonce,
            user_operation_hash=user_operation_hash,
            user_operation_receipt=user_operation_receipt,
        )
