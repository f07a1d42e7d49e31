import logging

from safe4337_client.exceptions import (ConfigurationException,
                                        ConfigurationExceptionCode,
                                        EncodingException,
                                        EncodingExceptionCode,
                                        ExternalServiceException,
                                        ExternalServiceExceptionCode)
from safe4337_client.metrics.metrics import STAGE_TRANSITIONS
from safe4337_client.rpc.bundler_client import BundlerClient
from safe4337_client.rpc.chain_client import ChainClient
from safe4337_client.rpc.paymaster_client import PaymasterClient
from safe4337_client.signature.signature_composer import compose_signatures
from safe4337_client.signature.signers import Signer, sign_operation_hash
from safe4337_client.typing import Address
from safe4337_client.user_operation.models import FeeData
from safe4337_client.user_operation.safe_operation import \
    compute_operation_hash
from safe4337_client.user_operation.user_operation import (
    PAYMASTER_DATA_OFFSET, UserOperation, build_paymaster_and_data)

from .stages import (EstimatedOperation, OperationStage, ReadyToSignOperation,
                     SignedOperation, SponsoredOperation, UnestimatedOperation)


def apply_fee_bump(value: int, fee_bump_percentage: int) -> int:
    # integer ceil of value * percentage / 100
    return -(-value * fee_bump_percentage // 100)


def calculate_required_funds(
    user_operation: UserOperation, fee_bump_percentage: int
) -> int:
    required_funds = apply_fee_bump(
        user_operation.get_required_prefund(), fee_bump_percentage
    )
    assert required_funds > 0, \
        f"required funds must be positive, got {required_funds}"
    return required_funds


def verify_fee_bump_percentage(fee_bump_percentage: int) -> None:
    if isinstance(fee_bump_percentage, bool) or \
            not isinstance(fee_bump_percentage, int) or \
            fee_bump_percentage < 100:
        raise ConfigurationException(
            ConfigurationExceptionCode.InvalidFeeMultiplier,
            f"Fee bump percentage must be an integer of at least 100, "
            f"got {fee_bump_percentage!r}",
        )


def log_stage(stage: OperationStage, user_operation: UserOperation, detail: str = "") -> None:
    STAGE_TRANSITIONS.labels(stage=str(stage)).inc()
    logging.info(
        f"UserOperation {user_operation.sender} nonce {hex(user_operation.nonce)} "
        f"-> {stage}{' ' + detail if detail else ''}"
    )


class GasNegotiator:
    bundler: BundlerClient
    chain: ChainClient
    paymaster: PaymasterClient | None
    chain_id: int
    safe_4337_module: Address
    fee_bump_percentage: int
    sponsorship_policy_id: str | None

    def __init__(
        self,
        bundler: BundlerClient,
        chain: ChainClient,
        chain_id: int,
        safe_4337_module: Address,
        fee_bump_percentage: int,
        paymaster: PaymasterClient | None = None,
        sponsorship_policy_id: str | None = None,
    ) -> None:
        verify_fee_bump_percentage(fee_bump_percentage)
        self.bundler = bundler
        self.chain = chain
        self.chain_id = chain_id
        self.safe_4337_module = safe_4337_module
        self.fee_bump_percentage = fee_bump_percentage
        self.paymaster = paymaster
        self.sponsorship_policy_id = sponsorship_policy_id

    async def get_fee_data(self) -> FeeData:
        fee_data = await self.chain.get_fee_data()
        return FeeData(
            max_fee_per_gas=apply_fee_bump(
                fee_data.max_fee_per_gas, self.fee_bump_percentage),
            max_priority_fee_per_gas=apply_fee_bump(
                fee_data.max_priority_fee_per_gas, self.fee_bump_percentage),
        )

    async def estimate(
        self,
        unestimated: UnestimatedOperation,
        dummy_signature: bytes,
        fee_data: FeeData | None = None,
    ) -> EstimatedOperation:
        if fee_data is None:
            fee_data = await self.get_fee_data()
        user_operation = unestimated.user_operation.replace(
            max_fee_per_gas=fee_data.max_fee_per_gas,
            max_priority_fee_per_gas=fee_data.max_priority_fee_per_gas,
            signature=dummy_signature,
        )
        gas_estimate = await self.bundler.estimate_user_operation_gas(
            user_operation, unestimated.entry_point
        )
        if min(
            gas_estimate.pre_verification_gas,
            gas_estimate.verification_gas_limit,
            gas_estimate.call_gas_limit,
        ) <= 0:
            raise ExternalServiceException(
                ExternalServiceExceptionCode.GasEstimationFailed,
                f"Bundler returned a non positive gas estimate : {gas_estimate}",
                "gas estimation",
                {"user_operation": user_operation.get_user_operation_json()},
            )

        changes = {
            "pre_verification_gas": gas_estimate.pre_verification_gas,
            "verification_gas_limit": gas_estimate.verification_gas_limit,
            "call_gas_limit": gas_estimate.call_gas_limit,
        }
        if user_operation.paymaster is not None:
            changes["paymaster_and_data"] = build_paymaster_and_data(
                user_operation.paymaster,
                gas_estimate.paymaster_verification_gas_limit
                or user_operation.paymaster_verification_gas_limit,  # type: ignore
                gas_estimate.paymaster_post_op_gas_limit
                or user_operation.paymaster_post_op_gas_limit,  # type: ignore
                user_operation.paymaster_data,  # type: ignore
            )
        estimated = EstimatedOperation(
            user_operation.replace(**changes),
            unestimated.entry_point,
            gas_estimate,
            fee_data,
        )
        log_stage(OperationStage.Estimated, estimated.user_operation)
        return estimated

    async def sponsor(self, estimated: EstimatedOperation) -> SponsoredOperation:
        if self.sponsorship_policy_id is None:
            raise ConfigurationException(
                ConfigurationExceptionCode.MissingSponsorshipPolicy,
                "Sponsorship requested without a sponsorship policy id",
            )
        if self.paymaster is None:
            raise ConfigurationException(
                ConfigurationExceptionCode.MissingEndpoint,
                "Sponsorship requested without a paymaster url",
            )
        sponsorship = await self.paymaster.sponsor_user_operation(
            estimated.user_operation,
            estimated.entry_point,
            self.sponsorship_policy_id,
        )
        if len(sponsorship.paymaster_and_data) < PAYMASTER_DATA_OFFSET:
            raise ExternalServiceException(
                ExternalServiceExceptionCode.SponsorshipFailed,
                "Paymaster returned a malformed paymasterAndData : "
                f"0x{sponsorship.paymaster_and_data.hex()}",
                "sponsorship",
            )
        changes = {
            field_name: value
            for field_name, value in (
                ("pre_verification_gas", sponsorship.pre_verification_gas),
                ("verification_gas_limit", sponsorship.verification_gas_limit),
                ("call_gas_limit", sponsorship.call_gas_limit),
                ("max_fee_per_gas", sponsorship.max_fee_per_gas),
                ("max_priority_fee_per_gas", sponsorship.max_priority_fee_per_gas),
            )
            if value is not None
        }
        user_operation = estimated.user_operation.replace(
            paymaster_and_data=sponsorship.paymaster_and_data, **changes
        )
        if user_operation.paymaster_verification_gas_limit == 0:
            raise ExternalServiceException(
                ExternalServiceExceptionCode.SponsorshipFailed,
                "Paymaster returned a zero paymasterVerificationGasLimit",
                "sponsorship",
            )
        sponsored = SponsoredOperation(
            user_operation, estimated.entry_point, sponsorship)
        log_stage(
            OperationStage.Sponsored,
            user_operation,
            f"by paymaster {user_operation.paymaster}",
        )
        return sponsored

    def required_funds(self, user_operation: UserOperation) -> int:
        return calculate_required_funds(user_operation, self.fee_bump_percentage)

    async def required_prefund(
        self, operation: EstimatedOperation | ReadyToSignOperation
    ) -> int:
        """
        Amount the sender still has to receive before submission,
        what is already deposited in the EntryPoint counts towards it.
        """
        if isinstance(operation, ReadyToSignOperation) and \
                operation.required_funds is None:
            return 0
        required_funds = self.required_funds(operation.user_operation)
        deposit_info = await self.chain.get_deposit_info(
            operation.entry_point, operation.user_operation.sender
        )
        return max(0, required_funds - deposit_info.deposit)

    def finalize(
        self,
        operation: EstimatedOperation | SponsoredOperation,
        valid_after: int = 0,
        valid_until: int = 0,
    ) -> ReadyToSignOperation:
        if valid_until != 0 and valid_until < valid_after:
            raise EncodingException(
                EncodingExceptionCode.InvalidValidityWindow,
                f"validUntil {valid_until} is before validAfter {valid_after}",
            )
        user_operation = operation.user_operation.replace(signature=b"")
        if isinstance(operation, SponsoredOperation):
            required_funds = None
        else:
            required_funds = self.required_funds(user_operation)
        ready = ReadyToSignOperation(
            user_operation,
            operation.entry_point,
            valid_after,
            valid_until,
            required_funds,
        )
        log_stage(OperationStage.ReadyToSign, user_operation)
        return ready

    async def sign(
        self,
        ready: ReadyToSignOperation,
        signers: list[Signer],
        with_validity_window: bool = True,
    ) -> SignedOperation:
        operation_hash = compute_operation_hash(
            ready.user_operation,
            ready.entry_point,
            self.chain_id,
            self.safe_4337_module,
            ready.valid_after,
            ready.valid_until,
        )
        entries = [
            await sign_operation_hash(operation_hash, signer) for signer in signers
        ]
        signature = compose_signatures(
            entries,
            ready.valid_after,
            ready.valid_until,
            with_validity_window=with_validity_window,
        )
        signed = SignedOperation(
            ready.user_operation.replace(signature=signature),
            ready.entry_point,
            operation_hash,
            ready.valid_after,
            ready.valid_until,
        )
        log_stage(
            OperationStage.Signed,
            signed.user_operation,
            f"safe operation hash 0x{operation_hash.hex()}",
        )
        return signed
