import pytest

from safe4337_client.client import Safe4337Client
from safe4337_client.config import ClientConfig
from safe4337_client.exceptions import (ConfigurationException,
                                        ConfigurationExceptionCode)
from safe4337_client.rpc.routing_provider import RoutingProvider
from safe4337_client.rpc.transport import HttpJsonRpcTransport
from safe4337_client.user_operation.models import SafeAccount
from safe4337_client.user_operation.user_operation import user_operation_from_json

from conftest import (CHAIN_ID, ENTRY_POINT, SAFE_4337_MODULE, SENDER,
                      FakeTransport, eth_call_handler, latest_block)

USER_OPERATION_HASH = "0x" + "ab" * 32
INIT_CODE = bytes.fromhex("4e1dcf7ad4e460cfd30791ccc4f9c8a4f820ec67") + b"\x01\x02"
CONFIG = ClientConfig(
    chain_id=CHAIN_ID,
    ethereum_node_url="http://node.example",
    bundler_url="http://bundler.example/rpc",
    entry_point=ENTRY_POINT,
    safe_4337_module=SAFE_4337_MODULE,
    fee_bump_percentage=120,
    poll_interval=0.01,
    inclusion_timeout=5,
)


class FakeNetwork:
    """
    Bundler and node fakes sharing the on chain nonce of the sender.
    """

    def __init__(self, code="0x", supported_entry_points=None, **handler_kwargs):
        self.nonce = 0
        self.bundler = FakeTransport({
            "eth_supportedEntryPoints": supported_entry_points or [ENTRY_POINT],
            "eth_estimateUserOperationGas": {
                "preVerificationGas": hex(60_000),
                "callGasLimit": hex(80_000),
                "verificationGasLimit": hex(400_000),
            },
            "eth_sendUserOperation": self.include,
            "eth_getUserOperationReceipt": None,
        })
        self.node = FakeTransport({
            "eth_call": eth_call_handler(nonce=lambda: self.nonce, **handler_kwargs),
            "eth_getCode": code,
            "eth_getBlockByNumber": latest_block(),
            "eth_maxPriorityFeePerGas": hex(1_000_000_000),
        })
        self.provider = RoutingProvider(self.bundler, self.node)

    def include(self, params):
        self.nonce += 1
        return USER_OPERATION_HASH


def test_client_routes_configured_urls():
    client = Safe4337Client(CONFIG)

    assert isinstance(client.provider, RoutingProvider)
    assert client.provider.bundler_transport.url == CONFIG.bundler_url
    assert client.provider.node_transport.url == CONFIG.ethereum_node_url
    assert client.paymaster is None


def test_client_with_paymaster_url():
    config = ClientConfig(**{
        **CONFIG.__dict__,
        "paymaster_url": "http://paymaster.example",
        "sponsorship_policy_id": "sp_policy",
    })

    client = Safe4337Client(config)

    assert isinstance(client.paymaster.transport, HttpJsonRpcTransport)
    assert client.paymaster.transport.url == "http://paymaster.example"


@pytest.mark.asyncio
async def test_execute_runs_full_pipeline(transfer_call, account, owners):
    """
    A call is built, estimated, signed, submitted and observed on chain.
    """
    network = FakeNetwork()
    client = Safe4337Client(CONFIG, network.provider)

    receipt = await client.execute(transfer_call, account, owners)

    assert receipt.sender == SENDER
    assert receipt.nonce == 0
    assert receipt.observed_nonce == 1
    assert receipt.user_operation_hash == USER_OPERATION_HASH

    sent = network.bundler.params_of("eth_sendUserOperation")
    assert len(sent) == 1
    user_operation = user_operation_from_json(sent[0][0])
    assert user_operation.call_gas_limit == 80_000
    assert user_operation.init_code == b""
    assert len(user_operation.signature) == 12 + 2 * 65
    # deployed or not is only checked for accounts carrying init code
    assert network.node.params_of("eth_getCode") == []


@pytest.mark.asyncio
async def test_build_uses_init_code_until_deployed(transfer_call):
    account = SafeAccount(SENDER, init_code=INIT_CODE)

    undeployed = Safe4337Client(CONFIG, FakeNetwork(code="0x").provider)
    unestimated = await undeployed.build(transfer_call, account)
    assert unestimated.user_operation.init_code == INIT_CODE

    deployed = Safe4337Client(CONFIG, FakeNetwork(code="0x6080").provider)
    unestimated = await deployed.build(transfer_call, account)
    assert unestimated.user_operation.init_code == b""


@pytest.mark.asyncio
async def test_build_reads_nonce_every_time(transfer_call, account):
    """
    The nonce is never cached between operations.
    """
    network = FakeNetwork()
    client = Safe4337Client(CONFIG, network.provider)

    first = await client.build(transfer_call, account)
    network.nonce = 5
    second = await client.build(transfer_call, account)

    assert first.user_operation.nonce == 0
    assert second.user_operation.nonce == 5
    assert len(network.node.params_of("eth_call")) == 2


@pytest.mark.asyncio
async def test_prepare_reports_required_prefund(transfer_call, account, owners):
    network = FakeNetwork(deposit=0)
    client = Safe4337Client(CONFIG, network.provider)

    ready = await client.prepare(transfer_call, account, owners)

    gas = 60_000 + 80_000 + 400_000
    # 2 * 5 gwei + 1 gwei bumped to 13.2 gwei, then bumped again for the prefund
    expected = -(-13_200_000_000 * gas * 120 // 100)
    assert ready.required_funds == expected
    assert await client.required_prefund(ready) == expected
    assert ready.user_operation.signature == b""


@pytest.mark.asyncio
async def test_sponsor_without_policy(transfer_call, account, owners):
    """
    Asking for sponsorship without a policy fails before the paymaster is called.
    """
    paymaster = FakeTransport()
    client = Safe4337Client(CONFIG, FakeNetwork().provider, paymaster)

    with pytest.raises(ConfigurationException) as excinfo:
        await client.send(transfer_call, account, owners, sponsor=True)

    assert excinfo.value.exception_code == \
        ConfigurationExceptionCode.MissingSponsorshipPolicy
    assert paymaster.requests == []


@pytest.mark.asyncio
async def test_check_entry_point():
    await Safe4337Client(CONFIG, FakeNetwork().provider).check_entry_point()

    unsupported = Safe4337Client(
        CONFIG, FakeNetwork(supported_entry_points=["0x" + "11" * 20]).provider)
    with pytest.raises(ConfigurationException) as excinfo:
        await unsupported.check_entry_point()
    assert excinfo.value.exception_code == \
        ConfigurationExceptionCode.UnsupportedEntryPoint

    other_module = Safe4337Client(
        CONFIG, FakeNetwork(supported_entry_point="0x" + "22" * 20).provider)
    with pytest.raises(ConfigurationException) as excinfo:
        await other_module.check_entry_point()
    assert excinfo.value.exception_code == \
        ConfigurationExceptionCode.UnsupportedEntryPoint
