"""
End-to-end tests: the full deploy / insert / upgrade script against the in-memory chain.
"""
import asyncio
import logging
import pytest

from proxy_deploy import deploy
from proxy_deploy.artifacts import ArtifactLoader
from proxy_deploy.config import DeployConfig, WorkflowConfig
from proxy_deploy.conftest import FakeWebSocket, SEL_INSERT
from proxy_deploy.crypto import Keypair
from proxy_deploy.errors import ModuleError, SubmissionRejectedError, WorkflowAssertionError
from proxy_deploy.node import NodeConnection
from proxy_deploy.registry import MetadataRegistry
from proxy_deploy.signer import KeyringSigner, NonceSequencer
from proxy_deploy.submitter import TransactionSubmitter
from proxy_deploy.workflow import ProxyWorkflow


def make_workflow(connect, chain, artifacts_root, **options):
    node, _ = connect(chain)
    signer = KeyringSigner(Keypair.from_uri("//Alice"), node, chain_id=42)
    workflow = ProxyWorkflow(
        node,
        signer,
        TransactionSubmitter(MetadataRegistry.default()),
        ArtifactLoader(str(artifacts_root)),
        DeployConfig(),
        WorkflowConfig(**options),
    )
    return workflow, node


class TestProxyWorkflow:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("reference", ["hash", "address"])
    async def test_upgrade_changes_average(self, connect, chain, artifacts_root, reference):
        workflow, node = make_workflow(connect, chain, artifacts_root, proxy_reference=reference)

        result = await workflow.run()

        assert result.average_before == 6
        assert result.average_after == 7
        assert len({result.v1.address, result.proxy.address, result.v2.address}) == 3
        assert chain.contracts[result.proxy.address]["values"] == [3, 7, 8]
        # v1, proxy, three inserts, v2, upgrade
        assert len(chain.submitted) == 7
        assert sorted(chain.unwatched) == sorted(f"sub-{i}" for i in range(1, 8))
        await node.close()

    @pytest.mark.asyncio
    async def test_proxy_points_at_v1_code_hash(self, connect, chain, artifacts_root):
        workflow, node = make_workflow(connect, chain, artifacts_root)
        result = await workflow.run()

        proxy_deploy_call = chain.submitted[1].call
        assert proxy_deploy_call.args.hex() == result.v1.artifact.identity_hash[2:]
        assert chain.contracts[result.proxy.address]["backend"] == result.v2.artifact.identity_hash
        await node.close()

    @pytest.mark.asyncio
    async def test_pipelined_nonces_strictly_increase(self, connect, chain, artifacts_root):
        workflow, node = make_workflow(connect, chain, artifacts_root, pipelined=True)
        chain.nonces[workflow.signer.address] = 10

        result = await workflow.run()

        assert result.nonces == list(range(10, 17))
        assert [tx.nonce for tx in chain.submitted] == result.nonces
        assert result.average_after == 7
        await node.close()

    @pytest.mark.asyncio
    async def test_verification_can_be_skipped(self, connect, chain, artifacts_root):
        workflow, node = make_workflow(connect, chain, artifacts_root, verify=False)
        result = await workflow.run()
        assert result.average_before is None
        assert result.average_after is None
        await node.close()

    @pytest.mark.asyncio
    async def test_unknown_reference_mode(self, connect, chain, artifacts_root):
        with pytest.raises(ValueError, match="reference mode"):
            make_workflow(connect, chain, artifacts_root, proxy_reference="name")


class TestWorkflowFailures:
    @pytest.mark.asyncio
    async def test_stale_nonce(self, connect, chain, artifacts_root):
        workflow, node = make_workflow(connect, chain, artifacts_root, pipelined=True)
        chain.nonces[workflow.signer.address] = 3
        workflow.sequencer = NonceSequencer(node, workflow.signer.address, start=1)

        with pytest.raises(SubmissionRejectedError, match="outdated"):
            await workflow.run()
        assert chain.submitted == []
        await node.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("pipelined", [False, True])
    async def test_trapped_insert(self, connect, chain, artifacts_root, pipelined):
        workflow, node = make_workflow(connect, chain, artifacts_root, pipelined=pipelined)
        chain.trap_selectors.add(SEL_INSERT)

        with pytest.raises(ModuleError) as excinfo:
            await workflow.run()

        error = excinfo.value
        assert error.section == "Contracts"
        assert error.method == "ContractTrapped"
        assert "Contract trapped during execution." in str(error)
        # v2 is never deployed
        assert len(chain.contracts) == 2
        await node.close()

    @pytest.mark.asyncio
    async def test_wrong_average_after_upgrade(self, connect, chain, artifacts_root):
        workflow, node = make_workflow(connect, chain, artifacts_root)
        v2_hash = workflow.loader.load("v2").identity_hash
        chain.code_kinds[v2_hash] = "v1"

        with pytest.raises(WorkflowAssertionError, match="avg-v2 was 6, expected 7"):
            await workflow.run()
        await node.close()

    @pytest.mark.asyncio
    async def test_step_timeout_releases_subscription(self, connect, chain, artifacts_root):
        workflow, node = make_workflow(connect, chain, artifacts_root, step_timeout=0.05)
        chain.silent = True

        with pytest.raises(asyncio.TimeoutError):
            await workflow.run()
        assert chain.unwatched == ["sub-1"]
        await node.close()


# ------------------------------------------------------------------ #
# Command line
# ------------------------------------------------------------------ #
@pytest.fixture
def offline_node(monkeypatch, chain):
    class OfflineConnection(NodeConnection):
        async def connect(self):
            self.attach(FakeWebSocket(chain))

    monkeypatch.setattr(deploy, "NodeConnection", OfflineConnection)
    return chain


def cli_args(*argv):
    return deploy.build_parser().parse_args(list(argv))


class TestMain:
    @pytest.mark.asyncio
    async def test_success(self, offline_node, artifacts_root):
        assert await deploy.main(cli_args("--artifacts", str(artifacts_root))) == deploy.EXIT_OK
        assert len(offline_node.submitted) == 7

    @pytest.mark.asyncio
    async def test_missing_artifacts(self, offline_node, tmp_path):
        code = await deploy.main(cli_args("--artifacts", str(tmp_path / "nowhere")))
        assert code == deploy.EXIT_CONFIG

    @pytest.mark.asyncio
    async def test_module_error_is_reported(self, offline_node, artifacts_root, caplog):
        offline_node.trap_selectors.add(SEL_INSERT)
        code = await deploy.main(cli_args("--artifacts", str(artifacts_root), "--pipelined"))

        assert code == deploy.EXIT_FAILED
        assert "Contracts.ContractTrapped: Contract trapped during execution." in caplog.text

    @pytest.mark.asyncio
    async def test_missing_registry(self, offline_node, artifacts_root, tmp_path):
        code = await deploy.main(cli_args("--artifacts", str(artifacts_root),
                                          "--registry", str(tmp_path / "errors.json")))
        assert code == deploy.EXIT_CONFIG


@pytest.mark.asyncio
async def test_each_deployment_is_reported_once(connect, chain, artifacts_root, caplog):
    caplog.set_level(logging.INFO)
    workflow, node = make_workflow(connect, chain, artifacts_root)
    result = await workflow.run()

    for contract in (result.v1, result.proxy, result.v2):
        mentions = [r for r in caplog.records
                    if r.levelno >= logging.INFO and contract.address in r.getMessage()]
        assert len(mentions) == 1
    await node.close()
