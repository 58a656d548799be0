"""
Deploy the proxy contracts and upgrade them live:
1. Load config (file, then command line overrides)
2. Connect to the node
3. Derive the signing key
4. Run the proxy workflow

Exit status: 0 on success, 1 if a workflow step failed, 2 on configuration or
artifact errors, 130 when interrupted.
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

from proxy_deploy.artifacts import ArtifactLoader
from proxy_deploy.config import Config
from proxy_deploy.crypto import Keypair
from proxy_deploy.errors import (
    ArtifactError,
    ModuleError,
    QueryError,
    RpcError,
    TransactionError,
    WorkflowAssertionError,
)
from proxy_deploy.monitoring import Monitor
from proxy_deploy.node import NodeConnection
from proxy_deploy.registry import MetadataRegistry
from proxy_deploy.signer import KeyringSigner
from proxy_deploy.submitter import TransactionSubmitter
from proxy_deploy.workflow import ProxyWorkflow

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Deploy and upgrade proxy contracts')
    parser.add_argument('--config', type=str, help='Path to config file')
    parser.add_argument('--host', type=str, help='Node host')
    parser.add_argument('--port', type=int, help='Node websocket port')
    parser.add_argument('--artifacts', type=str, help='Artifacts root directory')
    parser.add_argument('--suri', type=str, help='Secret URI of the signing key, e.g. //Alice')
    parser.add_argument('--key-type', choices=['ed25519', 'ecdsa'], help='Signing key type')
    parser.add_argument('--registry', type=str, help='Module error registry (JSON)')
    parser.add_argument('--proxy-reference', choices=['hash', 'address'],
                        help='Point the proxy at implementations by code hash or by address')
    parser.add_argument('--pipelined', action='store_true',
                        help='Assign nonces locally and broadcast independent calls without waiting')
    parser.add_argument('--no-verify', action='store_true', help='Skip the average queries')
    parser.add_argument('--timeout', type=float, help='Per-step timeout in seconds')
    parser.add_argument('--metrics-port', type=int, help='Expose Prometheus metrics on this port')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    return parser


def load_config(args) -> Config:
    if args.config and Path(args.config).exists():
        config = Config.from_file(args.config)
    else:
        config = Config.default()

    if args.host:
        config.node.host = args.host
    if args.port:
        config.node.port = args.port
    if args.artifacts:
        config.deploy.artifacts_root = args.artifacts
    if args.suri:
        config.workflow.suri = args.suri
    if args.key_type:
        config.workflow.key_type = args.key_type
    if args.registry:
        config.workflow.registry_path = args.registry
    if args.proxy_reference:
        config.workflow.proxy_reference = args.proxy_reference
    if args.pipelined:
        config.workflow.pipelined = True
    if args.no_verify:
        config.workflow.verify = False
    if args.timeout:
        config.workflow.step_timeout = args.timeout
    if args.metrics_port:
        config.monitoring.enabled = True
        config.monitoring.port = args.metrics_port
    return config


async def main(args) -> int:
    config = load_config(args)

    try:
        if config.workflow.registry_path:
            registry = MetadataRegistry.from_file(config.workflow.registry_path)
        else:
            registry = MetadataRegistry.default()
        keypair = Keypair.from_uri(config.workflow.suri, config.workflow.key_type)
    except (OSError, ValueError, ArtifactError) as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG

    loader = ArtifactLoader(config.deploy.artifacts_root, config.deploy.validate_code)
    monitor = None
    if config.monitoring.enabled:
        monitor = Monitor(config.monitoring.host, config.monitoring.port, start_server=True)

    logger.info(f"Signing as {keypair.address}")
    try:
        async with NodeConnection(config.node.url, config.node.request_timeout) as node:
            signer = KeyringSigner(keypair, node, config.node.chain_id)
            submitter = TransactionSubmitter(registry, monitor)
            workflow = ProxyWorkflow(node, signer, submitter, loader, config.deploy,
                                     config.workflow, monitor)
            await workflow.run()
    except ArtifactError as e:
        logger.error(f"Artifact error: {e}")
        return EXIT_CONFIG
    except ModuleError as e:
        logger.error(f"Workflow failed: {e.section}.{e.method}: {' '.join(e.documentation)}")
        return EXIT_FAILED
    except (TransactionError, RpcError, QueryError, WorkflowAssertionError) as e:
        logger.error(f"Workflow failed: {e}")
        return EXIT_FAILED
    except asyncio.TimeoutError:
        if config.workflow.step_timeout is None:
            logger.error(f"Node did not answer within {config.node.request_timeout}s")
        else:
            logger.error(f"Workflow step timed out after {config.workflow.step_timeout}s")
        return EXIT_FAILED
    finally:
        if monitor:
            monitor.stop_server()

    logger.info("Workflow completed successfully")
    return EXIT_OK


def run():
    args = build_parser().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        sys.exit(asyncio.run(main(args)))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(EXIT_INTERRUPTED)


if __name__ == '__main__':
    run()
