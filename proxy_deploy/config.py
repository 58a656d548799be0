"""
Configuration management for the deploy/upgrade workflow.
"""
import json
import os
from typing import Optional
from dataclasses import dataclass, asdict

# 4000 * 10^12 units
DEFAULT_ENDOWMENT = 4000 * 1_000_000 * 1_000_000
# 200000 * 10^6 units
DEFAULT_GAS_LIMIT = 200000 * 1_000_000


@dataclass
class NodeConfig:
    """Node connection configuration."""
    host: str = "127.0.0.1"
    port: int = 9944
    scheme: str = "ws"
    chain_id: int = 42
    request_timeout: float = 30.0

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"


@dataclass
class DeployConfig:
    """Contract deployment configuration."""
    artifacts_root: str = "target/ink"
    endowment: int = DEFAULT_ENDOWMENT
    gas_limit: int = DEFAULT_GAS_LIMIT
    validate_code: bool = True


@dataclass
class WorkflowConfig:
    """Proxy workflow configuration."""
    suri: str = "//Alice"
    key_type: str = "ed25519"
    proxy_reference: str = "hash"  # "hash" or "address"
    pipelined: bool = False
    verify: bool = True
    step_timeout: Optional[float] = None
    registry_path: Optional[str] = None
    implementation_v1: str = "v1"
    implementation_v2: str = "v2"
    proxy: str = "proxy"


@dataclass
class MonitoringConfig:
    """Monitoring configuration."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 9090


@dataclass
class Config:
    """Main configuration."""
    node: NodeConfig
    deploy: DeployConfig
    workflow: WorkflowConfig
    monitoring: MonitoringConfig

    @classmethod
    def default(cls) -> 'Config':
        """Create default configuration."""
        return cls(
            node=NodeConfig(),
            deploy=DeployConfig(),
            workflow=WorkflowConfig(),
            monitoring=MonitoringConfig()
        )

    @classmethod
    def from_file(cls, path: str) -> 'Config':
        """Load configuration from JSON file."""
        with open(path, 'r') as f:
            data = json.load(f)

        return cls(
            node=NodeConfig(**data.get('node', {})),
            deploy=DeployConfig(**data.get('deploy', {})),
            workflow=WorkflowConfig(**data.get('workflow', {})),
            monitoring=MonitoringConfig(**data.get('monitoring', {}))
        )

    def to_file(self, path: str):
        """Save configuration to JSON file."""
        os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'node': asdict(self.node),
            'deploy': asdict(self.deploy),
            'workflow': asdict(self.workflow),
            'monitoring': asdict(self.monitoring)
        }
