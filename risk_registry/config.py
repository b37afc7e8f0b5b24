"""
Configuration management for the registry.
"""
import json
import os
from typing import Optional
from dataclasses import dataclass, asdict


@dataclass
class RegistryConfig:
    """Registry identity. Keys are base58 text."""
    program_id: str = "Fg6PaFpoGXkYsidMpWTK6W2BeZ7FEfcYkg476zPFsLnS"
    community: str = "11111111111111111111111111111111"
    schema: str = "Ethereum"
    chain_id: int = 1


@dataclass
class DatabaseConfig:
    """Database configuration."""
    path: str = "./registry_data"
    write_buffer_size: int = 64 * 1024 * 1024  # 64MB
    max_open_files: int = 1000
    compression: Optional[str] = "snappy"


@dataclass
class MonitoringConfig:
    """Monitoring configuration."""
    host: str = "127.0.0.1"
    port: int = 9090
    enabled: bool = False


@dataclass
class Config:
    """Main configuration."""
    registry: RegistryConfig
    database: DatabaseConfig
    monitoring: MonitoringConfig

    @classmethod
    def default(cls) -> 'Config':
        """Create default configuration."""
        return cls(
            registry=RegistryConfig(),
            database=DatabaseConfig(),
            monitoring=MonitoringConfig()
        )

    @classmethod
    def from_file(cls, path: str) -> 'Config':
        """Load configuration from JSON file."""
        with open(path, 'r') as f:
            data = json.load(f)

        return cls(
            registry=RegistryConfig(**data.get('registry', {})),
            database=DatabaseConfig(**data.get('database', {})),
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
            'registry': asdict(self.registry),
            'database': asdict(self.database),
            'monitoring': asdict(self.monitoring)
        }
