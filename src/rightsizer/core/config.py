"""Configuration management for kube-rightsizer"""

import yaml
import json
from pathlib import Path
from typing import Dict, Any, Optional, List
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import logging

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

MIB = 1024 * 1024
GIB = 1024 * MIB


class DatabaseConfig(BaseModel):
    """History store connection settings"""
    url: SecretStr = SecretStr("sqlite:///rightsizer.db")
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    echo: bool = False


class KubernetesConfig(BaseModel):
    """Cluster access and workload filtering"""
    in_cluster: bool = False
    kubeconfig: Optional[Path] = None
    context: Optional[str] = None
    namespace: Optional[str] = None  # None means all namespaces
    request_timeout: int = 30
    running_phase: str = "Running"
    system_namespace: str = "kube-system"
    allowed_system_prefixes: List[str] = Field(
        default_factory=lambda: ["coredns", "metrics-server", "aws-node", "kube-proxy"]
    )


class AnalysisConfig(BaseModel):
    """Right-sizing rules and cost model"""
    window_days: float = 7
    collection_interval_minutes: int = 5
    cpu_cost_per_core: float = 30.0  # USD per core per month
    memory_cost_per_gb: float = 10.0  # USD per GiB per month
    headroom: float = 1.2
    min_cpu_cores: float = 0.01
    min_memory_bytes: int = 32 * MIB
    default_cpu_request: float = 0.1
    default_memory_request: int = 128 * MIB
    over_provisioned_threshold: float = 30.0
    under_provisioned_threshold: float = -20.0
    high_confidence_samples: int = 100
    medium_confidence_samples: int = 20

    @field_validator('window_days', 'headroom')
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator('collection_interval_minutes')
    @classmethod
    def _positive_interval(cls, value: int) -> int:
        if value < 1:
            raise ValueError("collection interval must be at least one minute")
        return value


class CollectorConfig(BaseModel):
    """Worker pool used within one collection cycle"""
    max_workers: int = 4

    @field_validator('max_workers')
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_workers must be at least 1")
        return value


class LoggingConfig(BaseModel):
    """Logging configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[Path] = None
    max_bytes: int = 10485760  # 10MB
    backup_count: int = 5
    console: bool = True
    structured: bool = False
    audit_file: Optional[Path] = None


class ApiConfig(BaseModel):
    """Reporting API server"""
    host: str = "0.0.0.0"
    port: int = 8080
    default_page_size: int = 50
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class Settings(BaseSettings):
    """Main application settings"""
    app_name: str = "kube-rightsizer"
    version: str = "0.1.0"
    environment: str = "development"
    debug: bool = False

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    kubernetes: KubernetesConfig = Field(default_factory=KubernetesConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    collector: CollectorConfig = Field(default_factory=CollectorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="RIGHTSIZER_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def load(cls, **data: Any) -> "Settings":
        """Build settings, turning validation failures into ConfigurationError"""
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_yaml(cls, path: Path) -> "Settings":
        """Load settings from YAML file"""
        if not path.exists():
            logger.warning(f"Configuration file {path} not found, using defaults")
            return cls.load()

        with open(path, 'r') as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Cannot parse {path}: {e}") from e

        return cls.load(**(data or {}))

    @classmethod
    def from_json(cls, path: Path) -> "Settings":
        """Load settings from JSON file"""
        if not path.exists():
            logger.warning(f"Configuration file {path} not found, using defaults")
            return cls.load()

        with open(path, 'r') as f:
            data = json.load(f)

        return cls.load(**data)

    def to_yaml(self, path: Path) -> None:
        """Save settings to YAML file"""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.safe_dump(self.model_dump(mode="json", exclude_unset=True), f, default_flow_style=False)

    @property
    def collection_interval_seconds(self) -> int:
        return self.analysis.collection_interval_minutes * 60

    def summary(self) -> Dict[str, Any]:
        """Non-secret view of the effective settings"""
        return {
            "environment": self.environment,
            "namespace": self.kubernetes.namespace or "all",
            "window_days": self.analysis.window_days,
            "interval_minutes": self.analysis.collection_interval_minutes,
            "cpu_cost_per_core": self.analysis.cpu_cost_per_core,
            "memory_cost_per_gb": self.analysis.memory_cost_per_gb,
            "max_workers": self.collector.max_workers,
        }


# Cached instance for the CLI and API entry points
settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get cached settings instance"""
    global settings
    if settings is None:
        config_paths = [
            Path.home() / ".rightsizer" / "config.yaml",
            Path("./rightsizer.yaml"),
        ]

        for path in config_paths:
            if path.exists():
                settings = Settings.from_yaml(path)
                logger.info(f"Loaded configuration from {path}")
                break
        else:
            settings = Settings.load()
            logger.info("Using default configuration")

    return settings


def reload_settings(path: Optional[Path] = None) -> Settings:
    """Reload settings from file"""
    global settings

    if path:
        if path.suffix in (".yaml", ".yml"):
            settings = Settings.from_yaml(path)
        else:
            settings = Settings.from_json(path)
    else:
        settings = None
        settings = get_settings()

    return settings
