"""Application configuration loaded from the environment."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class ResilienceConfig(BaseSettings):
    """Default resilience policy values, in seconds."""

    model_config = {"env_prefix": "HOMIE_RESILIENCE_"}

    failure_threshold: int = 5
    reset_timeout: float = 60.0
    success_threshold: int = 3

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0

    requests_per_second: float = 10.0
    burst_limit: int | None = 20
    window_size: float = 60.0


class DispatcherConfig(BaseSettings):
    """Manifest-driven transport dispatch configuration."""

    model_config = {"env_prefix": "HOMIE_DISPATCHER_"}

    http_timeout: float = 10.0
    test_timeout: float = 5.0
    ws_timeout: float = 5.0
    ssh_timeout: float = 30.0
    docker_timeout: float = 10.0
    docker_socket_path: str = "/var/run/docker.sock"
    ssh_known_hosts: str | None = None
    date_range_days: int = 7


class RegistryConfig(BaseSettings):
    """Adapter cache and discovery configuration."""

    model_config = {"env_prefix": "HOMIE_REGISTRY_"}

    idle_timeout: float = 300.0
    cleanup_interval: float = 60.0
    discovery_timeout: float = 5.0
    connect_retry_delay: float = 2.0


class Settings(BaseSettings):
    """Root application settings."""

    model_config = {"env_prefix": "HOMIE_"}

    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    node_id: str = "unknown"
    services_file: str | None = None

    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)
    dispatcher: DispatcherConfig = Field(default_factory=DispatcherConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
