
from pydantic import BaseModel
from typing import Literal, Optional


class CoreConfig(BaseModel):
    # Core Configuration
    logging_format: str = "text"
    logging_level: str = "INFO"

    # otel
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_enabled: bool = False
    otel_sample_ratio: float = 1.0
    otel_service_name: str = "sandbox-core"
    otel_service_version: str = "0.1.0"

    # sandbox provider
    sandbox_type: Literal["e2b", "novita"] = "e2b"
    e2b_api_key: Optional[str] = None
    e2b_domain_base_url: Optional[str] = None
    novita_api_key: Optional[str] = None
    novita_domain_base_url: Optional[str] = None
    sandbox_default_template: str = "code-interpreter-v1"

    # sandbox lifecycle
    sandbox_default_timeout_seconds: int = 30 * 60
    sandbox_max_timeout_seconds: int = 60 * 60
    sandbox_keepalive_interval_seconds: float = 4 * 60
    sandbox_max_idle_seconds: float = 30 * 60
    sandbox_cleanup_interval_seconds: float = 5 * 60
    sandbox_auto_start_cleanup: bool = True

    # execution
    execution_default_timeout_seconds: float = 30
    client_channel_max_messages: int = 1000

    # mcp server deployment
    mcp_server_port: int = 3000
    mcp_server_hostname: str = "0.0.0.0"
    mcp_default_timeout_seconds: int = 30 * 60
    mcp_gateway_install_command: str = "npm install -g supergateway"
    mcp_install_timeout_seconds: float = 5 * 60
    mcp_ready_poll_interval_seconds: float = 5.0
    mcp_ready_max_attempts: int = 5
    mcp_ready_request_timeout_seconds: float = 10.0


def post_validate_core_config_sanity(config: CoreConfig) -> None:
    """Raises an AssertionError listing every problem found in `config`."""
    problems = []
    provider_key = f"{config.sandbox_type}_api_key"
    if getattr(config, provider_key) is None:
        problems.append(f"{provider_key} is required when sandbox_type is {config.sandbox_type}")
    if config.sandbox_keepalive_interval_seconds >= config.sandbox_default_timeout_seconds:
        problems.append(
            "sandbox_keepalive_interval_seconds must be shorter than sandbox_default_timeout_seconds"
        )
    if config.sandbox_default_timeout_seconds > config.sandbox_max_timeout_seconds:
        problems.append(
            "sandbox_default_timeout_seconds exceeds sandbox_max_timeout_seconds"
        )
    if config.mcp_ready_max_attempts < 1:
        problems.append("mcp_ready_max_attempts must be at least 1")
    if config.client_channel_max_messages < 1:
        problems.append("client_channel_max_messages must be at least 1")
    assert not problems, "; ".join(problems)
