from typing import Any, Type
from novita_sandbox.code_interpreter import AsyncSandbox
from .e2b import E2BSandboxBackend
from ....schema.config import CoreConfig


class NovitaSandboxBackend(E2BSandboxBackend):
    """Novita mirrors the E2B SDK surface.

    The one difference is that `connect` resets the sandbox timeout, so a
    reattach passes the timeout explicitly instead of letting it fall back
    to the provider default.
    """

    type: str = "novita"
    sdk: Any = AsyncSandbox

    def __init__(
        self,
        api_key: str | None,
        default_template: str,
        domain_base_url: str | None = None,
        reconnect_timeout_seconds: int = 30 * 60,
    ):
        super().__init__(api_key, default_template, domain_base_url)
        self.reconnect_timeout_seconds = reconnect_timeout_seconds

    @classmethod
    def from_config(
        cls: Type["NovitaSandboxBackend"], config: CoreConfig
    ) -> "NovitaSandboxBackend":
        return cls(
            api_key=config.novita_api_key,
            default_template=config.sandbox_default_template,
            domain_base_url=config.novita_domain_base_url,
            reconnect_timeout_seconds=config.sandbox_default_timeout_seconds,
        )

    def _connect_options(self) -> dict[str, Any]:
        return {"timeout": self.reconnect_timeout_seconds}
