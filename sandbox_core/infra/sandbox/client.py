from typing import Optional, Type
from .backend.base import SandboxBackend
from .backend.e2b import E2BSandboxBackend
from .backend.novita import NovitaSandboxBackend
from ...env import LOG
from ...schema.config import CoreConfig

BACKENDS: dict[str, Type[SandboxBackend]] = {
    backend.type: backend for backend in (E2BSandboxBackend, NovitaSandboxBackend)
}


def build_backend(config: CoreConfig) -> SandboxBackend:
    backend_cls = BACKENDS.get(config.sandbox_type)
    if backend_cls is None:
        raise ValueError(
            f"Unknown sandbox_type {config.sandbox_type!r}, expected one of {sorted(BACKENDS)}"
        )
    return backend_cls.from_config(config)


class SandboxClient:
    """Owns the provider backend named by `config.sandbox_type`."""

    def __init__(self, config: CoreConfig):
        self.config = config
        self.__backend: Optional[SandboxBackend] = None

    def init(self) -> SandboxBackend:
        if self.__backend is None:
            self.__backend = build_backend(self.config)
            LOG.info(f"Sandbox provider {self.__backend.type} is ready")
        return self.__backend

    def close(self) -> None:
        self.__backend = None

    @property
    def enabled(self) -> bool:
        return self.__backend is not None

    def use_backend(self) -> SandboxBackend:
        if self.__backend is None:
            raise ValueError("Sandbox client is not initialized")
        return self.__backend
