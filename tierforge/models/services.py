"""Service identity models — what a pipeline builds and deploys."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Runtime(str, Enum):
    """Container runtime family the service image is built for."""

    COMPILED_WEB = "compiled-web-runtime"
    SCRIPTING = "scripting-runtime"


class ServiceType(str, Enum):
    """How the service is reached.

    Public services sit behind a load balancer target group; internal
    services are registered in service discovery.
    """

    PUBLIC = "public"
    INTERNAL = "internal"


class Service(BaseModel):
    """A microservice with its own build and deployment pipeline.

    Immutable once a pipeline has been resolved for it.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(pattern=r"^[a-z][a-z0-9-]{0,62}$")
    runtime: Runtime = Runtime.COMPILED_WEB
    service_type: ServiceType = ServiceType.PUBLIC
    container_port: int = Field(default=8080, ge=1, le=65535)

    @property
    def exposure(self) -> str:
        """Traffic entry point: ``load_balancer`` or ``service_discovery``."""
        if self.service_type == ServiceType.PUBLIC:
            return "load_balancer"
        return "service_discovery"
