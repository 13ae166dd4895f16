"""Routing configuration data model served by the routeboard REST API.

The shapes here mirror the JSON documents exchanged over HTTP: camelCase field
names on the wire, snake_case attributes in Python. Every model is frozen and
every mapping is a read-only view, so a snapshot that has been published to
readers cannot be modified in place; new configuration is expressed by
building new objects.

Unknown JSON fields are ignored and missing or null mappings default to empty,
so a body such as ``{}`` or ``null`` parses into an empty ProviderConfiguration.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Annotated, Any, Dict, Mapping, Optional, Tuple, TypeVar

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    WrapSerializer,
    model_validator,
)

V = TypeVar("V")

# Mappings are exposed read-only; serialization sees a plain dict again.
ReadOnlyMap = Annotated[
    Dict[str, V],
    AfterValidator(MappingProxyType),
    WrapSerializer(lambda value, handler: handler(dict(value))),
]


class _FrozenModel(BaseModel):
    """Brief: Common pydantic settings for all configuration entities."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        validate_default=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _null_means_default(cls, data: Any) -> Any:
        # JSON null behaves like an absent key or an empty object.
        if data is None:
            return {}
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class Server(_FrozenModel):
    """Brief: A single endpoint inside a backend pool.

    Inputs (fields):
      - url: Endpoint address (e.g. "http://10.0.0.2:8080").
      - weight: Relative weight used by whatever balances traffic.

    Example:
      >>> Server.model_validate({"url": "http://10.0.0.2:80", "weight": 2}).weight
      2
    """

    url: str = ""
    weight: int = 0


class CircuitBreaker(_FrozenModel):
    expression: str = ""


class LoadBalancer(_FrozenModel):
    method: str = ""


class MaxConn(_FrozenModel):
    amount: int = 0
    extractor_func: str = Field(default="", alias="extractorFunc")


class Backend(_FrozenModel):
    """Brief: Named pool of servers.

    Inputs (fields):
      - servers: Mapping of server id to Server.
      - circuit_breaker / load_balancer / max_conn: Optional tuning blocks
        carried as-is; routeboard never interprets them.
    """

    servers: ReadOnlyMap[Server] = Field(default_factory=dict)
    circuit_breaker: Optional[CircuitBreaker] = Field(
        default=None, alias="circuitBreaker"
    )
    load_balancer: Optional[LoadBalancer] = Field(default=None, alias="loadBalancer")
    max_conn: Optional[MaxConn] = Field(default=None, alias="maxConn")


class Route(_FrozenModel):
    rule: str = ""


class Frontend(_FrozenModel):
    """Brief: Named entry point whose routes select a backend.

    Inputs (fields):
      - routes: Mapping of route id to Route.
      - backend: Name of the backend this frontend forwards to. This is a weak
        reference resolved by consumers; it is not checked here.
      - entry_points: Entry point names the frontend is attached to.
      - pass_host_header: Whether the Host header is forwarded unchanged.
      - priority: Matching priority.
    """

    routes: ReadOnlyMap[Route] = Field(default_factory=dict)
    backend: str = ""
    entry_points: Tuple[str, ...] = Field(default=(), alias="entryPoints")
    pass_host_header: bool = Field(default=False, alias="passHostHeader")
    priority: int = 0


class ProviderConfiguration(_FrozenModel):
    """Brief: Full configuration produced by one provider.

    Example:
      >>> cfg = ProviderConfiguration.model_validate_json('{"backends": {"b1": {}}}')
      >>> list(cfg.backends), cfg.frontends
      (['b1'], {})
    """

    backends: ReadOnlyMap[Backend] = Field(default_factory=dict)
    frontends: ReadOnlyMap[Frontend] = Field(default_factory=dict)


class ConfigSnapshot(_FrozenModel):
    """Brief: Point-in-time view of every provider's configuration.

    Inputs (fields):
      - providers: Mapping of provider id to ProviderConfiguration.

    Outputs:
      - Immutable snapshot; use with_provider() to derive a new one.

    Example:
      >>> snap = ConfigSnapshot().with_provider("web", ProviderConfiguration())
      >>> sorted(snap.providers)
      ['web']
    """

    providers: ReadOnlyMap[ProviderConfiguration] = Field(default_factory=dict)

    def with_provider(
        self, provider_id: str, configuration: ProviderConfiguration
    ) -> "ConfigSnapshot":
        """Brief: Return a new snapshot with one provider added or replaced.

        Inputs:
          - provider_id: Provider name.
          - configuration: The provider's new configuration.

        Outputs:
          - ConfigSnapshot: fresh object; self is left untouched.
        """

        providers = dict(self.providers)
        providers[provider_id] = configuration
        return ConfigSnapshot(providers=providers)


def to_jsonable(value: Any) -> Any:
    """Brief: Render models (or mappings of models) into JSON-ready data.

    Inputs:
      - value: BaseModel, mapping whose values may be models, or plain data.

    Outputs:
      - Plain dict/list/scalar structure using wire (camelCase) field names,
        with unset optional blocks omitted.

    Example:
      >>> to_jsonable({"s1": Server(url="http://a", weight=1)})
      {'s1': {'url': 'http://a', 'weight': 1}}
    """

    if isinstance(value, ConfigSnapshot):
        return to_jsonable(value.providers)
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    return value
