"""Hostname extraction strategies for the watched Kubernetes resource kinds.

Brief:
  - Each supported kind is described by a ResourceKind value carrying its API
    coordinates (group/version/plural) and three strategy callables that map a
    resource body to an owner id, a display name and a list of hostnames.
  - RESOURCE_KINDS is the static registration table consumed by the entrypoint
    and the watchers. Supporting a new kind only needs a new entry here.
"""

from __future__ import annotations

import difflib
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping

Resource = Mapping[str, Any]


class UnsupportedResourceError(TypeError):
    """Raised when a strategy is handed a resource body of another kind.

    This always indicates a registration bug (a watcher wired to the wrong
    strategy), so callers must not retry.
    """


@dataclass(frozen=True)
class ResourceKind:
    """Brief: API coordinates plus hostname extraction strategy for one kind.

    Inputs (constructor fields):
      - kind: Kubernetes kind string as it appears in resource bodies
        (e.g. "HTTPRoute").
      - group: API group ("gateway.networking.k8s.io", "networking.k8s.io").
      - version: API version ("v1").
      - plural: Collection name used in API paths ("httproutes").
      - get_owner_id / get_display_name / get_hostnames: callables taking the
        resource body mapping.

    Outputs:
      - ResourceKind instance; usable as a dict key.
    """

    kind: str
    group: str
    version: str
    plural: str
    get_owner_id: Callable[[Resource], str]
    get_display_name: Callable[[Resource], str]
    get_hostnames: Callable[[Resource], List[str]]

    @property
    def api_path(self) -> str:
        return f"{self.group}/{self.version}/{self.plural}"

    def __str__(self) -> str:
        return self.kind


def _metadata(resource: Resource) -> Mapping[str, Any]:
    meta = resource.get("metadata") if isinstance(resource, Mapping) else None
    return meta if isinstance(meta, Mapping) else {}


def _display_name(resource: Resource) -> str:
    meta = _metadata(resource)
    name = str(meta.get("name") or "")
    namespace = meta.get("namespace")
    return f"{namespace}/{name}" if namespace else name


def _owner_id(resource: Resource) -> str:
    """Return metadata.uid, or namespace/name when the uid is missing."""
    uid = _metadata(resource).get("uid")
    if uid:
        return str(uid)
    return _display_name(resource)


def _spec(resource: Resource) -> Mapping[str, Any]:
    spec = resource.get("spec")
    return spec if isinstance(spec, Mapping) else {}


def _route_hostnames(resource: Resource) -> List[str]:
    hostnames = _spec(resource).get("hostnames") or []
    return [str(h).strip() for h in hostnames if h and str(h).strip()]


def _ingress_hostnames(resource: Resource) -> List[str]:
    hostnames: List[str] = []
    for rule in _spec(resource).get("rules") or []:
        # Rules without a host apply to all inbound traffic; nothing to publish.
        host = rule.get("host") if isinstance(rule, Mapping) else None
        if host and str(host).strip():
            hostnames.append(str(host).strip())
    return hostnames


def _checked(
    kind: str, func: Callable[[Resource], Any]
) -> Callable[[Resource], Any]:
    """Wrap func so it refuses resource bodies of any other kind."""

    def _wrapper(resource: Resource) -> Any:
        actual = resource.get("kind") if isinstance(resource, Mapping) else None
        if actual != kind:
            found = actual if actual else type(resource).__name__
            raise UnsupportedResourceError(
                f"{func.__name__}: unexpected type of resource {found} "
                f"(strategy registered for {kind})"
            )
        return func(resource)

    _wrapper.__name__ = func.__name__
    return _wrapper


def make_resource_kind(
    kind: str,
    group: str,
    version: str,
    plural: str,
    get_hostnames: Callable[[Resource], List[str]],
) -> ResourceKind:
    """Brief: Build a ResourceKind using the shared owner id/display name rules.

    Inputs:
      - kind, group, version, plural: API coordinates of the kind.
      - get_hostnames: Unchecked extraction function for the kind's bodies.

    Outputs:
      - ResourceKind whose strategies fail fast on bodies of another kind.
    """

    return ResourceKind(
        kind=kind,
        group=group,
        version=version,
        plural=plural,
        get_owner_id=_checked(kind, _owner_id),
        get_display_name=_checked(kind, _display_name),
        get_hostnames=_checked(kind, get_hostnames),
    )


GATEWAY_API_GROUP = "gateway.networking.k8s.io"

HTTP_ROUTE = make_resource_kind(
    "HTTPRoute", GATEWAY_API_GROUP, "v1", "httproutes", _route_hostnames
)
GRPC_ROUTE = make_resource_kind(
    "GRPCRoute", GATEWAY_API_GROUP, "v1", "grpcroutes", _route_hostnames
)
INGRESS = make_resource_kind(
    "Ingress", "networking.k8s.io", "v1", "ingresses", _ingress_hostnames
)


def _normalize(alias: str) -> str:
    return str(alias).strip().lower().replace("-", "").replace("_", "")


RESOURCE_KINDS: Dict[str, ResourceKind] = {
    "httproute": HTTP_ROUTE,
    "httproutes": HTTP_ROUTE,
    "grpcroute": GRPC_ROUTE,
    "grpcroutes": GRPC_ROUTE,
    "ingress": INGRESS,
    "ingresses": INGRESS,
}

DEFAULT_KINDS = ("httproute", "grpcroute", "ingress")


def get_resource_kind(alias: str) -> ResourceKind:
    """
    Resolve a configured kind alias ("httproute", "HTTPRoute", "http_route",
    "ingresses", ...) to its ResourceKind.

    Raises KeyError with close-match suggestions for unknown aliases.

    Example:
        >>> get_resource_kind("HTTP-Route").plural
        'httproutes'
    """
    key = _normalize(alias)
    try:
        return RESOURCE_KINDS[key]
    except KeyError:
        suggestions = difflib.get_close_matches(key, list(RESOURCE_KINDS), n=3)
        raise KeyError(
            f"Unknown resource kind '{alias}'. "
            f"Known kinds: {', '.join(sorted(RESOURCE_KINDS))}. "
            f"Suggestions: {suggestions}"
        )
