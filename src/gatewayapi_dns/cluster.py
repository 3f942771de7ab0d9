"""Access to the Kubernetes API for listing and watching resource kinds.

Brief:
  - ClusterClient is the seam the watchers depend on; tests substitute fakes.
  - KubernetesClusterClient talks to a real cluster through the official
    `kubernetes` client. Every kind (Gateway API routes as well as built-in
    Ingress) goes through the CustomObjectsApi so resource bodies are always
    plain dicts.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, Dict, Iterator, Optional, Tuple

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from .kinds import ResourceKind

logger = logging.getLogger(__name__)

WatchEvent = Tuple[str, Dict[str, Any]]

HTTP_NOT_FOUND = 404
HTTP_GONE = 410


class ResourceKindNotFound(Exception):
    """The API server does not serve this kind (CRD not installed yet)."""

    def __init__(self, kind: ResourceKind, detail: str = "") -> None:
        self.kind = kind
        msg = f"The resource type {kind.kind} ({kind.api_path}) cannot be found"
        super().__init__(f"{msg}: {detail}" if detail else msg)


class WatchExpired(Exception):
    """The resource version a watch resumed from is no longer available (410)."""

    def __init__(self, kind: ResourceKind, resource_version: Optional[str]) -> None:
        self.kind = kind
        self.resource_version = resource_version
        super().__init__(
            f"Watch of {kind.kind} expired at resource version {resource_version}"
        )


class ClusterConfigError(Exception):
    """Kubernetes credentials could not be loaded."""


class ClusterClient:
    """Brief: Minimal list/watch interface used by ResourceWatcher.

    Implementations:
      - list(kind): return the current collection as a mapping with "items"
        and, when known, "metadata.resourceVersion". Raise
        ResourceKindNotFound when the kind is not registered with the API
        server. Any other failure is raised unchanged.
      - watch(kind, stop_event, resource_version=None): yield
        (event_type, body) pairs in arrival order until the stream ends or
        stop_event is set. With a resource_version the stream resumes after
        that version; raise WatchExpired when the server no longer has it.
    """

    def list(self, kind: ResourceKind) -> Any:
        raise NotImplementedError

    def watch(
        self,
        kind: ResourceKind,
        stop_event: threading.Event,
        resource_version: Optional[str] = None,
    ) -> Iterator[WatchEvent]:
        raise NotImplementedError


def is_running_in_pod(environ: Optional[Dict[str, str]] = None) -> bool:
    env = os.environ if environ is None else environ
    return bool(env.get("KUBERNETES_SERVICE_HOST"))


class KubernetesClusterClient(ClusterClient):
    """ClusterClient backed by the official kubernetes Python client.

    Example use:
        >>> from gatewayapi_dns.kinds import HTTP_ROUTE
        >>> cluster = KubernetesClusterClient()  # doctest: +SKIP
        >>> cluster.list(HTTP_ROUTE)  # doctest: +SKIP
    """

    def __init__(
        self,
        kubeconfig: Optional[str] = None,
        *,
        in_cluster: Optional[bool] = None,
        watch_timeout_seconds: int = 300,
        api: Optional[client.CustomObjectsApi] = None,
    ) -> None:
        """Initialize the client and load credentials.

        Inputs:
          - kubeconfig: Optional kubeconfig path; None uses the default
            lookup ($KUBECONFIG, ~/.kube/config).
          - in_cluster: Force in-cluster (service account) configuration;
            None auto-detects via KUBERNETES_SERVICE_HOST.
          - watch_timeout_seconds: Server-side timeout for each watch request
            so the stream ends periodically and cancellation is re-checked.
          - api: Pre-built CustomObjectsApi (skips config loading).

        Raises ClusterConfigError when no usable credentials are found.
        """
        self.watch_timeout_seconds = max(1, int(watch_timeout_seconds))
        if api is None:
            if in_cluster is None:
                in_cluster = is_running_in_pod()
            try:
                if in_cluster:
                    config.load_incluster_config()
                    logger.info("Loaded in-cluster Kubernetes configuration")
                else:
                    config.load_kube_config(config_file=kubeconfig)
                    logger.info(
                        "Loaded Kubernetes configuration from %s",
                        kubeconfig or "default kubeconfig",
                    )
            except (config.ConfigException, OSError) as exc:
                source = "service account" if in_cluster else kubeconfig or "kubeconfig"
                raise ClusterConfigError(
                    f"Cannot load Kubernetes configuration from {source}: {exc}"
                ) from exc
            api = client.CustomObjectsApi()
        self._api = api

    def list(self, kind: ResourceKind) -> Any:
        try:
            return self._api.list_cluster_custom_object(
                kind.group, kind.version, kind.plural
            )
        except ApiException as exc:
            if exc.status == HTTP_NOT_FOUND:
                raise ResourceKindNotFound(kind, str(exc.reason or "")) from exc
            raise

    def watch(
        self,
        kind: ResourceKind,
        stop_event: threading.Event,
        resource_version: Optional[str] = None,
    ) -> Iterator[WatchEvent]:
        kwargs: Dict[str, Any] = {"timeout_seconds": self.watch_timeout_seconds}
        if resource_version:
            kwargs["resource_version"] = resource_version
        w = watch.Watch()
        stream = w.stream(
            self._api.list_cluster_custom_object,
            kind.group,
            kind.version,
            kind.plural,
            **kwargs,
        )
        try:
            for event in stream:
                if stop_event.is_set():
                    break
                body = event.get("object")
                if not isinstance(body, dict):
                    body = event.get("raw_object") or {}
                yield str(event.get("type") or ""), body
        except ApiException as exc:
            if exc.status == HTTP_GONE:
                raise WatchExpired(kind, resource_version) from exc
            raise
        finally:
            w.stop()
