"""Keep the RecordStore converged with one watched Kubernetes resource kind.

Brief:
  - A ResourceWatcher first probes until the kind is served by the API
    server (CRDs may be installed after startup), then consumes a watch
    stream, applying Added/Modified/Deleted events to the RecordStore one at
    a time.
  - Watch stream failures are logged and the stream is reopened until the
    shared stop event is set. A reopened stream resumes from the last seen
    resourceVersion; when there is none (first open, or the server answered
    410 Gone) the kind is listed again and the store reconciled against it.
"""

from __future__ import annotations

import enum
import json
import logging
import threading
from typing import Any, Dict, Mapping, Optional, Set

from .cluster import ClusterClient, ResourceKindNotFound, WatchExpired
from .config.logging_config import TRACE
from .kinds import ResourceKind, UnsupportedResourceError
from .records import RecordStore, normalize_domain

logger = logging.getLogger(__name__)

DEFAULT_PROBE_INTERVAL = 10.0

EVENT_ADDED = "ADDED"
EVENT_MODIFIED = "MODIFIED"
EVENT_DELETED = "DELETED"


class WatcherState(enum.Enum):
    PROBING = "probing"
    WATCHING = "watching"
    TERMINATED = "terminated"


class ResourceWatcher:
    """Brief: Reconciliation loop for a single resource kind.

    Inputs:
      - kind: ResourceKind describing the API coordinates and hostname
        extraction for the watched kind.
      - cluster: ClusterClient used for the existence probe and the watch.
      - store: Shared RecordStore receiving the records.
      - local_address: IPv4 address every created record points at.
      - stop_event: Shared cancellation signal; a private one is created when
        omitted.
      - probe_interval: Seconds to wait between existence probes.
      - watch_retry_delay: Seconds to wait before reopening a failed or
        finished watch stream (0 reopens immediately).

    Outputs:
      - ResourceWatcher; call start() to run it on a daemon thread or run()
        to block the calling thread.

    Example use:
        >>> from gatewayapi_dns.kinds import HTTP_ROUTE
        >>> watcher = ResourceWatcher(HTTP_ROUTE, cluster, store, "10.0.0.5")  # doctest: +SKIP
        >>> watcher.start()  # doctest: +SKIP
    """

    def __init__(
        self,
        kind: ResourceKind,
        cluster: ClusterClient,
        store: RecordStore,
        local_address: str,
        *,
        stop_event: Optional[threading.Event] = None,
        probe_interval: float = DEFAULT_PROBE_INTERVAL,
        watch_retry_delay: float = 0.0,
    ) -> None:
        self.kind = kind
        self._cluster = cluster
        self._store = store
        self._local_address = str(local_address)
        self._stop = stop_event if stop_event is not None else threading.Event()
        self._probe_interval = max(0.0, float(probe_interval))
        self._watch_retry_delay = max(0.0, float(watch_retry_delay))
        self._state = WatcherState.PROBING
        self._thread: Optional[threading.Thread] = None
        self._listing: Any = None
        self._resource_version: Optional[str] = None
        self._owners: Set[str] = set()
        self.probe_attempts = 0
        self.error: Optional[BaseException] = None

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def stop_event(self) -> threading.Event:
        return self._stop

    def start(self) -> threading.Thread:
        t = threading.Thread(
            target=self._run_thread,
            name=f"ResourceWatcher-{self.kind.kind}",
            daemon=True,
        )
        self._thread = t
        t.start()
        return t

    def stop(self) -> None:
        self._stop.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the watcher thread; return True once it has exited."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _run_thread(self) -> None:
        try:
            self.run()
        except Exception as exc:
            self.error = exc
            logger.exception("Watcher for %s stopped after fatal error", self.kind)

    def run(self) -> None:
        """Brief: Probe for the kind, then watch it until the stop event is set.

        Outputs:
          - None. Returns normally on cancellation. Raises
            UnsupportedResourceError for strategy/kind mismatches and any
            probe failure other than ResourceKindNotFound.
        """

        try:
            if self._wait_for_kind():
                self._watch_until_stopped()
        finally:
            self._state = WatcherState.TERMINATED
        logger.info("Stopped watching %s", self.kind)

    def _kind_exists(self) -> bool:
        self.probe_attempts += 1
        try:
            self._listing = self._cluster.list(self.kind)
        except ResourceKindNotFound:
            return False
        return True

    def _wait_for_kind(self) -> bool:
        self._state = WatcherState.PROBING
        while not self._stop.is_set():
            if self._kind_exists():
                return not self._stop.is_set()
            logger.warning(
                "The resource type %s cannot be found. Waiting %s seconds before trying again...",
                self.kind,
                self._probe_interval,
            )
            if self._stop.wait(self._probe_interval):
                break
        return False

    def _watch_until_stopped(self) -> None:
        self._state = WatcherState.WATCHING
        while not self._stop.is_set():
            try:
                if self._resource_version is None:
                    self._resync()
                self._watch_once()
            except UnsupportedResourceError:
                raise
            except WatchExpired as exc:
                logger.info("%s; listing %s again", exc, self.kind)
                self._resource_version = None
            except Exception as exc:
                logger.error(
                    "Exception watching resource %s: %s (%s)",
                    self.kind,
                    exc,
                    type(exc).__name__,
                )
                logger.log(TRACE, "Watch failure for %s", self.kind, exc_info=True)
            # TODO: bounded exponential backoff once watch_retry_delay proves too blunt
            if self._watch_retry_delay and self._stop.wait(self._watch_retry_delay):
                break

    def _resync(self) -> None:
        """Bring the store in line with a full listing of the kind.

        Owners this watcher published that are missing from the listing are
        removed (deleted while no stream was open); every listed resource is
        synced as if it had just been added. The listing's resourceVersion
        becomes the point the next watch resumes from.
        """

        listing = self._listing
        self._listing = None
        if listing is None:
            listing = self._cluster.list(self.kind)

        live: Dict[str, Mapping[str, Any]] = {}
        items = listing.get("items") if isinstance(listing, Mapping) else None
        for item in items or []:
            if not isinstance(item, Mapping):
                continue
            # List responses of built-in kinds omit the per-item kind.
            if not item.get("kind"):
                item = {**item, "kind": self.kind.kind}
            live[self.kind.get_owner_id(item)] = item

        for owner_id in sorted(self._owners - set(live)):
            logger.info(
                "Removing DNS entries for %s %s (no longer listed)", self.kind, owner_id
            )
            self._store.remove_records_for_owner(owner_id)
            self._owners.discard(owner_id)
        for item in live.values():
            self._sync_records(item)

        self._resource_version = _resource_version_of(listing)

    def _watch_once(self) -> None:
        logger.info("Watching for changes to %s...", self.kind)
        events = self._cluster.watch(
            self.kind, self._stop, resource_version=self._resource_version
        )
        for event_type, resource in events:
            if self._stop.is_set():
                break
            self.handle_event(event_type, resource)
            version = _resource_version_of(resource)
            if version:
                self._resource_version = version

    def handle_event(self, event_type: str, resource: Mapping[str, Any]) -> None:
        """Brief: Apply one watch event to the RecordStore.

        Inputs:
          - event_type: "ADDED", "MODIFIED", "DELETED" or anything else
            (ignored).
          - resource: Resource body as delivered by the API.

        Outputs:
          - None. Modified is a full resync: every record of the owner is
            removed and the current hostnames are added again. Added for an
            owner that already has records (a replayed stream) is treated the
            same way.
        """

        if logger.isEnabledFor(TRACE):
            logger.log(
                TRACE,
                "watchedEvent %s : %s",
                event_type,
                json.dumps(resource, default=str),
            )

        etype = str(event_type).upper()
        if etype == EVENT_ADDED:
            self._sync_records(resource)
        elif etype == EVENT_MODIFIED:
            self._remove_records(resource)
            self._add_records(resource)
        elif etype == EVENT_DELETED:
            self._remove_records(resource)
        else:
            logger.log(TRACE, "Ignoring %s event for %s", event_type, self.kind)

    def _sync_records(self, resource: Mapping[str, Any]) -> None:
        owner_id = self.kind.get_owner_id(resource)
        current = {r.name for r in self._store.records_for_owner(owner_id)}
        if current:
            wanted = {normalize_domain(h) for h in self.kind.get_hostnames(resource)}
            if current == wanted:
                self._owners.add(owner_id)
                return
            self._remove_records(resource)
        self._add_records(resource)

    def _add_records(self, resource: Mapping[str, Any]) -> None:
        owner_id = self.kind.get_owner_id(resource)
        name = self.kind.get_display_name(resource)
        for host in self.kind.get_hostnames(resource):
            logger.info(
                "Creating DNS entry for %s to point to %s (%s %s)",
                host,
                self._local_address,
                self.kind,
                name,
            )
            self._store.add_record(owner_id, host, self._local_address)
        self._owners.add(owner_id)

    def _remove_records(self, resource: Mapping[str, Any]) -> None:
        owner_id = self.kind.get_owner_id(resource)
        logger.info(
            "Removing DNS entries for %s %s",
            self.kind,
            self.kind.get_display_name(resource),
        )
        self._store.remove_records_for_owner(owner_id)
        self._owners.discard(owner_id)


def _resource_version_of(body: Any) -> Optional[str]:
    meta = body.get("metadata") if isinstance(body, Mapping) else None
    version = meta.get("resourceVersion") if isinstance(meta, Mapping) else None
    return str(version) if version else None
