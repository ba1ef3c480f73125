# -*- coding: utf-8 -*-
"""
Propagation of database secrets into alternate connection string formats.

A redirect request names a source secret. Whenever the source changes the
redirect's target secret is re-derived from the source ``uri``. The source's
version token is remembered in the redirect status, so a given source version
is rendered at most once.

Phases:

    Pending -> Synced -> Synced (source changed, new token) ...
    Synced  -> Pending (source deleted, re-checked by requeue)
    Failed  (source cannot be rendered, waits for a user or source edit)

A changed source is re-rendered within the pass that notices it, so Pending is
only ever stored while the source is missing.

The ``PropagationIndexer`` answers "which redirects depend on this secret"
from an in-memory reverse index instead of listing every redirect on every
secret change.
"""

import copy
import logging
import threading

from google.api_core import exceptions

from .composer import compose_redirect
from .exceptions import ValidationError, InvalidRequest
from .models import Artifact, ArtifactType, ObjectMeta, EventType, RedirectPhase, RedirectRequest, \
    CONDITION_READY, set_condition
from .ownership import adopt, set_controller_reference
from .reconcilers import Reconciler, ReconcileResult


class PropagationIndexer:
    """Reverse index (namespace, source secret name) -> redirect keys.

    Rebuilt from a full listing at startup and kept current from redirect
    watch events. A lookup that misses falls back to a namespace scan and
    backfills the index with what it finds, unless a watch event or rebuild
    changed the index while the scan ran.
    """

    def __init__(self, requests):
        self._requests = requests
        self.lock = threading.Lock()
        self._by_source = {}
        self._source_of = {}
        # bumped on every index change from events or rebuilds
        self._generation = 0

    def _add(self, key, source):
        self._remove(key)
        self._by_source.setdefault(source, set()).add(key)
        self._source_of[key] = source

    def _remove(self, key):
        source = self._source_of.pop(key, None)
        if source is None:
            return
        dependents = self._by_source.get(source)
        if dependents is not None:
            dependents.discard(key)
            if not dependents:
                del self._by_source[source]

    def rebuild(self, timeout=None):
        redirects = self._requests.list(RedirectRequest.KIND, timeout=timeout)
        with self.lock:
            self._by_source = {}
            self._source_of = {}
            self._generation += 1
            for redirect in redirects:
                self._add(redirect.key, (redirect.namespace, redirect.spec.secret_name))
        logging.getLogger(__name__).info(f"Indexed {len(redirects)} redirects")

    def observe_redirect(self, event):
        """Apply a redirect watch event to the index."""
        redirect = event.object
        with self.lock:
            self._generation += 1
            if event.type == EventType.DELETED:
                self._remove(redirect.key)
            else:
                self._add(redirect.key, (redirect.namespace, redirect.spec.secret_name))

    def dependents(self, namespace, secret_name, timeout=None):
        """
        Redirect keys whose source is ``namespace/secret_name``.

        :return: sorted list of RequestKey
        """
        with self.lock:
            found = set(self._by_source.get((namespace, secret_name), ()))
            generation = self._generation
        if found:
            return sorted(found, key=str)

        logging.getLogger(__name__).debug(
            f"Index miss for {namespace}/{secret_name}, scanning redirects")
        scanned = [r for r in self._requests.list(RedirectRequest.KIND, namespace, timeout=timeout)
                   if r.spec.secret_name == secret_name]
        with self.lock:
            if self._generation != generation:
                logging.getLogger(__name__).debug(
                    f"Index changed during scan of {namespace}/{secret_name}, not backfilling")
            else:
                for redirect in scanned:
                    if redirect.key not in self._source_of:
                        self._add(redirect.key, (namespace, secret_name))
        return sorted((r.key for r in scanned), key=str)

    def on_artifact_event(self, event, timeout=None):
        artifact = event.object
        return self.dependents(artifact.namespace, artifact.name, timeout=timeout)


class RedirectReconciler(Reconciler):
    """Keeps a redirect's target secret derived from its source secret."""

    request_class = RedirectRequest

    def mark_failed(self, status):
        status.phase = RedirectPhase.FAILED

    def sync(self, request, deadline):
        source_name = request.spec.secret_name
        if not source_name:
            error = InvalidRequest(request.key, "secretname is required")
            self._record_failure(request, error, deadline)
            raise error

        target_name = request.target_secret_name
        try:
            source = self.artifacts.get(request.namespace, source_name,
                                        timeout=deadline.remaining())
        except exceptions.NotFound:
            logging.getLogger(__name__).info(
                f"Source secret {request.namespace}/{source_name} not found, will check again")
            status = copy.deepcopy(request.status)
            status.phase = RedirectPhase.PENDING
            set_condition(status.conditions, CONDITION_READY, "False", "SourceNotFound",
                          f"Secret {source_name} does not exist")
            self._write_status(request, status, deadline)
            return ReconcileResult(requeue=True)

        if request.status.source_secret_resource_version == source.metadata.resource_version:
            logging.getLogger(__name__).debug(
                f"Source secret {request.namespace}/{source_name} unchanged, skipping")
            return ReconcileResult()

        try:
            data = compose_redirect(source.data, source_name)
        except ValidationError as e:
            self._record_failure(request, e, deadline)
            raise

        self._upsert(request.namespace, target_name,
                     lambda existing: self._desired(request, target_name, data, existing),
                     deadline)

        status = copy.deepcopy(request.status)
        status.target_secret_name = target_name
        status.source_secret_resource_version = source.metadata.resource_version
        status.phase = RedirectPhase.SYNCED
        set_condition(status.conditions, CONDITION_READY, "True", "Synced",
                      f"Secret {target_name} rendered from {source_name}")
        self._write_status(request, status, deadline)

        logging.getLogger(__name__).info(
            f"Successfully reconciled {self.kind} {request.key} "
            f"source {source_name} target {target_name}")
        return ReconcileResult()

    def _desired(self, request, target_name, data, existing):
        if existing is None:
            artifact = Artifact(metadata=ObjectMeta(name=target_name, namespace=request.namespace),
                                type=ArtifactType.OPAQUE,
                                data=data)
            set_controller_reference(request, artifact, self.registry)
            return artifact
        desired = existing.copy()
        desired.data = data
        changed = adopt(request, desired, self.registry)
        if not changed and existing.data == data:
            return None
        return desired
