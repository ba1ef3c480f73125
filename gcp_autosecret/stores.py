# -*- coding: utf-8 -*-
"""
Interfaces to the external stores plus in-memory implementations.

The artifact store holds derived secrets, the request store holds the
declarative requests. Both raise ``google.api_core.exceptions`` errors
(``NotFound``, ``AlreadyExists``, ``Conflict``) the same way the Google clients
do, so callers handle every backend alike.

Every call accepts ``timeout`` in seconds; callers derive it from a
``Deadline`` so one reconciliation never outlives its budget.
"""

import itertools
import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from google.api_core import exceptions

from .models import EventType, WatchEvent
from .ownership import cascade_delete


class Deadline:
    """Time budget shared by all store calls of one invocation."""

    def __init__(self, seconds=None, _clock=time.monotonic):
        self._clock = _clock
        self._expires = None if seconds is None else _clock() + seconds

    @property
    def expired(self):
        return self._expires is not None and self._clock() >= self._expires

    def remaining(self):
        """
        Seconds left, ``None`` when unbounded.

        :raises google.api_core.exceptions.DeadlineExceeded: budget spent
        """
        if self._expires is None:
            return None
        left = self._expires - self._clock()
        if left <= 0:
            raise exceptions.DeadlineExceeded("Reconciliation deadline exceeded")
        return left


class _Watchable:

    def __init__(self):
        self._watchers = []

    def watch(self, callback):
        """Register ``callback(WatchEvent)`` for every change."""
        self._watchers.append(callback)

    def _notify(self, event_type, obj):
        for callback in list(self._watchers):
            callback(WatchEvent(event_type, obj.copy()))


class ArtifactStore(ABC):

    @abstractmethod
    def get(self, namespace, name, timeout=None):
        """Return the secret or raise ``NotFound``."""

    @abstractmethod
    def list(self, namespace, timeout=None):
        """All secrets in a namespace."""

    @abstractmethod
    def create(self, artifact, timeout=None):
        """Create the secret, ``AlreadyExists`` if the name is taken."""

    @abstractmethod
    def update(self, artifact, expected_version=None, timeout=None):
        """Replace the secret.

        When ``expected_version`` is given and the stored version token differs
        the write is refused with ``Conflict``.
        """

    @abstractmethod
    def delete(self, namespace, name, timeout=None):
        """Delete the secret or raise ``NotFound``."""

    @abstractmethod
    def watch(self, callback):
        """Subscribe to change notifications."""


class RequestStore(ABC):

    @abstractmethod
    def get(self, kind, key, timeout=None):
        """Return the request or raise ``NotFound``."""

    @abstractmethod
    def list(self, kind, namespace=None, timeout=None):
        """Requests of a kind, optionally limited to one namespace."""

    @abstractmethod
    def create(self, request, timeout=None):
        """Store a new request, ``AlreadyExists`` if the key is taken."""

    @abstractmethod
    def update_status(self, request, timeout=None):
        """Persist only the status of ``request``."""

    @abstractmethod
    def delete(self, kind, key, timeout=None):
        """Remove a request, secrets it controls go with it."""

    @abstractmethod
    def watch(self, callback):
        """Subscribe to change notifications."""


class InMemoryArtifactStore(_Watchable, ArtifactStore):
    """Thread safe dict backed secret store, used in tests and local runs."""

    def __init__(self):
        super(InMemoryArtifactStore, self).__init__()
        self.lock = threading.Lock()
        self._items = {}
        self._versions = itertools.count(1)

    def _stamp(self, artifact):
        artifact.metadata.resource_version = str(next(self._versions))

    def get(self, namespace, name, timeout=None):
        with self.lock:
            try:
                return self._items[(namespace, name)].copy()
            except KeyError:
                raise exceptions.NotFound(f"secret {namespace}/{name} not found") from None

    def list(self, namespace, timeout=None):
        with self.lock:
            return [a.copy() for (ns, _), a in sorted(self._items.items()) if ns == namespace]

    def create(self, artifact, timeout=None):
        with self.lock:
            key = (artifact.namespace, artifact.name)
            if key in self._items:
                raise exceptions.AlreadyExists(
                    f"secret {artifact.namespace}/{artifact.name} already exists")
            stored = artifact.copy()
            stored.metadata.uid = str(uuid.uuid4())
            stored.metadata.creation_timestamp = datetime.now(timezone.utc)
            self._stamp(stored)
            self._items[key] = stored
            result = stored.copy()
        self._notify(EventType.ADDED, result)
        return result

    def update(self, artifact, expected_version=None, timeout=None):
        with self.lock:
            key = (artifact.namespace, artifact.name)
            if key not in self._items:
                raise exceptions.NotFound(f"secret {artifact.namespace}/{artifact.name} not found")
            current = self._items[key]
            if expected_version is not None and \
                    current.metadata.resource_version != expected_version:
                raise exceptions.Conflict(
                    f"secret {artifact.namespace}/{artifact.name} version "
                    f"{current.metadata.resource_version} does not match {expected_version}")
            stored = artifact.copy()
            stored.metadata.uid = current.metadata.uid
            stored.metadata.creation_timestamp = current.metadata.creation_timestamp
            self._stamp(stored)
            self._items[key] = stored
            result = stored.copy()
        self._notify(EventType.MODIFIED, result)
        return result

    def delete(self, namespace, name, timeout=None):
        with self.lock:
            try:
                removed = self._items.pop((namespace, name))
            except KeyError:
                raise exceptions.NotFound(f"secret {namespace}/{name} not found") from None
        self._notify(EventType.DELETED, removed)


class InMemoryRequestStore(_Watchable, RequestStore):
    """
    Dict backed request store.

    When given an artifact store it also plays the part of the garbage
    collector: deleting a request deletes every secret it controls.
    """

    def __init__(self, artifacts=None):
        super(InMemoryRequestStore, self).__init__()
        self.lock = threading.Lock()
        self._items = {}
        self._versions = itertools.count(1)
        self._artifacts = artifacts

    def _stamp(self, request):
        request.metadata.resource_version = str(next(self._versions))

    def get(self, kind, key, timeout=None):
        with self.lock:
            try:
                return self._items[(kind, key.namespace, key.name)].copy()
            except KeyError:
                raise exceptions.NotFound(f"{kind} {key} not found") from None

    def list(self, kind, namespace=None, timeout=None):
        with self.lock:
            return [r.copy() for (k, ns, _), r in sorted(self._items.items(), key=lambda i: i[0])
                    if k == kind and (namespace is None or ns == namespace)]

    def create(self, request, timeout=None):
        with self.lock:
            key = (request.KIND, request.namespace, request.name)
            if key in self._items:
                raise exceptions.AlreadyExists(f"{request.KIND} {request.key} already exists")
            stored = request.copy()
            stored.metadata.uid = stored.metadata.uid or str(uuid.uuid4())
            stored.metadata.creation_timestamp = datetime.now(timezone.utc)
            self._stamp(stored)
            self._items[key] = stored
            result = stored.copy()
        self._notify(EventType.ADDED, result)
        return result

    def update(self, request, timeout=None):
        """Replace metadata and spec, the status is left untouched."""
        with self.lock:
            key = (request.KIND, request.namespace, request.name)
            if key not in self._items:
                raise exceptions.NotFound(f"{request.KIND} {request.key} not found")
            stored = self._items[key]
            stored.spec = request.copy().spec
            stored.metadata.labels = dict(request.metadata.labels)
            stored.metadata.annotations = dict(request.metadata.annotations)
            self._stamp(stored)
            result = stored.copy()
        self._notify(EventType.MODIFIED, result)
        return result

    def update_status(self, request, timeout=None):
        with self.lock:
            key = (request.KIND, request.namespace, request.name)
            if key not in self._items:
                raise exceptions.NotFound(f"{request.KIND} {request.key} not found")
            stored = self._items[key]
            stored.status = request.copy().status
            self._stamp(stored)
            result = stored.copy()
        self._notify(EventType.MODIFIED, result)
        return result

    def delete(self, kind, key, timeout=None):
        with self.lock:
            try:
                removed = self._items.pop((kind, key.namespace, key.name))
            except KeyError:
                raise exceptions.NotFound(f"{kind} {key} not found") from None
        logging.getLogger(__name__).info(f"Deleted {kind} {key}")
        self._notify(EventType.DELETED, removed)
        if self._artifacts is not None:
            cascade_delete(self._artifacts, removed, timeout=timeout)
        return removed
