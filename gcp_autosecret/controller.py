# -*- coding: utf-8 -*-
"""
Boundary between the reconcilers and the control loop framework driving them.

The framework owns the work queue, the watches' delivery threads and the
retry backoff. It hands the controller "reconcile this key" calls and gets
back a ``ReconcileResult`` whose ``error_class`` selects the retry policy:
terminal errors wait for the user, everything else is retried.

    controller = Controller(requests, artifacts)
    controller.start(enqueue)              # enqueue(kind, key) from watches
    result = controller.reconcile(kind, key)
"""

import logging

from .config import EngineConfig
from .models import RedirectRequest, RequestKey
from .ownership import controller_of
from .propagation import PropagationIndexer, RedirectReconciler
from .reconcilers import AutoSecretReconciler, BasicAuthReconciler, DatabaseReconciler, \
    GuidReconciler, ReconcileResult
from .registry import default_registry
from .stores import Deadline


class Controller:

    def __init__(self, requests, artifacts, registry=None, config=None):
        """
        :param requests: RequestStore
        :param artifacts: ArtifactStore
        :param registry: KindRegistry, built with every known kind when omitted
        :param config: EngineConfig
        """
        self._requests = requests
        self._artifacts = artifacts
        self._registry = registry or default_registry()
        self._config = config or EngineConfig()
        self._indexer = PropagationIndexer(requests)
        self._enqueue = None
        self._reconcilers = {}
        for reconciler_class in (BasicAuthReconciler, DatabaseReconciler, GuidReconciler,
                                 RedirectReconciler, AutoSecretReconciler):
            if reconciler_class.request_class.KIND in self._registry.kinds():
                self._reconcilers[reconciler_class.request_class.KIND] = reconciler_class(
                    requests, artifacts, self._registry, self._config)

    @property
    def registry(self):
        return self._registry

    @property
    def config(self):
        return self._config

    @property
    def indexer(self):
        return self._indexer

    def reconciler(self, kind):
        self._registry.request_class(kind)
        return self._reconcilers[kind]

    def start(self, enqueue):
        """Index existing redirects and subscribe to both stores.

        Args:
            enqueue (callable): ``enqueue(kind, key)`` schedules a reconcile.
        """
        self._enqueue = enqueue
        self._indexer.rebuild()
        self._requests.watch(self._on_request_event)
        self._artifacts.watch(self._on_artifact_event)

    def _on_request_event(self, event):
        request = event.object
        if request.KIND not in self._reconcilers:
            return
        if request.KIND == RedirectRequest.KIND:
            self._indexer.observe_redirect(event)
        self._enqueue(request.KIND, request.key)

    def _on_artifact_event(self, event):
        for kind, key in self.keys_for_artifact_event(event):
            self._enqueue(kind, key)

    def keys_for_artifact_event(self, event):
        """
        Requests to reconcile after a secret changed: its controlling owner and
        every redirect reading from it.

        :return: list of (kind, RequestKey)
        """
        artifact = event.object
        keys = []
        owner = controller_of(artifact)
        if owner is not None and owner.kind in self._reconcilers:
            keys.append((owner.kind, RequestKey(artifact.namespace, owner.name)))
        for key in self._indexer.on_artifact_event(event):
            if (RedirectRequest.KIND, key) not in keys:
                keys.append((RedirectRequest.KIND, key))
        return keys

    def reconcile(self, kind, key, timeout=None):
        """Run one reconciliation and classify its outcome.

        Args:
            kind (str): request kind.
            key (RequestKey): request namespace and name.
            timeout (float, optional): seconds allowed, defaults to the
                configured ``reconcile_timeout``.

        Returns:
            ReconcileResult: with ``error`` set on failure.
        """
        deadline = Deadline(self._config.reconcile_timeout if timeout is None else timeout)
        try:
            return self.reconciler(kind).reconcile(key, deadline)
        except Exception as e:
            result = ReconcileResult(error=e)
            logging.getLogger(__name__).exception(
                f"Reconcile of {kind} {key} failed ({result.error_class.value})")
            return result
