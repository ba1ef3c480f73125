# -*- coding: utf-8 -*-
"""
Reconcilers turning credential requests into derived secrets.

Each reconciler handles one request key per call. The flow for the primary
kinds is the same and lives in ``SecretReconciler``:

    fetch request -> validate -> fetch secret -> generate once -> compose
    -> create or compare-and-swap update -> write request status

Subclasses only say how to validate their spec, how to generate the secret
value and how to compose the secret data from it. This mirrors a strategy
pattern, ``SecretReconciler`` being the context and the per kind hooks the
strategy.

A value already present under the marker key (``password``, ``guid``) is
never regenerated. Labels and annotations on the request are unioned onto the
secret on every pass, nothing is removed.
"""

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from google.api_core import exceptions

from .composer import compose_basic_auth, compose_database, compose_database_uri, compose_guid
from .config import EngineConfig
from .exceptions import ValidationError, ConflictRetriesExhausted, InvalidRequest, ErrorClass, \
    classify
from .generators import PasswordCharset, GuidFormat, generate_password, generate_guid, \
    validate_password_length
from .models import Artifact, ArtifactType, ObjectMeta, CONDITION_READY, set_condition, \
    AutoSecretRequest, BasicAuthRequest, DatabaseRequest, GuidRequest
from .ownership import adopt, set_controller_reference
from .stores import Deadline


@dataclass
class ReconcileResult:
    """Outcome handed back to the framework.

    ``requeue`` asks for another pass with the framework's default delay.
    ``error`` carries a failure, ``error_class`` tells whether to retry it.
    """
    requeue: bool = False
    error: Exception = None

    @property
    def error_class(self):
        if self.error is None:
            return None
        return classify(self.error)

    @property
    def retryable(self):
        return self.error_class == ErrorClass.RETRYABLE


def merge_metadata(target, source):
    """Union labels and annotations of ``source`` into ``target``, True if anything changed."""
    changed = False
    for attr in ("labels", "annotations"):
        current = getattr(target, attr)
        for key, value in getattr(source, attr).items():
            if current.get(key) != value:
                current[key] = value
                changed = True
    return changed


class Reconciler(ABC):
    """Common plumbing: request lookup, compare-and-swap upsert and status writes."""

    request_class = None

    def __init__(self, requests, artifacts, registry, config=None):
        """
        :param requests: RequestStore holding the requests of this kind
        :param artifacts: ArtifactStore holding the derived secrets
        :param registry: KindRegistry used for owner references
        :param config: EngineConfig, defaults apply when omitted
        """
        self._requests = requests
        self._artifacts = artifacts
        self._registry = registry
        self._config = config or EngineConfig()

    @property
    def requests(self):
        return self._requests

    @property
    def artifacts(self):
        return self._artifacts

    @property
    def registry(self):
        return self._registry

    @property
    def config(self):
        return self._config

    @property
    def kind(self):
        return self.request_class.KIND

    def reconcile(self, key, deadline=None):
        """Bring the secret(s) for the request at ``key`` in line with it.

        Args:
            key (RequestKey): namespace and name of the request.
            deadline (Deadline, optional): time budget for all store calls.

        Returns:
            ReconcileResult: ``requeue`` set when a later re-check is needed.

        Raises:
            ValidationError: terminal, the request needs a user edit.
            google.api_core.exceptions.GoogleAPICallError: store failures,
                passed through unmodified.
        """
        deadline = deadline or Deadline()
        try:
            request = self.requests.get(self.kind, key, timeout=deadline.remaining())
        except exceptions.NotFound:
            logging.getLogger(__name__).debug(f"{self.kind} {key} not found, nothing to do")
            return ReconcileResult()

        if request.is_deleting:
            logging.getLogger(__name__).debug(f"{self.kind} {key} is being deleted, skipping")
            return ReconcileResult()

        return self.sync(request, deadline)

    @abstractmethod
    def sync(self, request, deadline):
        """Reconcile a fetched request, returns ReconcileResult."""

    def _upsert(self, namespace, name, build, deadline):
        """
        Fetch, build and write a secret under optimistic concurrency.

        ``build(existing)`` returns the secret to write or None when no write
        is needed; ``existing`` is None when the secret does not exist. A
        ``Conflict`` (including ``AlreadyExists``) restarts from the fetch.
        At most one write succeeds.

        :return: the stored secret after the pass
        """
        attempts = self.config.conflict_retries
        for attempt in range(1, attempts + 1):
            try:
                existing = self.artifacts.get(namespace, name, timeout=deadline.remaining())
            except exceptions.NotFound:
                existing = None

            desired = build(existing)
            if desired is None:
                logging.getLogger(__name__).debug(f"Secret {namespace}/{name} up to date")
                return existing

            try:
                if existing is None:
                    stored = self.artifacts.create(desired, timeout=deadline.remaining())
                    logging.getLogger(__name__).info(f"Created secret {namespace}/{name}")
                else:
                    stored = self.artifacts.update(
                        desired,
                        expected_version=existing.metadata.resource_version,
                        timeout=deadline.remaining())
                    logging.getLogger(__name__).info(f"Updated secret {namespace}/{name}")
                return stored
            except exceptions.Conflict as e:
                logging.getLogger(__name__).warning(
                    f"Conflict writing secret {namespace}/{name} attempt {attempt}/{attempts}: {e}")

        raise ConflictRetriesExhausted(namespace, name, attempts)

    def _write_status(self, request, status, deadline):
        if status == request.status:
            logging.getLogger(__name__).debug(f"{self.kind} {request.key} status unchanged")
            return request
        request.status = status
        return self.requests.update_status(request, timeout=deadline.remaining())

    def mark_failed(self, status):
        """Hook for kinds that track a phase next to their conditions."""

    def _record_failure(self, request, error, deadline):
        status = copy.deepcopy(request.status)
        set_condition(status.conditions, CONDITION_READY, "False", "ValidationFailed", str(error))
        self.mark_failed(status)
        logging.getLogger(__name__).warning(f"{self.kind} {request.key} rejected: {error}")
        self._write_status(request, status, deadline)


class SecretReconciler(Reconciler):
    """Generate-once reconciler for kinds producing one primary secret."""

    marker_key = None
    artifact_type = ArtifactType.OPAQUE
    # re-render derived keys from the kept value on every pass
    recompose_existing = False

    @abstractmethod
    def validate(self, request):
        """Check the spec and return the generation parameters, raise ValidationError."""

    @abstractmethod
    def generate(self, request, params):
        """Produce a fresh value for the marker key."""

    @abstractmethod
    def compose(self, request, value):
        """Full secret data for ``value``."""

    def artifact_name(self, request):
        return request.spec.secret_name or request.name

    def update_status_fields(self, status, value):
        """Hook copying kind specific values into the status."""

    def sync(self, request, deadline):
        try:
            params = self.validate(request)
        except ValidationError as e:
            self._record_failure(request, e, deadline)
            raise

        name = self.artifact_name(request)
        artifact = self._upsert(request.namespace, name,
                                lambda existing: self._desired(request, params, existing),
                                deadline)

        status = copy.deepcopy(request.status)
        status.secret_name = name
        self.update_status_fields(status, artifact.data[self.marker_key].decode("utf-8"))
        set_condition(status.conditions, CONDITION_READY, "True", "Reconciled",
                      f"Secret {name} is up to date")
        self._write_status(request, status, deadline)

        logging.getLogger(__name__).info(
            f"Successfully reconciled {self.kind} {request.key} secret {name}")
        return ReconcileResult()

    def _desired(self, request, params, existing):
        name = self.artifact_name(request)
        if existing is None:
            artifact = Artifact(
                metadata=ObjectMeta(name=name,
                                    namespace=request.namespace,
                                    labels=dict(request.metadata.labels),
                                    annotations=dict(request.metadata.annotations)),
                type=self.artifact_type,
                data=self.compose(request, self.generate(request, params)))
            set_controller_reference(request, artifact, self.registry)
            return artifact

        desired = existing.copy()
        changed = merge_metadata(desired.metadata, request.metadata)

        if self.marker_key in existing.data:
            if self.recompose_existing:
                desired.data = self.compose(request,
                                            existing.data[self.marker_key].decode("utf-8"))
        else:
            desired.data = self.compose(request, self.generate(request, params))

        changed = adopt(request, desired, self.registry) or changed

        if not changed and desired.data == existing.data:
            return None
        return desired


def _password_params(request, config):
    length = request.spec.password_length or config.password_length
    validate_password_length(length)
    charset = PasswordCharset.parse(request.spec.password_charset,
                                    default=config.password_charset)
    return length, charset


def _check_database_fields(request):
    spec = request.spec
    for field_name in ("username", "dbname", "dbhost"):
        if not getattr(spec, field_name):
            raise InvalidRequest(request.key, f"{field_name} is required")
    if spec.port is not None and not 0 <= spec.port <= 65535:
        raise InvalidRequest(request.key, f"port {spec.port} out of range")


class BasicAuthReconciler(SecretReconciler):
    """Secrets of type basic-auth holding ``username`` and ``password``."""

    request_class = BasicAuthRequest
    marker_key = "password"
    artifact_type = ArtifactType.BASIC_AUTH

    def validate(self, request):
        if not request.spec.username:
            raise InvalidRequest(request.key, "username is required")
        return _password_params(request, self.config)

    def generate(self, request, params):
        length, charset = params
        return generate_password(length, charset)

    def compose(self, request, value):
        return compose_basic_auth(request.spec.username, value)


class DatabaseReconciler(SecretReconciler):
    """Database connection secrets; derived keys follow the spec, the password never changes."""

    request_class = DatabaseRequest
    marker_key = "password"
    artifact_type = ArtifactType.BASIC_AUTH
    recompose_existing = True

    def validate(self, request):
        _check_database_fields(request)
        return _password_params(request, self.config)

    def generate(self, request, params):
        length, charset = params
        return generate_password(length, charset)

    def compose(self, request, value):
        spec = request.spec
        return compose_database(username=spec.username,
                                password=value,
                                dbname=spec.dbname,
                                dbhost=spec.dbhost,
                                port=spec.port,
                                db_type=spec.db_type,
                                additional_params=spec.additional_params)


class GuidReconciler(SecretReconciler):
    """Opaque secrets holding a single ``guid``."""

    request_class = GuidRequest
    marker_key = "guid"
    artifact_type = ArtifactType.OPAQUE

    def validate(self, request):
        return GuidFormat.parse(request.spec.format, default=self.config.guid_format)

    def generate(self, request, params):
        return generate_guid(params)

    def compose(self, request, value):
        return compose_guid(value)

    def update_status_fields(self, status, value):
        status.guid = value if self.config.echo_guid_in_status else ""


class AutoSecretReconciler(Reconciler):
    """
    The combined kind: ``<name>-basic-auth`` holds a generated login and
    ``<name>-db-uri`` the connection environment derived from it.

    At most one secret is written per pass. A pass that writes the basic-auth
    secret ends there and asks for a requeue, the db-uri secret follows on the
    next pass. The status is written once both are in place.
    """

    request_class = AutoSecretRequest
    password_length = 32
    password_charset = PasswordCharset.ALPHANUMERIC

    def sync(self, request, deadline):
        try:
            _check_database_fields(request)
        except ValidationError as e:
            self._record_failure(request, e, deadline)
            raise

        basic_name = request.basic_auth_secret_name
        db_uri_name = request.db_uri_secret_name

        # outcome of the latest build, True when it asked for a write
        wrote_basic = [False]

        def build_basic(existing):
            desired = self._desired_basic(request, basic_name, existing)
            wrote_basic[0] = desired is not None
            return desired

        basic = self._upsert(request.namespace, basic_name, build_basic, deadline)
        if wrote_basic[0]:
            logging.getLogger(__name__).info(
                f"{self.kind} {request.key} wrote {basic_name}, {db_uri_name} follows next pass")
            return ReconcileResult(requeue=True)

        username = basic.data.get("username", request.spec.username.encode("utf-8"))
        data = compose_database_uri(username=username.decode("utf-8"),
                                    password=basic.data["password"].decode("utf-8"),
                                    dbname=request.spec.dbname,
                                    dbhost=request.spec.dbhost,
                                    port=request.spec.port)
        self._upsert(request.namespace, db_uri_name,
                     lambda existing: self._desired_db_uri(request, db_uri_name, data, existing),
                     deadline)

        status = copy.deepcopy(request.status)
        status.basic_auth_secret_name = basic_name
        status.db_uri_secret_name = db_uri_name
        set_condition(status.conditions, CONDITION_READY, "True", "Reconciled",
                      f"Secrets {basic_name} and {db_uri_name} are up to date")
        self._write_status(request, status, deadline)

        logging.getLogger(__name__).info(
            f"Successfully reconciled {self.kind} {request.key} "
            f"secrets {basic_name} {db_uri_name}")
        return ReconcileResult()

    def _new_artifact(self, request, name, artifact_type, data):
        artifact = Artifact(metadata=ObjectMeta(name=name,
                                                namespace=request.namespace,
                                                labels=dict(request.metadata.labels),
                                                annotations=dict(request.metadata.annotations)),
                            type=artifact_type,
                            data=data)
        set_controller_reference(request, artifact, self.registry)
        return artifact

    def _generate(self, request):
        return compose_basic_auth(request.spec.username,
                                  generate_password(self.password_length, self.password_charset))

    def _desired_basic(self, request, name, existing):
        if existing is None:
            return self._new_artifact(request, name, ArtifactType.BASIC_AUTH,
                                      self._generate(request))
        desired = existing.copy()
        changed = merge_metadata(desired.metadata, request.metadata)
        if "password" not in existing.data:
            desired.data = self._generate(request)
        changed = adopt(request, desired, self.registry) or changed
        if not changed and desired.data == existing.data:
            return None
        return desired

    def _desired_db_uri(self, request, name, data, existing):
        if existing is None:
            return self._new_artifact(request, name, ArtifactType.OPAQUE, data)
        desired = existing.copy()
        desired.data = data
        changed = merge_metadata(desired.metadata, request.metadata)
        changed = adopt(request, desired, self.registry) or changed
        if not changed and desired.data == existing.data:
            return None
        return desired
