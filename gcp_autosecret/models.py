# -*- coding: utf-8 -*-
"""
Declarative credential requests and the secrets derived from them.

Requests are shaped like Kubernetes custom resources so they can be loaded
from, and written back to, the same JSON documents an operator stores:

{
    "apiVersion": "auto-secret.io/v1alpha1",
    "kind": "AutoSecretDb",
    "metadata": {"name": "app", "namespace": "team-a", "labels": {...}},
    "spec": {"username": "app", "dbname": "app", "dbhost": "db.internal", ...},
    "status": {"secretName": "app", "conditions": [...]}
}
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone

from dateutil import parser

API_VERSION = "auto-secret.io/v1alpha1"

CONDITION_READY = "Ready"


class EventType:
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


class ArtifactType:
    BASIC_AUTH = "basic-auth"
    OPAQUE = "opaque"


class RedirectPhase:
    PENDING = "Pending"
    SYNCED = "Synced"
    FAILED = "Failed"


def _parse_time(value):
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return parser.isoparse(value)


def _format_time(value):
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class RequestKey:
    namespace: str
    name: str

    def __str__(self):
        return f"{self.namespace}/{self.name}"


@dataclass
class OwnerReference:
    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = True
    block_owner_deletion: bool = True

    def to_dict(self):
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": self.controller,
            "blockOwnerDeletion": self.block_owner_deletion,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(api_version=data["apiVersion"],
                   kind=data["kind"],
                   name=data["name"],
                   uid=data["uid"],
                   controller=data.get("controller", False),
                   block_owner_deletion=data.get("blockOwnerDeletion", False))


@dataclass
class ObjectMeta:
    name: str
    namespace: str = "default"
    uid: str = ""
    resource_version: str = ""
    labels: dict = field(default_factory=dict)
    annotations: dict = field(default_factory=dict)
    owner_references: list = field(default_factory=list)
    creation_timestamp: datetime = None
    deletion_timestamp: datetime = None

    @property
    def key(self):
        return RequestKey(self.namespace, self.name)

    def to_dict(self):
        data = {"name": self.name, "namespace": self.namespace}
        if self.uid:
            data["uid"] = self.uid
        if self.resource_version:
            data["resourceVersion"] = self.resource_version
        if self.labels:
            data["labels"] = dict(self.labels)
        if self.annotations:
            data["annotations"] = dict(self.annotations)
        if self.owner_references:
            data["ownerReferences"] = [ref.to_dict() for ref in self.owner_references]
        if self.creation_timestamp:
            data["creationTimestamp"] = _format_time(self.creation_timestamp)
        if self.deletion_timestamp:
            data["deletionTimestamp"] = _format_time(self.deletion_timestamp)
        return data

    @classmethod
    def from_dict(cls, data):
        return cls(name=data["name"],
                   namespace=data.get("namespace") or "default",
                   uid=data.get("uid", ""),
                   resource_version=data.get("resourceVersion", ""),
                   labels=dict(data.get("labels") or {}),
                   annotations=dict(data.get("annotations") or {}),
                   owner_references=[OwnerReference.from_dict(ref)
                                     for ref in data.get("ownerReferences") or []],
                   creation_timestamp=_parse_time(data.get("creationTimestamp")),
                   deletion_timestamp=_parse_time(data.get("deletionTimestamp")))


@dataclass
class Artifact:
    """A derived secret: namespaced key -> bytes map with a type tag."""
    metadata: ObjectMeta
    type: str = ArtifactType.OPAQUE
    data: dict = field(default_factory=dict)

    @property
    def name(self):
        return self.metadata.name

    @property
    def namespace(self):
        return self.metadata.namespace

    @property
    def key(self):
        return self.metadata.key

    def copy(self):
        return copy.deepcopy(self)


@dataclass
class Condition:
    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: datetime = None

    def to_dict(self):
        return {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
            "lastTransitionTime": _format_time(self.last_transition_time),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(type=data["type"],
                   status=data["status"],
                   reason=data.get("reason", ""),
                   message=data.get("message", ""),
                   last_transition_time=_parse_time(data.get("lastTransitionTime")))


def set_condition(conditions, condition_type, status, reason, message=""):
    """Insert or replace a condition, keeping the transition time if status is unchanged."""
    for existing in conditions:
        if existing.type == condition_type:
            if existing.status != status:
                existing.last_transition_time = datetime.now(timezone.utc)
            existing.status = status
            existing.reason = reason
            existing.message = message
            return existing
    condition = Condition(type=condition_type, status=status, reason=reason, message=message,
                          last_transition_time=datetime.now(timezone.utc))
    conditions.append(condition)
    return condition


def find_condition(conditions, condition_type):
    for condition in conditions:
        if condition.type == condition_type:
            return condition
    return None


@dataclass
class WatchEvent:
    type: str
    object: object


def _load(cls, fields, data):
    return cls(**{attr: data[name] for name, attr in fields if name in data})


def _dump(obj, fields):
    data = {}
    for name, attr in fields:
        value = getattr(obj, attr)
        if value not in (None, ""):
            data[name] = value
    return data


@dataclass
class BasicAuthSpec:
    username: str = ""
    password_length: int = None
    password_charset: str = None
    secret_name: str = None

    FIELDS = (("username", "username"),
              ("passwordLength", "password_length"),
              ("passwordCharset", "password_charset"),
              ("secretName", "secret_name"))


@dataclass
class DatabaseSpec:
    username: str = ""
    dbname: str = ""
    dbhost: str = ""
    port: int = None
    password_length: int = None
    password_charset: str = None
    db_type: str = None
    additional_params: str = None
    secret_name: str = None

    FIELDS = (("username", "username"),
              ("dbname", "dbname"),
              ("dbhost", "dbhost"),
              ("port", "port"),
              ("passwordLength", "password_length"),
              ("passwordCharset", "password_charset"),
              ("dbType", "db_type"),
              ("additionalParams", "additional_params"),
              ("secretName", "secret_name"))


@dataclass
class GuidSpec:
    format: str = None
    secret_name: str = None

    FIELDS = (("format", "format"),
              ("secretName", "secret_name"))


@dataclass
class RedirectSpec:
    secret_name: str = ""
    target_secret_name: str = None

    FIELDS = (("secretname", "secret_name"),
              ("targetSecretName", "target_secret_name"))


@dataclass
class SecretStatus:
    secret_name: str = ""
    conditions: list = field(default_factory=list)

    FIELDS = (("secretName", "secret_name"),)


@dataclass
class GuidStatus(SecretStatus):
    guid: str = ""

    FIELDS = (("secretName", "secret_name"),
              ("guid", "guid"))


@dataclass
class RedirectStatus:
    target_secret_name: str = ""
    source_secret_resource_version: str = ""
    phase: str = RedirectPhase.PENDING
    conditions: list = field(default_factory=list)

    FIELDS = (("targetSecretName", "target_secret_name"),
              ("sourceSecretResourceVersion", "source_secret_resource_version"),
              ("phase", "phase"))


class CredentialRequest:
    """Behaviour shared by every request kind.

    Concrete kinds are dataclasses with ``metadata``, ``spec`` and ``status``
    fields and declare ``KIND`` plus the spec and status classes.
    """
    KIND = None
    SPEC_CLASS = None
    STATUS_CLASS = None

    @property
    def name(self):
        return self.metadata.name

    @property
    def namespace(self):
        return self.metadata.namespace

    @property
    def key(self):
        return self.metadata.key

    @property
    def is_deleting(self):
        return self.metadata.deletion_timestamp is not None

    def copy(self):
        return copy.deepcopy(self)

    def to_dict(self):
        status = _dump(self.status, self.STATUS_CLASS.FIELDS)
        if self.status.conditions:
            status["conditions"] = [c.to_dict() for c in self.status.conditions]
        data = {
            "apiVersion": API_VERSION,
            "kind": self.KIND,
            "metadata": self.metadata.to_dict(),
            "spec": _dump(self.spec, self.SPEC_CLASS.FIELDS),
        }
        if status:
            data["status"] = status
        return data

    @classmethod
    def from_dict(cls, manifest):
        status_data = manifest.get("status") or {}
        status = _load(cls.STATUS_CLASS, cls.STATUS_CLASS.FIELDS, status_data)
        status.conditions = [Condition.from_dict(c) for c in status_data.get("conditions") or []]
        return cls(metadata=ObjectMeta.from_dict(manifest["metadata"]),
                   spec=_load(cls.SPEC_CLASS, cls.SPEC_CLASS.FIELDS, manifest.get("spec") or {}),
                   status=status)


@dataclass
class BasicAuthRequest(CredentialRequest):
    metadata: ObjectMeta
    spec: BasicAuthSpec = field(default_factory=BasicAuthSpec)
    status: SecretStatus = field(default_factory=SecretStatus)

    KIND = "AutoSecretBasic"
    SPEC_CLASS = BasicAuthSpec
    STATUS_CLASS = SecretStatus


@dataclass
class DatabaseRequest(CredentialRequest):
    metadata: ObjectMeta
    spec: DatabaseSpec = field(default_factory=DatabaseSpec)
    status: SecretStatus = field(default_factory=SecretStatus)

    KIND = "AutoSecretDb"
    SPEC_CLASS = DatabaseSpec
    STATUS_CLASS = SecretStatus


@dataclass
class GuidRequest(CredentialRequest):
    metadata: ObjectMeta
    spec: GuidSpec = field(default_factory=GuidSpec)
    status: GuidStatus = field(default_factory=GuidStatus)

    KIND = "AutoSecretGuid"
    SPEC_CLASS = GuidSpec
    STATUS_CLASS = GuidStatus


@dataclass
class RedirectRequest(CredentialRequest):
    metadata: ObjectMeta
    spec: RedirectSpec = field(default_factory=RedirectSpec)
    status: RedirectStatus = field(default_factory=RedirectStatus)

    KIND = "AutoSecretDbSecretRedirect"
    SPEC_CLASS = RedirectSpec
    STATUS_CLASS = RedirectStatus

    @property
    def target_secret_name(self):
        return self.spec.target_secret_name or f"{self.spec.secret_name}-redirect"


@dataclass
class AutoSecretSpec:
    username: str = ""
    dbname: str = ""
    dbhost: str = ""
    port: int = None

    FIELDS = (("username", "username"),
              ("dbname", "dbname"),
              ("dbhost", "dbhost"),
              ("port", "port"))


@dataclass
class AutoSecretStatus:
    basic_auth_secret_name: str = ""
    db_uri_secret_name: str = ""
    conditions: list = field(default_factory=list)

    FIELDS = (("basicAuthSecretName", "basic_auth_secret_name"),
              ("dbURISecretName", "db_uri_secret_name"))


@dataclass
class AutoSecretRequest(CredentialRequest):
    """The combined kind producing ``<name>-basic-auth`` and ``<name>-db-uri``."""
    metadata: ObjectMeta
    spec: AutoSecretSpec = field(default_factory=AutoSecretSpec)
    status: AutoSecretStatus = field(default_factory=AutoSecretStatus)

    KIND = "AutoSecret"
    SPEC_CLASS = AutoSecretSpec
    STATUS_CLASS = AutoSecretStatus

    @property
    def basic_auth_secret_name(self):
        return f"{self.name}-basic-auth"

    @property
    def db_uri_secret_name(self):
        return f"{self.name}-db-uri"
