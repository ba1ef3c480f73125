# -*- coding: utf-8 -*-
"""gcp_autosecret

Turns declarative credential requests into generated secrets that are created
exactly once and kept in line with the request, and propagates database
secrets into alternate connection string formats whenever their source
changes.

"""

from gcp_autosecret.composer import compose_basic_auth, compose_database, compose_database_uri, \
    compose_guid, compose_redirect, parse_uri, short_hostname
from gcp_autosecret.config import EngineConfig, load_config
from gcp_autosecret.controller import Controller
from gcp_autosecret.exceptions import AutoSecretError, \
    ValidationError, \
    UnsupportedCharset, \
    UnsupportedGuidFormat, \
    InvalidPasswordLength, \
    InvalidRequest, \
    MissingSourceUri, \
    MalformedSourceUri, \
    RandomSourceError, \
    ConflictRetriesExhausted, \
    UnregisteredKind, \
    AlreadyOwned, \
    ErrorClass, \
    classify
from gcp_autosecret.generators import PasswordCharset, GuidFormat, generate_password, \
    generate_guid
from gcp_autosecret.models import Artifact, ArtifactType, ObjectMeta, OwnerReference, \
    RequestKey, WatchEvent, EventType, Condition, RedirectPhase, \
    BasicAuthRequest, BasicAuthSpec, \
    DatabaseRequest, DatabaseSpec, \
    GuidRequest, GuidSpec, \
    RedirectRequest, RedirectSpec, \
    AutoSecretRequest, AutoSecretSpec
from gcp_autosecret.ownership import set_controller_reference, controller_of, cascade_delete, adopt
from gcp_autosecret.propagation import PropagationIndexer, RedirectReconciler
from gcp_autosecret.reconcilers import ReconcileResult, \
    BasicAuthReconciler, \
    DatabaseReconciler, \
    GuidReconciler, \
    AutoSecretReconciler
from gcp_autosecret.registry import KindRegistry, default_registry
from gcp_autosecret.secret_manager_store import SecretManagerArtifactStore, event_from_pubsub
from gcp_autosecret.stores import Deadline, ArtifactStore, RequestStore, \
    InMemoryArtifactStore, InMemoryRequestStore
from ._version import __version__

__all__ = ["__version__",
           "compose_basic_auth",
           "compose_database",
           "compose_database_uri",
           "compose_guid",
           "compose_redirect",
           "parse_uri",
           "short_hostname",
           "EngineConfig",
           "load_config",
           "Controller",
           "AutoSecretError",
           "ValidationError",
           "UnsupportedCharset",
           "UnsupportedGuidFormat",
           "InvalidPasswordLength",
           "InvalidRequest",
           "MissingSourceUri",
           "MalformedSourceUri",
           "RandomSourceError",
           "ConflictRetriesExhausted",
           "UnregisteredKind",
           "AlreadyOwned",
           "ErrorClass",
           "classify",
           "PasswordCharset",
           "GuidFormat",
           "generate_password",
           "generate_guid",
           "Artifact",
           "ArtifactType",
           "ObjectMeta",
           "OwnerReference",
           "RequestKey",
           "WatchEvent",
           "EventType",
           "Condition",
           "RedirectPhase",
           "BasicAuthRequest",
           "BasicAuthSpec",
           "DatabaseRequest",
           "DatabaseSpec",
           "GuidRequest",
           "GuidSpec",
           "RedirectRequest",
           "RedirectSpec",
           "AutoSecretRequest",
           "AutoSecretSpec",
           "set_controller_reference",
           "controller_of",
           "cascade_delete",
           "adopt",
           "PropagationIndexer",
           "RedirectReconciler",
           "ReconcileResult",
           "BasicAuthReconciler",
           "DatabaseReconciler",
           "GuidReconciler",
           "AutoSecretReconciler",
           "KindRegistry",
           "default_registry",
           "SecretManagerArtifactStore",
           "event_from_pubsub",
           "Deadline",
           "ArtifactStore",
           "RequestStore",
           "InMemoryArtifactStore",
           "InMemoryRequestStore"]
