# -*- coding: utf-8 -*-
"""
Artifact store backed by Google Cloud Secret Manager.

Mapping of a derived secret onto Secret Manager:

namespace        -> project, use the project number as notifications carry it
name             -> secret id, so the resource is projects/<namespace>/secrets/<name>
data and type    -> the latest version's payload, utf-8 json
                    {"type": "basic-auth", "data": {"password": "<base64>", ...}}
labels           -> secret labels, plus reserved labels
                    autosecret-type      type tag, marks secrets managed here
                    autosecret-owner-uid uid of the controlling request
annotations      -> secret annotations, plus reserved annotation
                    autosecret.owner-references  json list of owner references
version token    -> "<latest version id>-<secret etag>"

Secret Manager only accepts lowercase label keys and values without "/" or
".", request labels must respect that to be copied onto a secret.

Every payload is written with a CRC32C checksum and verified when read.

Secret Manager has no push channel to this process, change notifications
arrive through the secret's Pub/Sub topics, see
https://cloud.google.com/secret-manager/docs/event-notifications
Hand each message to ``dispatch_pubsub`` to fan it out to watchers.
"""

import base64
import json
import logging
import re
import threading

import google.auth
import google_crc32c
from google.api_core import exceptions
from google.cloud import secretmanager

from .models import Artifact, ArtifactType, EventType, ObjectMeta, OwnerReference, WatchEvent
from .ownership import controller_of
from .stores import ArtifactStore, _Watchable

TYPE_LABEL = "autosecret-type"
OWNER_LABEL = "autosecret-owner-uid"
OWNER_ANNOTATION = "autosecret.owner-references"

PUBSUB_EVENT_TYPES = {
    "SECRET_CREATE": EventType.ADDED,
    "SECRET_UPDATE": EventType.MODIFIED,
    "SECRET_DELETE": EventType.DELETED,
    "SECRET_VERSION_ADD": EventType.MODIFIED,
    "SECRET_VERSION_ENABLE": EventType.MODIFIED,
    "SECRET_VERSION_DISABLE": EventType.MODIFIED,
    "SECRET_VERSION_DESTROY": EventType.MODIFIED,
}


def _call_kwargs(timeout):
    return {} if timeout is None else {"timeout": timeout}


def _crc32c(data):
    crc32c = google_crc32c.Checksum()
    crc32c.update(data)
    return int(crc32c.hexdigest(), 16)


def encode_payload(artifact):
    """Serialise type and data of a secret into a version payload."""
    return json.dumps({
        "type": artifact.type,
        "data": {k: base64.b64encode(v).decode("ascii") for k, v in sorted(artifact.data.items())},
    }).encode("utf-8")


def decode_payload(payload):
    document = json.loads(payload.decode("utf-8"))
    return (document.get("type", ArtifactType.OPAQUE),
            {k: base64.b64decode(v) for k, v in document.get("data", {}).items()})


def _split_metadata(labels, annotations):
    labels = {k: v for k, v in (labels or {}).items() if k not in (TYPE_LABEL, OWNER_LABEL)}
    annotations = dict(annotations or {})
    owners = [OwnerReference.from_dict(ref)
              for ref in json.loads(annotations.pop(OWNER_ANNOTATION, "[]"))]
    return labels, annotations, owners


def event_from_pubsub(attributes, data):
    """Turn a Secret Manager Pub/Sub notification into a watch event.

    Args:
        attributes (dict): message attributes, ``eventType`` and ``secretId``.
        data (bytes): message data, the secret resource as json.

    Returns:
        WatchEvent or None: None for notifications that do not describe a
        change of a secret.
    """
    event_type = PUBSUB_EVENT_TYPES.get(attributes.get("eventType"))
    match = re.search(r"^projects/([^/]+)/secrets/([^/]+)$", attributes.get("secretId", ""))
    if event_type is None or not match:
        logging.getLogger(__name__).warning(
            f"Received event that is not a secret change attributes:{json.dumps(attributes)}")
        return None

    resource = json.loads(data.decode("utf-8")) if data else {}
    labels, annotations, owners = _split_metadata(resource.get("labels"),
                                                  resource.get("annotations"))
    artifact = Artifact(
        metadata=ObjectMeta(name=match.group(2),
                            namespace=match.group(1),
                            labels=labels,
                            annotations=annotations,
                            owner_references=owners),
        type=(resource.get("labels") or {}).get(TYPE_LABEL, ArtifactType.OPAQUE))
    return WatchEvent(event_type, artifact)


class SecretManagerArtifactStore(_Watchable, ArtifactStore):
    """Stores derived secrets as Secret Manager secrets.

    Uses thread-local storage for credentials and clients so one store can
    serve reconciliations running on many threads.
    """

    def __init__(self, _credentials_callback=None):
        """
        :param _credentials_callback: returns a (credentials, project_id) tuple,
            ``google.auth.default()`` is used when omitted
        """
        super(SecretManagerArtifactStore, self).__init__()
        self._credentials_callback = _credentials_callback
        self.ns = threading.local()

    @property
    def credentials(self):
        if not hasattr(self.ns, "_credentials"):
            if self._credentials_callback is not None:
                _credentials, _project_id = self._credentials_callback()
            else:
                _credentials, _project_id = google.auth.default()
            self.ns._credentials = _credentials
        return self.ns._credentials

    @property
    def _client(self):
        if not hasattr(self.ns, "client"):
            self.ns.client = secretmanager.SecretManagerServiceClient(
                credentials=self.credentials)
        return self.ns.client

    @staticmethod
    def secret_path(namespace, name):
        return f"projects/{namespace}/secrets/{name}"

    def _read(self, namespace, name, timeout):
        path = self.secret_path(namespace, name)
        secret = self._client.get_secret(request={"name": path}, **_call_kwargs(timeout))

        version_id = "0"
        artifact_type = secret.labels.get(TYPE_LABEL, ArtifactType.OPAQUE)
        data = {}
        try:
            response = self._client.access_secret_version(
                request={"name": f"{path}/versions/latest"}, **_call_kwargs(timeout))
        except (exceptions.NotFound, exceptions.FailedPrecondition):
            # created but no enabled version yet
            response = None

        if response is not None:
            payload = response.payload.data
            if response.payload.data_crc32c and \
                    _crc32c(payload) != response.payload.data_crc32c:
                raise exceptions.DataLoss(f"Checksum mismatch reading {response.name}")
            artifact_type, data = decode_payload(payload)
            version_id = response.name.rsplit("/", 1)[-1]

        labels, annotations, owners = _split_metadata(secret.labels, secret.annotations)
        artifact = Artifact(
            metadata=ObjectMeta(name=name,
                                namespace=namespace,
                                resource_version=f"{version_id}-{secret.etag}",
                                labels=labels,
                                annotations=annotations,
                                owner_references=owners,
                                creation_timestamp=secret.create_time),
            type=artifact_type,
            data=data)
        return artifact, secret.etag

    def _labels(self, artifact):
        labels = dict(artifact.metadata.labels)
        labels[TYPE_LABEL] = artifact.type
        owner = controller_of(artifact)
        if owner is not None:
            labels[OWNER_LABEL] = owner.uid
        return labels

    def _annotations(self, artifact):
        annotations = dict(artifact.metadata.annotations)
        if artifact.metadata.owner_references:
            annotations[OWNER_ANNOTATION] = json.dumps(
                [ref.to_dict() for ref in artifact.metadata.owner_references])
        return annotations

    def _add_version(self, artifact, timeout):
        payload = encode_payload(artifact)
        return self._client.add_secret_version(
            request={
                "parent": self.secret_path(artifact.namespace, artifact.name),
                "payload": {"data": payload, "data_crc32c": _crc32c(payload)},
            },
            **_call_kwargs(timeout))

    def get(self, namespace, name, timeout=None):
        artifact, _etag = self._read(namespace, name, timeout)
        return artifact

    def list(self, namespace, timeout=None):
        page_result = self._client.list_secrets(
            request={"parent": f"projects/{namespace}", "filter": f"labels.{TYPE_LABEL}:*"},
            **_call_kwargs(timeout))
        artifacts = []
        for secret in page_result:
            name = secret.name.rsplit("/", 1)[-1]
            try:
                artifacts.append(self.get(namespace, name, timeout))
            except exceptions.NotFound:
                continue
        return artifacts

    def create(self, artifact, timeout=None):
        self._client.create_secret(
            request={
                "parent": f"projects/{artifact.namespace}",
                "secret_id": artifact.name,
                "secret": {
                    "replication": {"automatic": {}},
                    "labels": self._labels(artifact),
                    "annotations": self._annotations(artifact),
                },
            },
            **_call_kwargs(timeout))
        if artifact.data:
            self._add_version(artifact, timeout)
        return self.get(artifact.namespace, artifact.name, timeout)

    def update(self, artifact, expected_version=None, timeout=None):
        """
        Write changed metadata and data of an existing secret.

        Metadata goes through ``update_secret`` guarded by the etag read just
        before; changed data or type is appended as a new version.
        """
        current, etag = self._read(artifact.namespace, artifact.name, timeout)
        if expected_version is not None and current.metadata.resource_version != expected_version:
            raise exceptions.Conflict(
                f"Secret {artifact.namespace}/{artifact.name} version "
                f"{current.metadata.resource_version} does not match {expected_version}")

        if self._labels(artifact) != self._labels(current) or \
                self._annotations(artifact) != self._annotations(current):
            self._client.update_secret(
                request={
                    "secret": {
                        "name": self.secret_path(artifact.namespace, artifact.name),
                        "labels": self._labels(artifact),
                        "annotations": self._annotations(artifact),
                        "etag": etag,
                    },
                    "update_mask": {"paths": ["labels", "annotations"]},
                },
                **_call_kwargs(timeout))

        if artifact.data != current.data or artifact.type != current.type:
            self._add_version(artifact, timeout)

        return self.get(artifact.namespace, artifact.name, timeout)

    def delete(self, namespace, name, timeout=None):
        self._client.delete_secret(request={"name": self.secret_path(namespace, name)},
                                   **_call_kwargs(timeout))

    def dispatch_pubsub(self, attributes, data):
        """Pass a Pub/Sub notification on to every watcher, returns the event or None."""
        event = event_from_pubsub(attributes, data)
        if event is not None:
            self._notify(event.type, event.object)
        return event
