# -*- coding: utf-8 -*-
"""Owner links between requests and the secrets they produce.

A secret controlled by a request is removed when the request goes away. The
store performs that cascade; ``cascade_delete`` is what it runs.
"""

import logging

from google.api_core import exceptions

from .exceptions import AlreadyOwned
from .models import OwnerReference


def controller_of(artifact):
    for ref in artifact.metadata.owner_references:
        if ref.controller:
            return ref
    return None


def is_controlled_by(artifact, owner):
    ref = controller_of(artifact)
    return ref is not None and ref.uid == owner.metadata.uid


def set_controller_reference(owner, artifact, registry):
    """Make ``owner`` the controller of ``artifact``.

    An existing link to the same owner is left as it is. A link to another
    controller is never replaced.

    Args:
        owner (CredentialRequest): the request that owns the secret.
        artifact (Artifact): the secret, modified in place.
        registry (KindRegistry): resolves the owner's kind.

    Returns:
        bool: True if a reference was added.

    Raises:
        AlreadyOwned: another controller owns the secret.
    """
    kind = registry.kind_for(owner)
    assert owner.namespace == artifact.namespace, "Owner must live in the secret's namespace"

    current = controller_of(artifact)
    if current is not None:
        if current.uid == owner.metadata.uid:
            return False
        raise AlreadyOwned(artifact.name, current.kind, current.name)

    artifact.metadata.owner_references.append(
        OwnerReference(api_version=registry.api_version,
                       kind=kind,
                       name=owner.name,
                       uid=owner.metadata.uid))
    return True


def adopt(owner, artifact, registry):
    """
    Make ``owner`` the controller of an artifact that has none.

    An artifact controlled by another request keeps its controller and a
    warning is logged.

    :return: True if a reference was added
    """
    current = controller_of(artifact)
    if current is None:
        return set_controller_reference(owner, artifact, registry)
    if current.uid != owner.metadata.uid:
        logging.getLogger(__name__).warning(
            f"Secret {artifact.namespace}/{artifact.name} is controlled by {current.kind} "
            f"{current.name}, leaving owner unchanged")
    return False


def cascade_delete(artifacts, owner, timeout=None):
    """
    Delete every secret in the owner's namespace it controls.

    :param artifacts: ArtifactStore
    :param owner: the deleted request
    :return: names of the deleted secrets
    """
    deleted = []
    for artifact in artifacts.list(owner.namespace, timeout=timeout):
        if not is_controlled_by(artifact, owner):
            continue
        try:
            artifacts.delete(artifact.namespace, artifact.name, timeout=timeout)
        except exceptions.NotFound:
            continue
        deleted.append(artifact.name)
        logging.getLogger(__name__).info(
            f"Garbage collected secret {artifact.namespace}/{artifact.name} "
            f"owned by {owner.KIND} {owner.name}")
    return deleted
