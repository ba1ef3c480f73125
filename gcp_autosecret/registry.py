# -*- coding: utf-8 -*-

from .exceptions import UnregisteredKind
from .models import API_VERSION, AutoSecretRequest, BasicAuthRequest, DatabaseRequest, GuidRequest, \
    RedirectRequest


class KindRegistry:
    """Maps request kinds to their classes.

    Built once at startup and handed to everything that needs to name a kind,
    for example when writing owner references onto a secret. Nothing registers
    itself on import.
    """

    def __init__(self, api_version=API_VERSION):
        self._api_version = api_version
        self._kinds = {}

    @property
    def api_version(self):
        return self._api_version

    def register(self, request_class):
        assert request_class.KIND, "Request class must declare a KIND"
        self._kinds[request_class.KIND] = request_class
        return request_class

    def kinds(self):
        return list(self._kinds)

    def request_class(self, kind):
        try:
            return self._kinds[kind]
        except KeyError:
            raise UnregisteredKind(kind) from None

    def kind_for(self, request):
        """Kind of a request instance, it must be one of the registered classes."""
        kind = getattr(request, "KIND", None)
        if kind not in self._kinds or not isinstance(request, self._kinds[kind]):
            raise UnregisteredKind(kind or type(request).__name__)
        return kind

    def from_manifest(self, manifest):
        """
        Load a request from its JSON document.

        :param manifest: dict with kind, metadata, spec and optional status
        :return: the typed request
        """
        return self.request_class(manifest.get("kind")).from_dict(manifest)


def default_registry():
    registry = KindRegistry()
    for request_class in (BasicAuthRequest, DatabaseRequest, GuidRequest, RedirectRequest,
                          AutoSecretRequest):
        registry.register(request_class)
    return registry
