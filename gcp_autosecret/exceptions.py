# -*- coding: utf-8 -*-

from enum import Enum


class ErrorClass(Enum):
    TERMINAL = "terminal"
    RETRYABLE = "retryable"


class AutoSecretError(Exception):
    """Base Error class.

    Subclasses say whether the framework should retry them via ``retryable``.
    """
    retryable = True


class ValidationError(AutoSecretError):
    """Input that cannot heal without a user edit, never retried."""
    retryable = False


class UnsupportedCharset(ValidationError):
    CUSTOM_ERROR_MESSAGE = "Unsupported password charset {!r} expected one of {}"

    def __init__(self, charset, allowed):
        super(UnsupportedCharset, self).__init__(
            self.CUSTOM_ERROR_MESSAGE.format(charset, ", ".join(allowed)))
        self._charset = charset

    @property
    def charset(self):
        return self._charset


class UnsupportedGuidFormat(ValidationError):
    CUSTOM_ERROR_MESSAGE = "Unsupported guid format {!r} expected one of {}"

    def __init__(self, guid_format, allowed):
        super(UnsupportedGuidFormat, self).__init__(
            self.CUSTOM_ERROR_MESSAGE.format(guid_format, ", ".join(allowed)))
        self._guid_format = guid_format

    @property
    def guid_format(self):
        return self._guid_format


class InvalidPasswordLength(ValidationError):
    CUSTOM_ERROR_MESSAGE = "Password length {} outside allowed range [{}, {}]"

    def __init__(self, length, minimum, maximum):
        super(InvalidPasswordLength, self).__init__(
            self.CUSTOM_ERROR_MESSAGE.format(length, minimum, maximum))
        self._length = length

    @property
    def length(self):
        return self._length


class InvalidRequest(ValidationError):
    CUSTOM_ERROR_MESSAGE = "Request {} is invalid: {}"

    def __init__(self, key, reason):
        super(InvalidRequest, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(key, reason))
        self._key = key
        self._reason = reason

    @property
    def key(self):
        return self._key

    @property
    def reason(self):
        return self._reason


class MissingSourceUri(ValidationError):
    CUSTOM_ERROR_MESSAGE = "Source secret {} does not contain 'uri' field"

    def __init__(self, secret_name):
        super(MissingSourceUri, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(secret_name))
        self._secret_name = secret_name

    @property
    def secret_name(self):
        return self._secret_name


class MalformedSourceUri(ValidationError):
    CUSTOM_ERROR_MESSAGE = "Invalid URI format: {}"

    def __init__(self, reason):
        super(MalformedSourceUri, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(reason))


class RandomSourceError(AutoSecretError):
    CUSTOM_ERROR_MESSAGE = "Secure random source unavailable: {}"

    def __init__(self, error):
        super(RandomSourceError, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(str(error)))
        self._error = error

    @property
    def error(self):
        return self._error


class ConflictRetriesExhausted(AutoSecretError):
    CUSTOM_ERROR_MESSAGE = "Secret {}/{} still conflicting after {} attempts"

    def __init__(self, namespace, name, attempts):
        super(ConflictRetriesExhausted, self).__init__(
            self.CUSTOM_ERROR_MESSAGE.format(namespace, name, attempts))
        self._namespace = namespace
        self._name = name
        self._attempts = attempts

    @property
    def namespace(self):
        return self._namespace

    @property
    def name(self):
        return self._name

    @property
    def attempts(self):
        return self._attempts


class UnregisteredKind(AutoSecretError):
    CUSTOM_ERROR_MESSAGE = "Kind {} is not registered"
    retryable = False

    def __init__(self, kind):
        super(UnregisteredKind, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(kind))
        self._kind = kind

    @property
    def kind(self):
        return self._kind


class AlreadyOwned(AutoSecretError):
    CUSTOM_ERROR_MESSAGE = "Secret {} is already controlled by {} {}"
    retryable = False

    def __init__(self, secret_name, owner_kind, owner_name):
        super(AlreadyOwned, self).__init__(
            self.CUSTOM_ERROR_MESSAGE.format(secret_name, owner_kind, owner_name))
        self._secret_name = secret_name
        self._owner_kind = owner_kind
        self._owner_name = owner_name

    @property
    def secret_name(self):
        return self._secret_name

    @property
    def owner_kind(self):
        return self._owner_kind

    @property
    def owner_name(self):
        return self._owner_name


def classify(error):
    """
    Decide the retry policy the framework should apply to an error.

    Errors raised by the store (``google.api_core.exceptions``) are opaque and
    always retried with the framework's own backoff.

    :param error: the exception raised by a reconciliation
    :return: ErrorClass
    """
    if isinstance(error, AutoSecretError) and not error.retryable:
        return ErrorClass.TERMINAL
    return ErrorClass.RETRYABLE
