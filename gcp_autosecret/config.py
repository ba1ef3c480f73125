# -*- coding: utf-8 -*-
"""
Engine configuration.

Configuration is a UTF-8 encoded JSON object, read from a local file or from
an object in a Cloud Storage bucket. When neither is given the environment
variables AUTOSECRET_CONFIG_BUCKET and AUTOSECRET_CONFIG_OBJECT are consulted,
and failing those the defaults apply.

{
    "password_length": 30,          # default for requests without passwordLength
    "password_charset": "hex",      # default for requests without passwordCharset
    "guid_format": "uuidv4",        # default for requests without format
    "conflict_retries": 3,          # write attempts per secret before giving up
    "reconcile_timeout": 30.0,      # seconds one reconciliation may take
    "echo_guid_in_status": true     # copy generated guids into request status
}
"""

import json
import logging
import os
from dataclasses import dataclass, fields

import google.auth
from google.cloud import storage

from .generators import PasswordCharset, GuidFormat, validate_password_length


@dataclass
class EngineConfig:
    password_length: int = 30
    password_charset: str = PasswordCharset.HEX.value
    guid_format: str = GuidFormat.UUIDV4.value
    conflict_retries: int = 3
    reconcile_timeout: float = 30.0
    echo_guid_in_status: bool = True

    def __post_init__(self):
        validate_password_length(self.password_length)
        PasswordCharset.parse(self.password_charset)
        GuidFormat.parse(self.guid_format)
        assert self.conflict_retries >= 1, "conflict_retries must be at least 1"
        assert self.reconcile_timeout is None or self.reconcile_timeout > 0, \
            "reconcile_timeout must be positive"

    @classmethod
    def from_dict(cls, data):
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys {sorted(unknown)}")
        return cls(**data)


def load_config_blob(bucket, blob_name, credentials=None):
    """Loads a JSON configuration object from Google Cloud Storage.

    Args:
        bucket (str): The name of the GCS bucket.
        blob_name (str): The name of the object in the bucket.
        credentials (google.auth.credentials.Credentials, optional): defaults
            to ``google.auth.default()``.

    Returns:
        dict: The parsed JSON configuration.
    """
    if credentials is None:
        credentials, _project_id = google.auth.default()
    client = storage.Client(credentials=credentials)
    bucket = client.get_bucket(bucket)
    blob = bucket.get_blob(blob_name)
    if blob is None:
        raise FileNotFoundError(f"gs://{bucket.name}/{blob_name}")
    return json.loads(blob.download_as_bytes().decode("utf-8"))


def load_config(path=None, bucket=None, blob_name=None, credentials=None):
    """
    Build an EngineConfig from the first source available.

    :param path: local JSON file
    :param bucket: Cloud Storage bucket holding the configuration object
    :param blob_name: object name within ``bucket``
    :param credentials: credentials for Cloud Storage
    :return: EngineConfig
    """
    if path:
        with open(path, "r", encoding="utf-8") as fh:
            return EngineConfig.from_dict(json.load(fh))

    if not bucket and not blob_name:
        bucket = os.environ.get("AUTOSECRET_CONFIG_BUCKET")
        blob_name = os.environ.get("AUTOSECRET_CONFIG_OBJECT")

    if bucket or blob_name:
        assert bucket and blob_name, \
            "Config bucket and object must both be set, one without the other is ambiguous"
        logging.getLogger(__name__).info(f"Loading configuration from gs://{bucket}/{blob_name}")
        return EngineConfig.from_dict(load_config_blob(bucket, blob_name, credentials))

    return EngineConfig()
