# -*- coding: utf-8 -*-
"""
Builds the key -> bytes maps stored in derived secrets.

Two modes exist. Primary mode composes a secret from request fields and a
generated password. Propagation mode starts from the canonical ``uri`` of an
existing secret and re-renders it for other client dialects.

The ``ms-uri``, ``odbc-uri`` and ``adonet-uri`` formats are written as plain
key=value strings. A ``;`` or ``=`` inside a username or password is not quoted
in those formats, only the URI forms are percent-encoded.
"""

from urllib.parse import quote_plus, unquote, urlsplit

from .exceptions import MissingSourceUri, MalformedSourceUri

DEFAULT_PORT = 5432
DEFAULT_DB_TYPE = "postgresql"

PASSTHROUGH_KEYS = ("fqdn-uri", "fqdn-jdbc-uri", "pgpass", "user")


def _encode(value):
    return value.encode("utf-8")


def _as_bytes(data):
    return {k: v if isinstance(v, bytes) else _encode(str(v)) for k, v in data.items()}


def short_hostname(host):
    """Everything before the first dot, or the whole host when there is none."""
    return host.split(".", 1)[0]


def compose_basic_auth(username, password):
    return _as_bytes({
        "username": username,
        "password": password,
    })


def compose_guid(guid):
    return _as_bytes({"guid": guid})


def compose_database(username, password, dbname, dbhost, port=None, db_type=None,
                     additional_params=None):
    """Composes the connection secret for a database user.

    ``additional_params`` is appended verbatim to ``uri`` and is expected to
    start with ``?``. For the JDBC form its first character is dropped and the
    rest joined with ``&``.

    Args:
        username (str): database login.
        password (str): generated password.
        dbname (str): database name.
        dbhost (str): host, usually a fully qualified name.
        port (int, optional): defaults to 5432.
        db_type (str, optional): URI scheme, defaults to ``postgresql``.
        additional_params (str, optional): extra query string.

    Returns:
        dict: secret data keyed by field name, values as bytes.
    """
    port = port or DEFAULT_PORT
    db_type = db_type or DEFAULT_DB_TYPE

    encoded_user = quote_plus(username)
    encoded_password = quote_plus(password)

    uri = f"{db_type}://{encoded_user}:{encoded_password}@{dbhost}:{port}/{dbname}"
    jdbc_uri = (f"jdbc:{db_type}://{dbhost}:{port}/{dbname}"
                f"?password={encoded_password}&user={encoded_user}")
    if additional_params:
        uri += additional_params
        jdbc_uri += "&" + additional_params[1:]

    short_host = short_hostname(dbhost)
    pgpass = f"{short_host}:{port}:{dbname}:{username}:{password}"

    return _as_bytes({
        "dbname": dbname,
        "fqdn-jdbc-uri": jdbc_uri,
        "fqdn-uri": uri,
        "host": short_host,
        "jdbc-uri": jdbc_uri,
        "password": password,
        "pgpass": pgpass,
        "port": port,
        "uri": uri,
        "user": username,
        "username": username,
    })


def compose_database_uri(username, password, dbname, dbhost, port=None):
    """
    Connection environment of the combined ``AutoSecret`` kind.

    The URI is always postgresql, user and password are query-escaped.

    :return: dict with DATABASE_URI and the DB_* keys, values as bytes
    """
    port = port or DEFAULT_PORT
    uri = f"postgresql://{quote_plus(username)}:{quote_plus(password)}@{dbhost}:{port}/{dbname}"
    return _as_bytes({
        "DATABASE_URI": uri,
        "DB_HOST": dbhost,
        "DB_NAME": dbname,
        "DB_PORT": port,
        "DB_USER": username,
        "DB_PASSWORD": password,
    })


def _split_host_port(hostport):
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise MalformedSourceUri(f"missing ']' in host {hostport!r}")
        host, rest = hostport[1:end], hostport[end + 1:]
        if rest and not rest.startswith(":"):
            raise MalformedSourceUri(f"invalid port {rest!r} after host")
        return host, rest[1:]
    host, _, port = hostport.partition(":")
    return host, port


def parse_uri(uri):
    """
    Split a database URI into its parts.

    Host keeps its original case and the port is returned as text, defaulting
    to ``5432`` when absent.

    :param uri: the canonical connection URI
    :return: dict with scheme, username, password, host, port, dbname and query
    """
    try:
        parts = urlsplit(uri)
    except ValueError as e:
        raise MalformedSourceUri(str(e)) from None

    userinfo, _, hostport = parts.netloc.rpartition("@")
    username, _, password = userinfo.partition(":")
    host, port = _split_host_port(hostport)
    if port and not port.isdigit():
        raise MalformedSourceUri(f"invalid port {port!r} after host")

    path = unquote(parts.path)
    return {
        "scheme": parts.scheme,
        "username": unquote(username),
        "password": unquote(password),
        "host": host,
        "port": port or str(DEFAULT_PORT),
        "dbname": path[1:] if path.startswith("/") else path,
        "query": parts.query,
    }


def compose_redirect(source_data, source_name=None):
    """Re-render the source secret's ``uri`` into the propagated key set.

    The result depends only on the source ``uri`` and the passthrough keys.

    Args:
        source_data (dict): data of the source secret, values as bytes.
        source_name (str, optional): used in error messages.

    Returns:
        dict: target secret data, values as bytes.

    Raises:
        MissingSourceUri: the source has no ``uri`` key.
        MalformedSourceUri: the ``uri`` cannot be parsed.
    """
    if "uri" not in source_data:
        raise MissingSourceUri(source_name)

    uri = source_data["uri"]
    if isinstance(uri, bytes):
        try:
            uri = uri.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedSourceUri(f"uri is not valid utf-8 ({e.reason} at byte {e.start})") from e

    parsed = parse_uri(uri)
    username = parsed["username"]
    password = parsed["password"]
    host = parsed["host"]
    port = parsed["port"]
    dbname = parsed["dbname"]

    jdbc_uri = (f"jdbc:{parsed['scheme']}://{host}:{port}/{dbname}"
                f"?user={quote_plus(username)}&password={quote_plus(password)}")
    if parsed["query"]:
        jdbc_uri += "&" + parsed["query"]

    result = {
        "uri": uri,
        "original-uri": uri,
        "username": username,
        "password": password,
        "host": host,
        "port": port,
        "dbname": dbname,
        "ms-uri": f"Server={host};Port={port};Database={dbname};User Id={username};"
                  f"Password={password};",
        "odbc-uri": f"Driver={{PostgreSQL Unicode}};Server={host};Port={port};"
                    f"Database={dbname};Uid={username};Pwd={password};",
        "adonet-uri": f"Host={host};Port={port};Database={dbname};Username={username};"
                      f"Password={password};",
        "jdbc-uri": jdbc_uri,
    }

    for key in PASSTHROUGH_KEYS:
        if key in source_data:
            result[key] = source_data[key]
    return _as_bytes(result)
