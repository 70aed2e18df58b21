"""Turn saved connection configs into driver dial strings."""

from __future__ import annotations

from dataclasses import replace
from urllib.parse import parse_qs, quote, unquote, urlencode, urlsplit

from .errors import MissingFieldError, UnsupportedBackendError
from .models import BackendKind, ConnectionConfig, DialTarget

CONNECT_TIMEOUT = 5
READ_WRITE_TIMEOUT = 30

DEFAULT_PORTS = {
    BackendKind.POSTGRES: 5432,
    BackendKind.MYSQL: 3306,
}

DRIVERS = {
    BackendKind.POSTGRES: "asyncpg",
    BackendKind.MYSQL: "pymysql",
    BackendKind.SQLITE: "sqlite3",
    BackendKind.D1: "d1",
}

REQUIRED_FIELDS: dict[BackendKind, tuple[str, ...]] = {
    BackendKind.POSTGRES: ("host", "user", "database"),
    BackendKind.MYSQL: ("host", "user", "database"),
    BackendKind.SQLITE: ("file_path",),
    BackendKind.D1: ("account_id", "database_id", "auth_token"),
}

D1_ENDPOINT = "https://api.cloudflare.com/client/v4/accounts/{account}/d1/database/{database}/query"


def missing_fields(cfg: ConnectionConfig) -> tuple[str, ...]:
    """Names of backend-required fields that are blank, in form order."""

    required = REQUIRED_FIELDS.get(cfg.kind)
    if required is None:
        raise UnsupportedBackendError(f"Unsupported database type: {cfg.kind!r}")
    return tuple(name for name in required if not str(getattr(cfg, name) or "").strip())


def with_defaults(cfg: ConnectionConfig) -> ConnectionConfig:
    """Fill the default port and SSL mode for network backends."""

    if cfg.kind is BackendKind.POSTGRES:
        return replace(cfg, port=cfg.port or DEFAULT_PORTS[cfg.kind], ssl_mode=cfg.ssl_mode or "disable")
    if cfg.kind is BackendKind.MYSQL:
        return replace(cfg, port=cfg.port or DEFAULT_PORTS[cfg.kind], ssl_mode=cfg.ssl_mode or "disabled")
    return cfg


def resolve(cfg: ConnectionConfig) -> DialTarget:
    """Validate a config and build the (driver, dial string) pair."""

    absent = missing_fields(cfg)
    if absent:
        raise MissingFieldError(absent, cfg.kind)
    cfg = with_defaults(cfg)
    if cfg.kind is BackendKind.POSTGRES:
        dsn = _network_url(
            "postgresql",
            cfg,
            {
                "sslmode": cfg.ssl_mode,
                "connect_timeout": CONNECT_TIMEOUT,
                "command_timeout": READ_WRITE_TIMEOUT,
            },
        )
    elif cfg.kind is BackendKind.MYSQL:
        dsn = _network_url(
            "mysql",
            cfg,
            {
                "ssl_mode": cfg.ssl_mode,
                "connect_timeout": CONNECT_TIMEOUT,
                "read_timeout": READ_WRITE_TIMEOUT,
                "write_timeout": READ_WRITE_TIMEOUT,
            },
        )
    elif cfg.kind is BackendKind.SQLITE:
        dsn = cfg.file_path.strip()
    else:
        endpoint = D1_ENDPOINT.format(
            account=quote(cfg.account_id.strip(), safe=""),
            database=quote(cfg.database_id.strip(), safe=""),
        )
        dsn = f"{endpoint}?{urlencode({'token': cfg.auth_token})}"
    return DialTarget(kind=cfg.kind, driver=DRIVERS[cfg.kind], dsn=dsn, secrets=cfg.secrets)


def _network_url(scheme: str, cfg: ConnectionConfig, params: dict[str, object]) -> str:
    userinfo = quote(cfg.user, safe="")
    if cfg.password:
        userinfo += ":" + quote(cfg.password, safe="")
    host = cfg.host.strip()
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    database = quote(cfg.database, safe="")
    return f"{scheme}://{userinfo}@{host}:{cfg.port}/{database}?{urlencode(params)}"


def parse_connection_string(kind: BackendKind, text: str) -> ConnectionConfig:
    """Parse a pasted DSN into a partial config for the connection form."""

    dsn = text.strip()
    if kind is BackendKind.POSTGRES:
        lowered = dsn.lower()
        if lowered.startswith(("postgres://", "postgresql://")):
            return _parse_url(kind, dsn, ssl_key="sslmode")
        return _parse_libpq(dsn)
    if kind is BackendKind.MYSQL:
        if dsn.lower().startswith("mysql://"):
            return _parse_url(kind, dsn, ssl_key="ssl_mode")
        return _parse_go_mysql(dsn)
    raise UnsupportedBackendError("Connection strings are supported for PostgreSQL and MySQL only.")


def _parse_url(kind: BackendKind, dsn: str, *, ssl_key: str) -> ConnectionConfig:
    parts = urlsplit(dsn)
    try:
        port = parts.port
    except ValueError as exc:
        raise ValueError(f"Invalid {kind.label} URL: {exc}") from None
    query = parse_qs(parts.query)
    return ConnectionConfig(
        name="",
        kind=kind,
        host=parts.hostname or "localhost",
        port=port or DEFAULT_PORTS[kind],
        user=unquote(parts.username or ""),
        password=unquote(parts.password or ""),
        database=unquote(parts.path.lstrip("/")),
        ssl_mode=(query.get(ssl_key) or [""])[0],
    )


def _parse_libpq(dsn: str) -> ConnectionConfig:
    values: dict[str, str] = {}
    for token in split_dsn_tokens(dsn):
        key, sep, value = token.partition("=")
        if not sep:
            continue
        values[key.strip().lower()] = value.strip().strip("\"'")
    database = values.get("dbname") or values.get("database", "")
    if not any((values.get("host"), values.get("user"), values.get("password"), database)):
        raise ValueError("Invalid PostgreSQL DSN")
    port = values.get("port", "")
    return ConnectionConfig(
        name="",
        kind=BackendKind.POSTGRES,
        host=values.get("host") or "localhost",
        port=int(port) if port.isdigit() else DEFAULT_PORTS[BackendKind.POSTGRES],
        user=values.get("user", ""),
        password=values.get("password", ""),
        database=database,
        ssl_mode=values.get("sslmode", ""),
    )


def _parse_go_mysql(dsn: str) -> ConnectionConfig:
    """Parse `user:pass@tcp(host:port)/db?params` style DSNs."""

    credentials, at, rest = dsn.rpartition("@")
    if not at:
        credentials, rest = "", dsn
    user, _, password = credentials.partition(":")
    address, slash, tail = rest.partition("/")
    if not slash:
        raise ValueError("Invalid MySQL DSN: missing '/' before the database name")
    database = tail.split("?", 1)[0]
    host, port = "localhost", DEFAULT_PORTS[BackendKind.MYSQL]
    if address.startswith("tcp(") and address.endswith(")"):
        host, port = split_host_port(address[4:-1], DEFAULT_PORTS[BackendKind.MYSQL])
    elif address.startswith("unix("):
        host = "localhost"
    elif address:
        raise ValueError(f"Invalid MySQL DSN: unsupported address {address!r}")
    return ConnectionConfig(
        name="",
        kind=BackendKind.MYSQL,
        host=host,
        port=port,
        user=user,
        password=password,
        database=database,
    )


def split_dsn_tokens(dsn: str) -> list[str]:
    """Split a libpq keyword string on whitespace, honouring quotes and escapes."""

    tokens: list[str] = []
    current: list[str] = []
    quote_char = ""
    escaped = False
    for char in dsn:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\":
            escaped = True
        elif quote_char:
            if char == quote_char:
                quote_char = ""
            else:
                current.append(char)
        elif char in "'\"":
            quote_char = char
        elif char.isspace():
            if current:
                tokens.append("".join(current))
                current = []
        else:
            current.append(char)
    if current:
        tokens.append("".join(current))
    return tokens


def split_host_port(address: str, default_port: int) -> tuple[str, int]:
    address = address.strip()
    if not address:
        return "localhost", default_port
    if address.startswith("["):
        host, _, tail = address[1:].partition("]")
        port = tail.lstrip(":")
    elif address.count(":") == 1:
        host, _, port = address.partition(":")
    else:
        host, port = address, ""
    host = host.strip() or "localhost"
    return host, int(port) if port.strip().isdigit() else default_port


__all__ = [
    "CONNECT_TIMEOUT",
    "DEFAULT_PORTS",
    "DRIVERS",
    "READ_WRITE_TIMEOUT",
    "REQUIRED_FIELDS",
    "missing_fields",
    "parse_connection_string",
    "resolve",
    "split_dsn_tokens",
    "split_host_port",
    "with_defaults",
]
