"""
Configuration classes for pgshell. Separated, to reduce code clutter in
the main module.
"""

from dataclasses import dataclass, fields, replace
from enum import StrEnum
import os
from pathlib import Path
from string import Template
import tomllib
from typing import Any, Self
from urllib.parse import parse_qsl

from sqlalchemy.engine import URL, make_url

DEFAULT_DRIVER = "postgresql+psycopg2"
DEFAULT_APPLICATION_NAME = "pgshell"


class ConfigurationError(Exception):
    """
    Thrown to indicate a configuration error.
    """


class EngineName(StrEnum):
    """
    SQLAlchemy backend names that need special handling.
    """

    POSTGRES = "postgresql"
    SQLITE = "sqlite"


class SSLMode(StrEnum):
    """
    The SSL modes libpq understands that the shell lets you pick.
    """

    DISABLE = "disable"
    REQUIRE = "require"
    VERIFY_CA = "verify-ca"
    VERIFY_FULL = "verify-full"


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True)
class ConnectionConfig:
    """
    Everything needed to connect to a database. Either `url` is a complete
    SQLAlchemy URL, in which case the host-based fields are ignored, or the
    URL is assembled from the host-based fields.

    Timeouts and the connection lifetime are in seconds. A statement timeout
    of 0 means the server's default.
    """

    name: str = "default"
    url: str | None = None
    host: str = "localhost"
    port: int = 5432
    username: str = "postgres"
    password: str | None = None
    database: str = "postgres"
    sslmode: SSLMode = SSLMode.DISABLE
    connect_timeout: float = 10
    statement_timeout: float = 0
    max_open: int = 10
    max_idle: int = 5
    max_lifetime: float = 3600
    application_name: str = DEFAULT_APPLICATION_NAME
    search_path: str | None = None
    timezone: str | None = None
    params: str | None = None
    driver: str = DEFAULT_DRIVER
    history_file: Path | None = None

    def __post_init__(self: Self) -> None:
        try:
            object.__setattr__(self, "sslmode", SSLMode(self.sslmode))
        except ValueError:
            # pylint: disable=raise-missing-from
            choices = ", ".join(m.value for m in SSLMode)
            raise ConfigurationError(
                f'Bad SSL mode "{self.sslmode}". Must be one of: {choices}.'
            )

        if not 0 < self.port < 65536:
            raise ConfigurationError(f"Bad port number {self.port}.")

        for attr in ("connect_timeout", "statement_timeout", "max_lifetime"):
            if getattr(self, attr) < 0:
                raise ConfigurationError(f'"{attr}" cannot be negative.')

        if self.max_open < 1:
            raise ConfigurationError('"max_open" must be at least 1.')

        if self.max_idle < 0:
            raise ConfigurationError('"max_idle" cannot be negative.')

    @property
    def database_name(self: Self) -> str:
        """
        The name of the database this configuration connects to.
        """
        if self.url is not None:
            return make_url(self.url).database or ""
        return self.database

    @property
    def user_name(self: Self) -> str:
        """
        The user name this configuration connects as.
        """
        if self.url is not None:
            return make_url(self.url).username or ""
        return self.username

    @property
    def host_name(self: Self) -> str:
        """
        The host this configuration connects to.
        """
        if self.url is not None:
            return make_url(self.url).host or "localhost"
        return self.host

    @property
    def port_number(self: Self) -> int | None:
        """
        The port this configuration connects to, if known.
        """
        if self.url is not None:
            return make_url(self.url).port
        return self.port

    def sqlalchemy_url(self: Self) -> URL:
        """
        Build the SQLAlchemy URL (the DSN) for this configuration.

        :raises: sqlalchemy.exc.ArgumentError if `url` can't be parsed
        """
        if self.url is not None:
            return make_url(self.url)

        query: dict[str, str] = {
            "sslmode": self.sslmode.value,
            "connect_timeout": str(int(self.connect_timeout)),
        }
        if self.application_name:
            query["application_name"] = self.application_name

        # libpq has no connection keywords for these, so they're passed as
        # run-time server options.
        options: list[str] = []
        if self.search_path:
            options.append(f"-c search_path={self.search_path.replace(' ', '')}")
        if self.timezone:
            options.append(f"-c TimeZone={self.timezone}")
        if self.statement_timeout > 0:
            millis = int(self.statement_timeout * 1000)
            options.append(f"-c statement_timeout={millis}")

        for key, value in parse_qsl(self.params or "", keep_blank_values=True):
            if key == "options":
                options.append(value)
            else:
                query[key] = value

        if options:
            query["options"] = " ".join(options)

        return URL.create(
            self.driver,
            username=self.username,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
            query=query,
        )

    def engine_options(self: Self, echo: bool = False) -> dict[str, Any]:
        """
        Keyword arguments for sqlalchemy.create_engine(). The engine runs in
        autocommit mode, so that transaction control statements typed by the
        user go to the server as-is.

        :param echo: whether SQLAlchemy should log the SQL it runs
        """
        options: dict[str, Any] = {
            "isolation_level": "AUTOCOMMIT",
            "pool_recycle": int(self.max_lifetime) or -1,
            "echo": echo,
        }

        # SQLite's pools don't do overflow.
        if self.sqlalchemy_url().get_backend_name() != EngineName.SQLITE:
            pool_size = max(1, min(self.max_idle, self.max_open))
            options["pool_size"] = pool_size
            options["max_overflow"] = self.max_open - pool_size

        return options

    def with_database(self: Self, database: str) -> "ConnectionConfig":
        """
        Return a copy of this configuration that connects to a different
        database on the same server.
        """
        if self.url is not None:
            url = make_url(self.url).set(database=database)
            return replace(self, url=url.render_as_string(hide_password=False))

        return replace(self, database=database)

    def with_overrides(self: Self, **overrides: Any) -> "ConnectionConfig":
        """
        Return a copy of this configuration with the non-None overrides
        applied.
        """
        return replace(
            self, **{k: v for k, v in overrides.items() if v is not None}
        )


class Configuration:
    """
    Represents the parsed configuration data.
    """

    def __init__(
        self: Self, configs: list[ConnectionConfig], path: Path
    ) -> None:
        """
        Initialize a Configuration object.
        """
        self._configs = configs
        self._path = path

    @property
    def path(self: Self) -> Path:
        """
        Returns the path associated with the configuration.
        """
        return self._path

    def lookup(self: Self, spec: str) -> list[ConnectionConfig] | None:
        """
        Uses a string to look up a configuration. Returns a list of matching
        configurations, or None if no match. An exact (case-blind) name match
        wins over prefix matches.
        """
        exact = [c for c in self._configs if c.name.lower() == spec.lower()]
        if len(exact) > 0:
            return exact

        matches = [
            c for c in self._configs if c.name.lower().startswith(spec.lower())
        ]

        if len(matches) == 0:
            return None

        return matches


class EnvDict(dict):
    """
    For environment substitution, we want a reference to a non-existent
    variable to substitute "", rather than throw an error (as with
    Template.substitute()) or leave the reference intact (as with
    Template.safe_substitute()). To do that, we simply use a custom
    dictionary class.
    """

    def __init__(self: Self, *args, **kw) -> None:
        """Initialize the dictionary"""
        super().__init__()
        self.update(*args, **kw)

    def __getitem__(self: Self, key: Any) -> Any:
        """Get an item from the dictionary"""
        return super().get(key, "")


# Configuration file keys that differ from the ConnectionConfig field names.
KEY_ALIASES = {"user": "username", "history": "history_file", "dbname": "database"}
FIELD_NAMES = frozenset(f.name for f in fields(ConnectionConfig)) - {"name"}


def make_connection_config(
    name: str, values: dict[str, Any], env: dict[str, str] | None = None
) -> ConnectionConfig:
    """
    Build a ConnectionConfig from one section of the configuration file.
    String values have environment variables substituted; the history path
    has "~" expanded.

    :param name: the section name
    :param values: the section's keys and values
    :param env: the environment to substitute from. Defaults to os.environ.

    :raises: ConfigurationError on a bad key or value
    """
    env = EnvDict(**(os.environ if env is None else env))
    kwargs: dict[str, Any] = {}
    for key, value in values.items():
        field_name = KEY_ALIASES.get(key, key)
        if field_name not in FIELD_NAMES:
            raise ConfigurationError(f'Section "{name}": Unknown key "{key}".')

        if isinstance(value, str):
            value = Template(value).substitute(env)

        if field_name == "history_file":
            value = Path(value).expanduser()

        kwargs[field_name] = value

    try:
        return ConnectionConfig(name=name, **kwargs)
    except ConfigurationError as e:
        # pylint: disable=raise-missing-from
        raise ConfigurationError(f'Section "{name}": {e}')
    except TypeError as e:
        # pylint: disable=raise-missing-from
        raise ConfigurationError(f'Section "{name}": Bad value: {e}')


def load_configuration(config: Path) -> Configuration:
    """
    Reads the configuration file. Each top-level table in the TOML file is a
    named connection. Raises ConfigurationError on error.

    :param config: Path to the configuration file, which must exist
    """
    assert config.exists()

    try:
        with open(config, mode="rb") as f:
            data = tomllib.load(f)
    except Exception as e:
        # pylint: disable=raise-missing-from
        raise ConfigurationError(f'Unable to read "{config}": {e}')

    configs: list[ConnectionConfig] = []
    for key, values in data.items():
        if not isinstance(values, dict):
            raise ConfigurationError(
                f'"{config}": "{key}" is not a section.'
            )

        try:
            configs.append(make_connection_config(key, values))
        except ConfigurationError as e:
            # pylint: disable=raise-missing-from
            raise ConfigurationError(f'"{config}": {e}')

    return Configuration(configs=configs, path=config)
