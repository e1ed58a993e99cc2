from __future__ import annotations

from abc import ABC, abstractmethod
from collections import namedtuple
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncContextManager,
    Optional,
    Set,
    Type,
)
from urllib.parse import urlparse

from txflow.exception import TxflowError

if TYPE_CHECKING:
    from txflow.sql.executor import SQLExecutor

UrlMapping = namedtuple("UrlMapping", ("key", "cast"))


URLPARSE_MAPPING = {
    "hostname": UrlMapping("_host", str),
    "username": UrlMapping("_user", str),
    "password": UrlMapping("_password", str),
    "port": UrlMapping("_port", int),
    "path": UrlMapping("_db", lambda value: value.replace("/", "")),
}


class BaseInterface(ABC):
    """Source of database connections.

    An interface only hands out connections. Everything that happens on a
    connection goes through the interface's `executor_class`.
    """

    scheme = "dummy"
    schemes: Set[str] = set()
    executor_class: Type[SQLExecutor]
    registered_interfaces: Set[Type[BaseInterface]] = set()

    def __init_subclass__(cls) -> None:
        BaseInterface.registered_interfaces.add(cls)

    @abstractmethod
    def _setup_pool(self):
        ...

    @abstractmethod
    async def open(self):
        ...

    @abstractmethod
    async def close(self):
        ...

    @abstractmethod
    def connection(
        self, timeout: Optional[float] = None
    ) -> AsyncContextManager[Any]:
        ...

    def __init__(
        self,
        dsn: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        db: Optional[str] = None,
        min_size: int = 1,
        max_size: Optional[int] = None,
    ) -> None:
        """DB class initialization.

        Args:
            dsn (str, optional): DB data source name
            host (str, optional): DB address URL or IP
            port (int, optional): DB port
            user (str, optional): DB user
            password (str, optional): DB password
            db (str, optional): DB name
            min_size (int, optional): Minimum pool size. Defaults to 1
            max_size (int, optional): Maximum pool size. Defaults to `None`
        """

        if dsn and host:
            raise TxflowError("Cannot connect to DB using host and dsn")

        if not dsn:
            if port and (
                not isinstance(port, int) or port not in range(0, 65536)
            ):
                raise TxflowError(
                    "port: must be an integer between 0 and 65535"
                )

            if host and (not isinstance(host, str) or not len(host) > 0):
                raise TxflowError(
                    "host: must be a string at least 1 character long"
                )

        if password is not None and (
            not isinstance(password, str) or not len(password) > 0
        ):
            raise TxflowError(
                "password: must be a string at least 1 character long"
            )

        self._dsn = dsn
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._db = db
        self._query = ""
        self._min_size = min_size
        self._max_size = max_size
        self._full_dsn: Optional[str] = None

        self._populate_connection_args()
        self._populate_dsn()
        self._setup_pool()

    def __str__(self) -> str:
        return f"<{self.__class__.__name__} {self.dsn}>"

    def _populate_connection_args(self):
        dsn = self.dsn or ""
        if dsn:
            parts = urlparse(dsn)
            for key, mapping in URLPARSE_MAPPING.items():
                if not getattr(self, mapping.key):
                    value = getattr(parts, key, None)
                    if value is not None:
                        setattr(self, mapping.key, mapping.cast(value))
            self._query = parts.query

    def _populate_dsn(self):
        location = f"{self.host}:{self.port}" if self.port else self.host
        self._dsn = (
            f"{self.scheme}://{self.user}:...@{location}/{self.db}"
            if self.password
            else f"{self.scheme}://{self.user}@{location}/{self.db}"
        )
        self._full_dsn = (
            (
                f"{self.scheme}://{self.user}:{self.password}@"
                f"{location}/{self.db}"
            )
            if self.password
            else self.dsn
        )
        self._full_dsn += f"?{self._query}" if self._query else ""

    @property
    def dsn(self):
        return self._dsn

    @property
    def host(self):
        return self._host

    @property
    def port(self):
        return self._port

    @property
    def user(self):
        return self._user

    @property
    def password(self):
        return self._password

    @property
    def db(self):
        return self._db

    @property
    def full_dsn(self):
        return self._full_dsn

    @property
    def min_size(self):
        return self._min_size

    @property
    def max_size(self):
        return self._max_size

    @classmethod
    def handles(cls, scheme: str) -> bool:
        return scheme == cls.scheme or scheme in cls.schemes
