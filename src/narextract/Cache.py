"""Binary cache client.

`BinaryCacheClient` answers the two questions the extractor has for a Nix
binary cache: what is the narinfo of a store hash (where is the NAR, how is
it compressed), and give me the NAR's bytes as a stream. One client keeps
one keep-alive connection pool and can serve any number of extractions.
"""

import logging
from dataclasses import dataclass

import httpx

from .Config import DEFAULT_CACHE_URL, DEFAULT_CONNECT_TIMEOUT, DEFAULT_READ_TIMEOUT, AppConfig
from .Errors import MalformedMetadata, NotFound
from .FileIO import DEFAULT_RETRIES, RemoteStream, make_http_client

logger = logging.getLogger(__name__)

# Nix treats a narinfo without a Compression field as bzip2.
DEFAULT_COMPRESSION = "bzip2"


@dataclass(frozen=True)
class NarInfo:
    store_path: str
    url: str
    compression: str = DEFAULT_COMPRESSION
    file_hash: str | None = None
    file_size: int | None = None
    nar_hash: str | None = None
    nar_size: int | None = None
    references: tuple[str, ...] = ()
    deriver: str | None = None
    signatures: tuple[str, ...] = ()
    ca: str | None = None


def _int_field(fields: dict, key: str) -> int | None:
    value = fields.get(key)
    if value is None:
        return None
    try:
        size = int(value)
    except ValueError:
        raise MalformedMetadata(f"narinfo {key} is not an integer: {value!r}") from None
    if size < 0:
        raise MalformedMetadata(f"narinfo {key} is negative: {value!r}")
    return size


def parse_narinfo(text: str) -> NarInfo:
    """Parse the ``Key: Value`` lines of a .narinfo file.

    Raises:
        MalformedMetadata: On a line without a colon, a duplicated key, a
            missing StorePath or URL, or a non-numeric size.
    """
    fields: dict[str, str] = {}
    signatures: list[str] = []
    for lineno, line in enumerate(text.splitlines(), 1):
        if not line.strip():
            continue
        key, sep, value = line.partition(":")
        if not sep or not key:
            raise MalformedMetadata(f"narinfo line {lineno} is not 'Key: Value': {line!r}")
        value = value.strip()
        if key == "Sig":
            signatures.append(value)
            continue
        if key in fields:
            raise MalformedMetadata(f"narinfo has a duplicate {key} field")
        fields[key] = value

    for required in ("StorePath", "URL"):
        if not fields.get(required):
            raise MalformedMetadata(f"narinfo has no {required} field")

    return NarInfo(
        store_path=fields["StorePath"],
        url=fields["URL"],
        compression=fields.get("Compression") or DEFAULT_COMPRESSION,
        file_hash=fields.get("FileHash"),
        file_size=_int_field(fields, "FileSize"),
        nar_hash=fields.get("NarHash"),
        nar_size=_int_field(fields, "NarSize"),
        references=tuple(fields.get("References", "").split()),
        deriver=fields.get("Deriver") or None,
        signatures=tuple(signatures),
        ca=fields.get("CA") or None,
    )


class BinaryCacheClient:
    """Client for one binary cache.

    Use it as a context manager, or call `close()`, to release the HTTP
    connections. A client passed in by the caller is left open.

    Attributes:
        url (str): Base URL of the cache, without trailing slash.
        client (httpx.Client): Underlying HTTP client.
        retries (int): Connection attempts for NAR downloads.
    """

    def __init__(self, url: str = DEFAULT_CACHE_URL, *, client: httpx.Client | None = None,
                 retries: int = DEFAULT_RETRIES, connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
                 read_timeout: float = DEFAULT_READ_TIMEOUT):
        self.url = url.rstrip("/")
        self.retries = retries
        self._owns_client = client is None
        self.client = client if client is not None else make_http_client(connect_timeout, read_timeout)

    @classmethod
    def from_config(cls, config: AppConfig, client: httpx.Client | None = None) -> "BinaryCacheClient":
        return cls(config.cache_url, client=client, retries=config.retries,
                   connect_timeout=config.connect_timeout, read_timeout=config.read_timeout)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        if self._owns_client:
            self.client.close()

    def get_narinfo(self, store_hash: str) -> NarInfo:
        """Fetch and parse ``<cache>/<store_hash>.narinfo``.

        Raises:
            NotFound: If the cache does not have the store path.
            MalformedMetadata: If the narinfo cannot be parsed.
            httpx.HTTPError: On other network or HTTP failures.
        """
        path = f"{store_hash}.narinfo"
        logger.info("Fetching the narinfo: %s from: %s", path, self.url)
        response = self.client.get(f"{self.url}/{path}")
        if response.status_code == 404:
            raise NotFound(f"{self.url} has no narinfo for {store_hash}")
        response.raise_for_status()
        return parse_narinfo(response.text)

    def nar_url(self, url: str) -> str:
        """Resolve a narinfo URL field (normally relative) against the cache."""
        return str(httpx.URL(self.url + "/").join(url))

    def open_nar(self, url: str, progress_callback=None) -> RemoteStream:
        """Start downloading the (compressed) NAR named by a narinfo URL field.

        Raises:
            NotFound: If the cache answers 404.
            httpx.HTTPError: On other network or HTTP failures.
        """
        full_url = self.nar_url(url)
        logger.info("Fetching the NAR: %s", full_url)
        try:
            return RemoteStream(self.client, full_url, retries=self.retries, progress_callback=progress_callback)
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise NotFound(f"{full_url} does not exist") from e
            raise
