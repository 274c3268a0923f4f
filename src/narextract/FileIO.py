"""Remote HTTP-backed sequential stream.

Provides RemoteStream, an io.RawIOBase-compatible stream that reads the
body of a remote file front-to-back while it is being downloaded. Nothing
beyond the current network chunk is held in memory, so a multi-gigabyte
archive can be decoded without ever being stored.

Classes:
    RemoteStream: Streaming, read-only, non-seekable HTTP body reader.
"""

import io
import logging
import socket
import time

import httpx

from .Config import DEFAULT_CONNECT_TIMEOUT, DEFAULT_READ_TIMEOUT, DEFAULT_RETRIES
from .Errors import Cancelled

logger = logging.getLogger(__name__)

USER_AGENT = "narextract/0.1.0"


def make_http_client(connect_timeout: float = DEFAULT_CONNECT_TIMEOUT, read_timeout: float = DEFAULT_READ_TIMEOUT) -> httpx.Client:
    """Build the keep-alive client shared by the lookup, narinfo and NAR requests."""
    headers = {
        "User-Agent": USER_AGENT,
        "Accept": "*/*",
        "Connection": "keep-alive"}
    return httpx.Client(headers=headers, follow_redirects=True, timeout=httpx.Timeout(connect_timeout, read=read_timeout))


class RemoteStream(io.RawIOBase):
    """File-like stream over the body of a single HTTP GET.

    The stream issues one GET and hands out the body bytes in order. If the
    connection drops mid-body it re-requests the remainder with a Range
    header starting at the current position, so the bytes handed to the
    caller are always the exact continuation of what was already read.

    Closing the stream (from any thread) cancels it: the response is closed
    and every read after that, including one blocked on the network at the
    time, raises `Cancelled`.

    Attributes:
        url (str): Remote resource URL.
        client (httpx.Client): HTTP client used for requests. The stream does
            not own it and never closes it.
        pos (int): Number of body bytes handed out so far.
        retries (int): Attempts per (re)connection before giving up.
        progress_callback (callable|None): Called with the size of every
            chunk received from the network.
    """

    def __init__(self, client: httpx.Client, url: str, retries: int = DEFAULT_RETRIES, progress_callback=None):
        """Open a RemoteStream.

        Args:
            client (httpx.Client): Client used to issue the GET requests.
            url (str): HTTP(S) URL of the resource to stream.
            retries (int): Attempts per connection before the error is raised.
            progress_callback (callable|None): Optional download progress hook.

        Raises:
            httpx.HTTPStatusError: If the server answers with a client error
                or keeps failing with a server error.
            httpx.TransportError: If the server cannot be reached.
        """
        self.url = url
        self.client = client
        self.retries = max(1, retries)
        self.progress_callback = progress_callback
        self.pos: int = 0
        self._size: int | None = None

        self._response: httpx.Response | None = None
        self._chunks = None
        self._chunk: bytes = b""
        self._chunk_pos: int = 0
        # Bytes to drop from the head of a response whose server ignored Range.
        self._discard: int = 0
        self._cancelled = False

        self._connect()

    @property
    def size(self) -> int | None:
        """Return the total body length if the server announced it."""
        return self._size

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def writable(self) -> bool:
        return False

    def tell(self) -> int:
        return self.pos

    def _connect(self):
        """Issue the GET for the remaining body, retrying transient failures."""
        headers = {"Range": f"bytes={self.pos}-"} if self.pos else {}
        for attempt in range(self.retries):
            if self._cancelled:
                raise Cancelled(f"download of {self.url} was cancelled")
            try:
                request = self.client.build_request("GET", self.url, headers=headers)
                response = self.client.send(request, stream=True)
                if response.status_code == 429:
                    # Follow Retry-After when present.
                    wait_time = max(int(response.headers.get("Retry-After", 3)), 1)
                    response.close()
                    logger.warning("Received 429 Too Many Requests, retrying after %d seconds.", wait_time)
                    time.sleep(wait_time)
                    continue
                if response.status_code >= 500 and attempt < self.retries - 1:
                    response.close()
                    raise httpx.HTTPStatusError(
                        f"Server returned {response.status_code}", request=request, response=response
                    )
                if response.status_code >= 400:
                    response.close()
                    response.raise_for_status()
            except httpx.HTTPStatusError as e:
                if e.response.status_code < 500 or attempt == self.retries - 1:
                    raise
                self._backoff(attempt, e)
                continue
            except httpx.TransportError as e:
                if attempt == self.retries - 1:
                    raise
                self._backoff(attempt, e)
                continue

            if self.pos and response.status_code != 206:
                # Server ignored the Range header and restarted from byte 0.
                self._discard = self.pos
            if self._size is None:
                length = response.headers.get("Content-Length")
                if length is not None and response.status_code == 200:
                    self._size = int(length)
            self._response = response
            self._chunks = response.iter_bytes()
            return
        raise httpx.HTTPError(f"Giving up on {self.url} after {self.retries} attempts")

    def _backoff(self, attempt: int, error: Exception):
        wait_time = (attempt + 1) * 2
        logger.warning("HTTP error on attempt %d: %s. Retrying after %d seconds.", attempt + 1, error, wait_time)
        time.sleep(wait_time)

    def _next_chunk(self) -> bool:
        """Load the next network chunk. Returns False at end of body."""
        while True:
            try:
                chunk = next(self._chunks)
            except StopIteration:
                if self._cancelled:
                    raise Cancelled(f"download of {self.url} was cancelled") from None
                return False
            except (httpx.TransportError, httpx.StreamError) as e:
                if self._cancelled:
                    raise Cancelled(f"download of {self.url} was cancelled") from e
                if not isinstance(e, httpx.TransportError):
                    raise
                logger.warning("Connection lost at byte %d of %s: %s", self.pos, self.url, e)
                self._response.close()
                self._connect()
                continue
            except (OSError, ValueError) as e:
                # The socket was torn down under a blocked read.
                if self._cancelled:
                    raise Cancelled(f"download of {self.url} was cancelled") from e
                raise

            if self._discard:
                dropped = min(self._discard, len(chunk))
                self._discard -= dropped
                chunk = chunk[dropped:]
            if not chunk:
                continue
            if self.progress_callback:
                self.progress_callback(len(chunk))
            self._chunk = chunk
            self._chunk_pos = 0
            return True

    def readinto(self, b) -> int:
        """Fill `b` with the next body bytes; returns 0 at end of body.

        Raises:
            Cancelled: If the stream was closed.
            httpx.HTTPError: If the body could not be resumed after a failure.
        """
        if self._cancelled or self.closed:
            raise Cancelled(f"download of {self.url} was cancelled")
        if self._chunk_pos >= len(self._chunk) and not self._next_chunk():
            return 0
        n = min(len(b), len(self._chunk) - self._chunk_pos)
        b[:n] = self._chunk[self._chunk_pos: self._chunk_pos + n]
        self._chunk_pos += n
        self.pos += n
        return n

    def close(self):
        """Cancel the download and release the HTTP connection.

        Safe to call more than once and from another thread than the reader.
        """
        if self.closed:
            return
        self._cancelled = True
        if self._response is not None:
            self._shutdown_socket()
            self._response.close()
        super().close()

    def _shutdown_socket(self):
        """Wake up a reader blocked in recv() on the response's connection.

        Closing the response alone leaves such a reader waiting for the read
        timeout; shutting the socket down makes recv() return at once.
        """
        network_stream = self._response.extensions.get("network_stream")
        if network_stream is None:
            return
        sock = network_stream.get_extra_info("socket")
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Already disconnected.
            pass
