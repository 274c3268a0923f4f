"""End-to-end extraction of one file from a store path in a binary cache.

`NarExtractor` chains the pieces together:

    job --Hydra--> store path --narinfo--> NAR URL + codec
        --RemoteStream--> open_decompressed --> NarDecoder --> extract

and writes the result to a temporary file next to the destination, which is
renamed into place only once the copy is complete. A failed extraction
never leaves a partial file at the destination.
"""

import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path

from .Cache import BinaryCacheClient, NarInfo
from .Config import DEFAULT_STORE_DIR, AppConfig, get_config
from .Decompression import CodecLabel, open_decompressed
from .Errors import Cancelled, NotFound
from .Extractor import MatchMode, extract, split_path
from .Hydra import HydraClient
from .NarReader import NarDecoder
from .Protocols import BinaryCache, LookupService
from .StorePath import StorePath, parse_store_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractResult:
    store_path: StorePath
    target: tuple[str, ...]
    output_path: Path
    size: int
    narinfo: NarInfo

    @property
    def archive_path(self) -> str:
        return "/" + "/".join(self.target)


class NarExtractor:
    """Extracts single files out of store paths.

    The extractor holds no per-extraction state besides the download in
    progress, so one instance can serve many extractions in a row.

    Attributes:
        cache (BinaryCache): narinfo lookups and NAR downloads.
        lookup (LookupService|None): job resolution; only needed by `extract_file`
            when given a job name rather than a store path.
        store_dir (str): Store directory prefix of store paths.
        strict_order (bool): Have the decoder reject unsorted directories.
    """

    def __init__(self, cache: BinaryCache, lookup: LookupService | None = None, *,
                 store_dir: str = DEFAULT_STORE_DIR, strict_order: bool = False):
        self.cache = cache
        self.lookup = lookup
        self.store_dir = store_dir.rstrip("/")
        self.strict_order = strict_order
        self._owned = []
        self._active = None
        self._cancelled = threading.Event()
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: AppConfig | None = None) -> "NarExtractor":
        """Build an extractor with its own Hydra and cache clients.

        Close it (or use it as a context manager) to release the clients.
        """
        config = config or get_config()
        cache = BinaryCacheClient.from_config(config)
        lookup = HydraClient.from_config(config)
        extractor = cls(cache, lookup, store_dir=config.store_dir)
        extractor._owned = [cache, lookup]
        return extractor

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        for client in self._owned:
            client.close()
        self._owned = []

    def cancel(self):
        """Abort the download in progress, from any thread.

        The extraction in progress fails with `Cancelled`, including one that
        is still resolving the job or fetching the narinfo.
        """
        # Set before looking at _active so a download opened concurrently
        # either gets closed here or sees the flag.
        self._cancelled.set()
        with self._lock:
            stream = self._active
        if stream is not None:
            logger.info("Cancelling the download")
            stream.close()

    def resolve(self, job: str, output: str = "out") -> StorePath:
        """Turn a job name or a store path into a StorePath."""
        if job.startswith(self.store_dir + "/"):
            return parse_store_path(job, self.store_dir)
        if self.lookup is None:
            raise NotFound(f"{job!r} is not a store path and no lookup service is configured")
        logger.info("Getting latest artifact for: %s", job)
        path = self.lookup.latest_output_path(job, output)
        logger.info("Store path: %s", path)
        return parse_store_path(path, self.store_dir)

    @staticmethod
    def target_for(store_path: StorePath, member=None) -> tuple[str, ...]:
        """Path to look for inside the NAR of `store_path`.

        An explicit `member` wins; then the part of the store path below its
        top-level entry; otherwise the store path's name without the hash.
        """
        if member is not None:
            return split_path(member)
        if store_path.relative:
            return store_path.relative
        return (store_path.name,)

    def extract_file(self, job: str, output_path, *, member=None, output: str = "out",
                     mode: MatchMode = MatchMode.FULL_PATH, progress_callback=None,
                     on_narinfo=None) -> ExtractResult:
        """Extract one file of the latest build of `job` to `output_path`.

        Args:
            job (str): Hydra job name, or a store path.
            output_path: Destination file.
            member: Path inside the store path to extract (see `target_for`).
            output (str): Name of the build output to use.
            mode (MatchMode): Path comparison policy.
            progress_callback (callable|None): Called with every chunk size
                downloaded.
            on_narinfo (callable|None): Called with the NarInfo before the
                download starts.

        Raises:
            NotFound: If the job, narinfo or member does not exist.
            UnsupportedCodec: If the NAR's compression is not supported.
            ArchiveError: If the NAR cannot be decoded or the member is not a
                regular file.
            Cancelled: If `cancel()` was called.
        """
        self._cancelled.clear()
        store_path = self.resolve(job, output)
        return self._extract(store_path, output_path, member, mode, progress_callback, on_narinfo)

    def extract_store_path(self, store_path, output_path, *, member=None,
                           mode: MatchMode = MatchMode.FULL_PATH, progress_callback=None,
                           on_narinfo=None) -> ExtractResult:
        """Extract one file of `store_path` to `output_path`. See `extract_file`."""
        self._cancelled.clear()
        return self._extract(store_path, output_path, member, mode, progress_callback, on_narinfo)

    def _check_cancelled(self):
        if self._cancelled.is_set():
            raise Cancelled("extraction was cancelled")

    def _extract(self, store_path, output_path, member, mode, progress_callback, on_narinfo) -> ExtractResult:
        self._check_cancelled()
        if isinstance(store_path, str):
            store_path = parse_store_path(store_path, self.store_dir)
        target = self.target_for(store_path, member)
        output_path = Path(output_path)

        narinfo = self.cache.get_narinfo(store_path.hash)
        # Reject unknown codecs before opening the download.
        codec = CodecLabel.parse(narinfo.compression)
        if on_narinfo:
            on_narinfo(narinfo)
        logger.info("Looking for /%s in %s (%s)", "/".join(target), store_path.base_name, codec)

        self._check_cancelled()
        raw = self.cache.open_nar(narinfo.url, progress_callback=progress_callback)
        with self._lock:
            self._active = raw
        try:
            self._check_cancelled()
            with open_decompressed(raw, codec) as stream:
                decoder = NarDecoder(stream, strict_order=self.strict_order)
                size = self._write(decoder, target, output_path, mode, store_path)
        finally:
            with self._lock:
                self._active = None
            raw.close()

        logger.info("Wrote /%s to %s", "/".join(target), output_path)
        return ExtractResult(store_path=store_path, target=target, output_path=output_path,
                             size=size, narinfo=narinfo)

    def _write(self, decoder: NarDecoder, target: tuple[str, ...], output_path: Path,
               mode: MatchMode, store_path: StorePath) -> int:
        # Make extraction dir
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{output_path.name}.", suffix=".part", dir=output_path.parent)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as sink:
                found = extract(decoder, target, sink, mode=mode)
                size = sink.tell()
            if not found:
                raise NotFound(f"/{'/'.join(target)} not found in {store_path}")
            os.chmod(tmp_path, 0o644)
            os.replace(tmp_path, output_path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        return size
