"""Interfaces of the services the extractor depends on.

`NarExtractor` only needs these three capabilities. `HydraClient` and
`BinaryCacheClient` implement them over HTTP; tests and other front-ends
can plug in anything with the same methods.
"""

from typing import Protocol

from .Cache import NarInfo


class LookupService(Protocol):
    """Resolves a build job to a store path."""

    def latest_output_path(self, job: str, output: str = "out") -> str:
        """Return the store path of the job's latest output.

        Raises:
            NotFound: If no output exists for the job.
        """
        ...


class MetadataService(Protocol):
    """Resolves a store hash to the metadata of its NAR."""

    def get_narinfo(self, store_hash: str) -> NarInfo:
        """Return the narinfo for `store_hash`.

        Raises:
            NotFound: If the cache has no such store path.
            MalformedMetadata: If the metadata cannot be parsed.
        """
        ...


class RawFetcher(Protocol):
    """Opens the compressed bytes of a NAR."""

    def open_nar(self, url: str, progress_callback=None):
        """Return a readable binary stream of the NAR at `url`.

        The caller closes the stream. Network errors are raised as-is.
        """
        ...


class BinaryCache(MetadataService, RawFetcher, Protocol):
    """A cache that both describes and serves NARs."""
