"""narextract package initializer.

This module provides the package-level public surface of `narextract`, a
small library that pulls one file out of a NAR in a Nix binary cache while
the archive is still downloading. It exports:

- __version__: Package version string.
- NarExtractor: End-to-end extraction from a job name or store path.
- open_decompressed / CodecLabel: The decompression front-end.
- NarDecoder / TokenReader and the entry events: The streaming NAR decoder.
- extract / MatchMode: Selective extraction from a decoder.
- cli: The CLI entrypoint function (click command).

Importing the package is cheap: network I/O only happens when the exported
functions are called.

Example:
    from narextract import NarExtractor
    with NarExtractor.from_config() as extractor:
        extractor.extract_file("/nix/store/<hash>-hello-2.12", "hello", member="bin/hello")
"""

# Public version string
__version__ = "0.1.0"

from .ArchiveEngine import ExtractResult, NarExtractor
from .Cache import BinaryCacheClient, NarInfo, parse_narinfo
from .Decompression import CodecLabel, open_decompressed
from .Errors import (
    ArchiveError,
    Cancelled,
    MalformedArchive,
    MalformedMetadata,
    NarExtractError,
    NotANarArchive,
    NotFound,
    Truncated,
    UnsupportedCodec,
    UnsupportedEntryType,
)
from .Extractor import MatchMode, extract, split_path
from .FileIO import RemoteStream
from .Hydra import HydraClient
from .NarReader import DirectoryEnd, DirectoryStart, EntryEvent, FileHeader, Member, NarDecoder, Symlink, TokenReader
from .StorePath import StorePath, parse_store_path

# Expose the CLI command object so callers can reuse or register it in other tools.
from .CLI import extract as cli  # click CLI command

__all__ = [
    "__version__",
    "NarExtractor",
    "ExtractResult",
    "BinaryCacheClient",
    "NarInfo",
    "parse_narinfo",
    "HydraClient",
    "RemoteStream",
    "CodecLabel",
    "open_decompressed",
    "TokenReader",
    "NarDecoder",
    "EntryEvent",
    "DirectoryStart",
    "DirectoryEnd",
    "Member",
    "FileHeader",
    "Symlink",
    "MatchMode",
    "extract",
    "split_path",
    "StorePath",
    "parse_store_path",
    "NarExtractError",
    "UnsupportedCodec",
    "ArchiveError",
    "NotANarArchive",
    "Truncated",
    "MalformedArchive",
    "UnsupportedEntryType",
    "NotFound",
    "MalformedMetadata",
    "Cancelled",
    "cli",
]
