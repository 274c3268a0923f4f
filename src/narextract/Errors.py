"""Exception taxonomy for narextract.

Every error raised by the decoding pipeline is fatal to the current
extraction: a NAR stream has no resynchronisation points, so once a read
goes wrong the only way forward is to start over from the first byte.
Retrying is left to the caller.
"""


class NarExtractError(Exception):
    """Base class for all narextract errors."""


class UnsupportedCodec(NarExtractError):
    """The compression label is not one the front-end can decode."""

    def __init__(self, label: str):
        super().__init__(f"compression {label!r} not handled")
        self.label = label


class ArchiveError(NarExtractError):
    """The archive byte stream could not be decoded."""


class NotANarArchive(ArchiveError):
    """The stream does not start with the NAR magic token."""


class Truncated(ArchiveError):
    """The stream ended before a complete token could be read."""


class MalformedArchive(ArchiveError):
    """A token did not match what the grammar expects at this point."""


class UnsupportedEntryType(ArchiveError):
    """The requested path names an entry that is not a regular file."""


class NotFound(NarExtractError):
    """The requested job, store path, narinfo or archive member does not exist."""


class MalformedMetadata(NarExtractError):
    """A narinfo, lookup response or store path could not be parsed."""


class Cancelled(NarExtractError):
    """The underlying source was closed while the pipeline was still reading."""
