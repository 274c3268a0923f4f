"""Selective single-file extraction from a NAR event stream."""

import io
import logging
import os
from enum import Enum
from typing import Sequence, assert_never

from .Errors import UnsupportedEntryType
from .NarReader import DirectoryEnd, DirectoryStart, FileHeader, Member, NarDecoder, Symlink

logger = logging.getLogger(__name__)


class MatchMode(Enum):
    """How a candidate entry's path is compared with the target path.

    ``FULL_PATH``
        Every segment from the archive root must match.  *(default)*
    ``BASENAME``
        Only the final segments are compared, so the first file with that
        name anywhere in the tree wins.
    """

    FULL_PATH = "full_path"
    BASENAME = "basename"


def split_path(path: "str | os.PathLike | Sequence[str]") -> tuple[str, ...]:
    """Normalise a target path to a tuple of segments.

    "a/b.txt", "/a/b.txt/" and ("a", "b.txt") all give ("a", "b.txt").
    An empty path, "" or "/", names the archive root.

    Raises:
        ValueError: If a segment is "." or "..".
    """
    if isinstance(path, (str, os.PathLike)):
        segments = tuple(s for s in os.fspath(path).split("/") if s)
    else:
        segments = tuple(path)
    for segment in segments:
        if segment in (".", "..") or not segment:
            raise ValueError(f"invalid path segment {segment!r} in {path!r}")
    return segments


def _matches(current: tuple[str, ...], target: tuple[str, ...], mode: MatchMode) -> bool:
    if mode is MatchMode.BASENAME and target:
        return current[-1:] == target[-1:]
    return current == target


def _sync(sink):
    sink.flush()
    try:
        fd = sink.fileno()
    except (AttributeError, io.UnsupportedOperation):
        return
    os.fsync(fd)


def extract(
    decoder: NarDecoder,
    target_path,
    sink,
    *,
    mode: MatchMode = MatchMode.FULL_PATH,
    progress_callback=None,
) -> bool:
    """Copy the regular file at `target_path` from `decoder` into `sink`.

    Decoding stops as soon as the file's bytes have been copied; the rest
    of the archive is never read. Files before it are skipped without being
    buffered.

    Args:
        decoder (NarDecoder): A decoder that has not been iterated yet.
        target_path: Path of the file inside the archive, as a "/"-joined
            string or a sequence of segments.
        sink: Binary writable file-like object. Flushed (and fsynced when it
            has a file descriptor) after the copy.
        mode (MatchMode): Path comparison policy.
        progress_callback (callable|None): Called with every chunk size copied.

    Returns:
        bool: True if the file was copied, False if the archive has no entry
        at `target_path`. The sink is not touched in the latter case.

    Raises:
        UnsupportedEntryType: If `target_path` names a symlink or a directory.
        ArchiveError: If the archive cannot be decoded.
    """
    target = split_path(target_path)
    path: list[str] = []

    for event in decoder.events():
        match event:
            case Member(name=name):
                path.append(name)
            case DirectoryStart():
                current = tuple(path)
                logger.debug("Iterating on /%s/", "/".join(current))
                if _matches(current, target, mode):
                    raise UnsupportedEntryType(f"/{'/'.join(current)} is a directory, not a regular file")
            case DirectoryEnd():
                if path:
                    path.pop()
            case FileHeader(size=size):
                current = tuple(path)
                logger.debug("Iterating on /%s (%d bytes)", "/".join(current), size)
                if _matches(current, target, mode):
                    copied = decoder.copy_content(sink, progress_callback=progress_callback)
                    _sync(sink)
                    logger.info("Copied /%s (%d bytes)", "/".join(current), copied)
                    return True
                decoder.skip_content()
                if path:
                    path.pop()
            case Symlink(target=link_target):
                current = tuple(path)
                logger.debug("Iterating on /%s -> %s", "/".join(current), link_target)
                if _matches(current, target, mode):
                    raise UnsupportedEntryType(
                        f"/{'/'.join(current)} is a symlink to {link_target!r}, not a regular file"
                    )
                if path:
                    path.pop()
            case _:
                assert_never(event)

    return False
