"""Streaming NAR decoder.

A NAR ("Nix ARchive") serialises a filesystem tree as a sequence of
tokens. Every token is a little-endian uint64 length followed by that many
bytes, zero-padded to a multiple of 8:

    nix-archive-1 ( type directory
        entry ( name a node ( type directory
            entry ( name b.txt node ( type regular contents <u64> <bytes> ) )
        ) )
    )

`TokenReader` reads those primitives from any binary stream. `NarDecoder`
turns them into a flat, pre-order sequence of entry events while holding
nothing but the stack of open directories: file contents are handed to the
consumer straight from the stream, or skipped, and never buffered.
"""

import struct
from dataclasses import dataclass
from typing import Iterator

from .Errors import MalformedArchive, NotANarArchive, Truncated

NAR_MAGIC = b"nix-archive-1"
CHUNK_SIZE = 128 * 1024  # 128 KB
# Names and symlink targets are short; refuse to allocate for anything bigger.
MAX_TOKEN_LENGTH = 64 * 1024

_U64 = struct.Struct("<Q")


def padding(length: int) -> int:
    """Number of zero bytes that follow `length` bytes of token data."""
    return (8 - length % 8) % 8


@dataclass(frozen=True, slots=True)
class DirectoryStart:
    pass


@dataclass(frozen=True, slots=True)
class DirectoryEnd:
    pass


@dataclass(frozen=True, slots=True)
class Member:
    name: str


@dataclass(frozen=True, slots=True)
class FileHeader:
    executable: bool
    size: int


@dataclass(frozen=True, slots=True)
class Symlink:
    target: str


EntryEvent = DirectoryStart | DirectoryEnd | Member | FileHeader | Symlink


def _decode(value: bytes) -> str:
    return value.decode("utf-8", errors="surrogateescape")


class TokenReader:
    """Reads NAR wire primitives from a binary stream.

    The reader never reads ahead: after each call the underlying stream is
    positioned exactly after the bytes that call consumed.

    Attributes:
        stream: Source with a `readinto` method.
        offset (int): Number of bytes consumed so far.
        max_token_length (int): Largest token `read_token` accepts.
    """

    def __init__(self, stream, max_token_length: int = MAX_TOKEN_LENGTH):
        self.stream = stream
        self.offset = 0
        self.max_token_length = max_token_length
        self._scratch: memoryview | None = None

    def read_exact(self, n: int) -> bytes:
        """Read exactly `n` bytes.

        Raises:
            Truncated: If the stream ends first.
        """
        if n == 0:
            return b""
        buf = bytearray(n)
        view = memoryview(buf)
        got = 0
        while got < n:
            count = self.stream.readinto(view[got:])
            if not count:
                raise Truncated(
                    f"archive ended at byte {self.offset + got}, {n - got} more bytes expected"
                )
            got += count
        self.offset += n
        return bytes(buf)

    def skip(self, n: int):
        """Discard `n` bytes through a fixed scratch buffer."""
        if self._scratch is None:
            self._scratch = memoryview(bytearray(CHUNK_SIZE))
        while n > 0:
            count = self.stream.readinto(self._scratch[:min(n, CHUNK_SIZE)])
            if not count:
                raise Truncated(f"archive ended at byte {self.offset}, {n} more bytes expected")
            self.offset += count
            n -= count

    def read_uint64(self) -> int:
        return _U64.unpack(self.read_exact(8))[0]

    def read_token(self) -> bytes:
        """Read one length-prefixed, padded string.

        Padding bytes are consumed but not checked.

        Raises:
            Truncated: If the stream ends inside the token.
            MalformedArchive: If the declared length exceeds `max_token_length`.
        """
        length = self.read_uint64()
        if length > self.max_token_length:
            raise MalformedArchive(
                f"token of {length} bytes at byte {self.offset - 8} exceeds the {self.max_token_length} byte limit"
            )
        data = self.read_exact(length)
        self.skip(padding(length))
        return data

    def skip_content_stream(self, size: int):
        """Advance past a `size` byte content block and its padding."""
        self.skip(size + padding(size))


@dataclass(slots=True)
class _DirectoryFrame:
    last_name: bytes | None = None


class NarDecoder:
    """Pull-based decoder producing the entry events of one NAR stream.

    Iterate `events()` once. Whenever it yields a `FileHeader`, the file's
    bytes are next on the wire and can be consumed with `read_content`,
    `copy_content` or `skip_content` before asking for the next event.
    Whatever is left unread at that point is skipped automatically.

    Directory nesting is tracked with an explicit list of frames, so
    arbitrarily deep archives never hit the interpreter's recursion limit.

    Attributes:
        reader (TokenReader): The token source.
        strict_order (bool): Reject sibling names that are not strictly
            increasing, as canonical NARs require.
    """

    def __init__(self, stream, *, strict_order: bool = False, max_token_length: int = MAX_TOKEN_LENGTH):
        if isinstance(stream, TokenReader):
            self.reader = stream
        else:
            self.reader = TokenReader(stream, max_token_length=max_token_length)
        self.strict_order = strict_order
        self._started = False
        self._in_content = False
        self._content_size = 0
        self._remaining = 0

    def __iter__(self) -> Iterator[EntryEvent]:
        return self.events()

    # Content access for the current FileHeader.

    @property
    def remaining(self) -> int:
        """Unread bytes of the current file's content."""
        return self._remaining

    def read_content(self, n: int = -1) -> bytes:
        """Read up to `n` bytes (all remaining if negative) of the current file."""
        if not self._in_content or not self._remaining:
            return b""
        if n < 0 or n > self._remaining:
            n = self._remaining
        data = self.reader.read_exact(n)
        self._remaining -= n
        return data

    def copy_content(self, sink, progress_callback=None, chunk_size: int = CHUNK_SIZE) -> int:
        """Write the rest of the current file to `sink`; returns the byte count.

        The trailing padding is left on the wire, so nothing past the file's
        padded block is ever read by a copy.
        """
        written = 0
        while chunk := self.read_content(chunk_size):
            sink.write(chunk)
            written += len(chunk)
            if progress_callback:
                progress_callback(len(chunk))
        return written

    def skip_content(self):
        """Discard the rest of the current file, padding included."""
        if not self._in_content:
            return
        if self._remaining == self._content_size:
            self.reader.skip_content_stream(self._content_size)
        else:
            self.reader.skip(self._remaining)
            self.reader.skip(padding(self._content_size))
        self._remaining = 0
        self._in_content = False

    # Grammar.

    def _expect(self, keyword: bytes, where: str):
        token = self.reader.read_token()
        if token != keyword:
            raise MalformedArchive(
                f"expected {keyword.decode()!r} {where}, got {token[:64]!r} (byte {self.reader.offset})"
            )

    def _read_magic(self):
        length = self.reader.read_uint64()
        if length != len(NAR_MAGIC):
            raise NotANarArchive("stream does not start with the NAR magic")
        magic = self.reader.read_exact(length)
        if magic != NAR_MAGIC:
            raise NotANarArchive(f"bad NAR magic {magic!r}")
        self.reader.skip(padding(length))

    def _check_name(self, name: bytes, frame: _DirectoryFrame):
        if not name or name in (b".", b"..") or b"/" in name or b"\0" in name:
            raise MalformedArchive(f"invalid entry name {name!r} (byte {self.reader.offset})")
        if self.strict_order and frame.last_name is not None and name <= frame.last_name:
            raise MalformedArchive(f"entry {name!r} is not sorted after {frame.last_name!r}")
        frame.last_name = name

    def _read_regular(self) -> FileHeader:
        executable = False
        token = self.reader.read_token()
        if token == b"executable":
            self._expect(b"", "after 'executable'")
            executable = True
            token = self.reader.read_token()
        if token != b"contents":
            raise MalformedArchive(f"expected 'contents', got {token[:64]!r} (byte {self.reader.offset})")
        size = self.reader.read_uint64()
        self._in_content = True
        self._content_size = size
        self._remaining = size
        return FileHeader(executable=executable, size=size)

    def events(self) -> Iterator[EntryEvent]:
        """Yield the entry events of the archive in wire order.

        Raises:
            NotANarArchive: If the magic token is wrong.
            MalformedArchive: If a token breaks the grammar.
            Truncated: If the stream ends early.
        """
        if self._started:
            raise RuntimeError("a NarDecoder can only be iterated once")
        self._started = True

        self._read_magic()
        self._expect(b"(", "after the magic")
        stack: list[_DirectoryFrame] = []

        while True:
            # Positioned just after the '(' opening a node.
            self._expect(b"type", "at the start of a node")
            kind = self.reader.read_token()
            if kind == b"regular":
                yield self._read_regular()
                self.skip_content()
                self._expect(b")", "after file contents")
            elif kind == b"symlink":
                self._expect(b"target", "in a symlink node")
                target = self.reader.read_token()
                self._expect(b")", "after the symlink target")
                yield Symlink(target=_decode(target))
            elif kind == b"directory":
                stack.append(_DirectoryFrame())
                yield DirectoryStart()
            else:
                raise MalformedArchive(f"unknown node type {kind[:64]!r}")

            if kind != b"directory":
                if not stack:
                    return
                self._expect(b")", "to close the entry")

            # Find the next entry of the innermost open directory.
            while True:
                token = self.reader.read_token()
                if token == b")":
                    stack.pop()
                    yield DirectoryEnd()
                    if not stack:
                        return
                    self._expect(b")", "to close the entry")
                    continue
                if token != b"entry":
                    raise MalformedArchive(
                        f"expected 'entry' or ')' in a directory, got {token[:64]!r} (byte {self.reader.offset})"
                    )
                self._expect(b"(", "after 'entry'")
                self._expect(b"name", "in an entry")
                name = self.reader.read_token()
                self._check_name(name, stack[-1])
                self._expect(b"node", "after the entry name")
                self._expect(b"(", "after 'node'")
                yield Member(name=_decode(name))
                break
