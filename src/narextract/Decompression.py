"""Decompression front-end.

Wraps a raw byte source with the decoder named by a binary cache's
`Compression` label and exposes the result as a plain pull-based stream.
The label is validated before anything touches the source, so an unknown
codec never costs a network read.
"""

import bz2
import gzip
import io
import lzma
from enum import StrEnum

import zstandard

from .Errors import Cancelled, MalformedArchive, Truncated, UnsupportedCodec

# Spellings seen in the wild mapped to the canonical label.
_ALIASES = {
    "": "none",
    "bz2": "bzip2",
    "gz": "gzip",
    "zst": "zstd",
}


class CodecLabel(StrEnum):
    NONE = "none"
    BZIP2 = "bzip2"
    XZ = "xz"
    GZIP = "gzip"
    ZSTD = "zstd"

    @classmethod
    def parse(cls, label: "str | CodecLabel | None") -> "CodecLabel":
        """Resolve a narinfo `Compression` value to a CodecLabel.

        Raises:
            UnsupportedCodec: If the label names a codec we cannot decode.
        """
        if isinstance(label, CodecLabel):
            return label
        value = (label or "").strip().lower()
        value = _ALIASES.get(value, value)
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedCodec(label) from None


def _bzip2(raw):
    return bz2.BZ2File(raw, mode="rb")


def _xz(raw):
    return lzma.LZMAFile(raw, mode="rb", format=lzma.FORMAT_XZ)


def _gzip(raw):
    return gzip.GzipFile(fileobj=raw, mode="rb")


def _zstd(raw):
    return zstandard.ZstdDecompressor().stream_reader(raw, closefd=False, read_across_frames=True)


_DECODERS = {
    CodecLabel.NONE: None,
    CodecLabel.BZIP2: _bzip2,
    CodecLabel.XZ: _xz,
    CodecLabel.GZIP: _gzip,
    CodecLabel.ZSTD: _zstd,
}


class DecompressedStream(io.RawIOBase):
    """Read-only stream of the decompressed bytes of `raw`.

    The stream owns `raw`: closing it closes the codec decoder and then the
    raw source, exactly once. Reading after `raw` has been closed by someone
    else (a caller abandoning the download) raises `Cancelled`.

    Attributes:
        raw: The compressed byte source.
        label (CodecLabel): The codec in use.
    """

    def __init__(self, raw, label: CodecLabel):
        self.raw = raw
        self.label = label
        factory = _DECODERS[label]
        self._decoder = factory(raw) if factory else None

    def readable(self) -> bool:
        return True

    def _raw_closed(self) -> bool:
        return bool(getattr(self.raw, "closed", False))

    def readinto(self, b) -> int:
        """Fill `b` with decompressed bytes; returns 0 at end of stream.

        Raises:
            Cancelled: If this stream or the raw source was closed.
            Truncated: If the compressed stream ends mid-frame.
            MalformedArchive: If the compressed data is corrupt.
        """
        if self.closed or self._raw_closed():
            raise Cancelled("archive stream was closed")
        source = self._decoder if self._decoder is not None else self.raw
        try:
            return source.readinto(b)
        except Cancelled:
            raise
        except EOFError as e:
            raise Truncated(f"{self.label} stream ended before the end of its last frame") from e
        except (lzma.LZMAError, zstandard.ZstdError) as e:
            raise MalformedArchive(f"corrupt {self.label} data: {e}") from e
        except ValueError as e:
            # Reading a closed file object raises ValueError.
            if self._raw_closed():
                raise Cancelled("archive stream was closed") from e
            raise
        except OSError as e:
            # bz2 and gzip report bad data as OSError without an errno.
            if self._decoder is not None and e.errno is None:
                raise MalformedArchive(f"corrupt {self.label} data: {e}") from e
            raise

    def close(self):
        if self.closed:
            return
        try:
            if self._decoder is not None:
                self._decoder.close()
        finally:
            self.raw.close()
            super().close()


def open_decompressed(raw, label: "str | CodecLabel | None") -> DecompressedStream:
    """Wrap `raw` with the decoder for `label`.

    Args:
        raw: Binary file-like object with the compressed bytes.
        label: Codec label, e.g. "none", "bzip2", "xz".

    Returns:
        DecompressedStream: Stream of decompressed bytes; closing it closes `raw`.

    Raises:
        UnsupportedCodec: Before anything is read from `raw`.
    """
    codec = CodecLabel.parse(label)
    return DecompressedStream(raw, codec)
