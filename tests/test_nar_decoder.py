import io
import struct

import pytest

from narextract.Errors import MalformedArchive, NotANarArchive, Truncated
from narextract.NarReader import DirectoryEnd, DirectoryStart, FileHeader, Member, NarDecoder, Symlink
from narwriter import Executable, Link, contents, expected_events, nar, token, tree


def decode_all(data: bytes, **kwargs) -> list:
    decoder = NarDecoder(io.BytesIO(data), **kwargs)
    events = []
    for event in decoder.events():
        events.append(event)
        if isinstance(event, FileHeader):
            events.append(decoder.read_content())
    return events


@pytest.mark.parametrize(
    "node",
    [
        b"",
        b"hello",
        Executable(b"#!/bin/sh\necho hi\n"),
        Link("../lib/libfoo.so.1"),
        {},
        tree({"a/b.txt": b"hello"}),
        tree({
            "bin/hello": Executable(b"\x7fELF" + b"\0" * 100),
            "lib/libhello.so": Link("libhello.so.1"),
            "lib/libhello.so.1": b"x" * 4097,
            "share/doc/README": "read me",
            "share/empty": {},
            "z": b"",
        }),
    ],
)
def test_round_trip(node):
    assert decode_all(nar(node)) == expected_events(node)


def test_single_file_archive_has_no_directory_events():
    assert decode_all(nar(b"abc")) == [FileHeader(executable=False, size=3), b"abc"]


def test_unread_content_is_skipped_automatically():
    node = tree({"a": b"1" * 13, "b": b"2" * 8, "c": b"3"})
    decoder = NarDecoder(io.BytesIO(nar(node)))
    names = []
    for event in decoder.events():
        if isinstance(event, Member):
            names.append(event.name)
        if isinstance(event, FileHeader) and event.size == 8:
            # Partial read; the decoder must skip the remainder.
            assert decoder.read_content(3) == b"222"
            assert decoder.remaining == 5
    assert names == ["a", "b", "c"]


def test_copy_content_reports_progress():
    decoder = NarDecoder(io.BytesIO(nar(b"y" * 300_000)))
    events = decoder.events()
    header = next(events)
    sink = io.BytesIO()
    chunks = []
    assert decoder.copy_content(sink, progress_callback=chunks.append, chunk_size=100_000) == header.size
    assert chunks == [100_000, 100_000, 100_000]
    assert sink.getvalue() == b"y" * 300_000
    assert list(events) == []


def test_events_can_only_be_iterated_once():
    decoder = NarDecoder(io.BytesIO(nar({})))
    list(decoder)
    with pytest.raises(RuntimeError):
        list(decoder.events())


def test_decoder_stops_after_root_node():
    data = nar(tree({"f": b"data"}))
    stream = io.BytesIO(data + b"trailing garbage")
    list(NarDecoder(stream).events())
    assert stream.tell() == len(data)


def test_bad_magic():
    data = token("nix-archive-2") + nar(b"")[len(token("nix-archive-1")):]
    with pytest.raises(NotANarArchive):
        list(NarDecoder(io.BytesIO(data)).events())


def test_first_eight_bytes_not_magic():
    with pytest.raises(NotANarArchive):
        list(NarDecoder(io.BytesIO(b"PK\x03\x04" + b"\0" * 60)).events())


def test_truncated_mid_length_field():
    data = nar(tree({"a/b.txt": b"hello"}))
    with pytest.raises(Truncated):
        list(NarDecoder(io.BytesIO(data[:len(token("nix-archive-1")) + 3])).events())


def test_truncated_inside_contents():
    data = nar(b"0123456789")
    with pytest.raises(Truncated):
        decode_all(data[:-25])


def test_garbage_instead_of_entry_keyword():
    data = nar(tree({"a": b"x"}))
    broken = data.replace(token("entry"), token("enrty"), 1)
    with pytest.raises(MalformedArchive):
        decode_all(broken)


def test_unknown_node_type():
    data = nar(b"x").replace(token("regular"), token("fifo"))
    with pytest.raises(MalformedArchive):
        decode_all(data)


def test_missing_contents_keyword():
    data = token("nix-archive-1") + token("(") + token("type") + token("regular") + token("size")
    with pytest.raises(MalformedArchive):
        decode_all(data)


def test_executable_marker_must_be_followed_by_empty_token():
    data = nar(Executable(b"x")).replace(token("executable") + token(""), token("executable") + token("yes"))
    with pytest.raises(MalformedArchive):
        decode_all(data)


@pytest.mark.parametrize("name", ["", ".", "..", "a/b", "nul\0byte"])
def test_invalid_entry_names(name):
    data = (
        token("nix-archive-1") + token("(") + token("type") + token("directory")
        + token("entry") + token("(") + token("name") + token(name) + token("node")
        + token("(") + token("type") + token("regular") + contents(b"") + token(")")
        + token(")") + token(")")
    )
    with pytest.raises(MalformedArchive):
        decode_all(data)


def _directory(names) -> bytes:
    out = token("nix-archive-1") + token("(") + token("type") + token("directory")
    for name in names:
        out += (token("entry") + token("(") + token("name") + token(name) + token("node")
                + token("(") + token("type") + token("regular") + contents(b"") + token(")") + token(")"))
    return out + token(")")


def test_unsorted_entries_are_preserved_by_default():
    events = decode_all(_directory(["b", "a"]))
    assert [e.name for e in events if isinstance(e, Member)] == ["b", "a"]


@pytest.mark.parametrize("names", [["b", "a"], ["a", "a"]])
def test_strict_order_rejects_unsorted_entries(names):
    with pytest.raises(MalformedArchive):
        decode_all(_directory(names), strict_order=True)


def test_deep_nesting_does_not_recurse():
    depth = 5000
    out = [token("nix-archive-1"), token("("), token("type"), token("directory")]
    for _ in range(depth):
        out += [token("entry"), token("("), token("name"), token("d"), token("node"),
                token("("), token("type"), token("directory")]
    out.append(token(")"))
    out += [token(")"), token(")")] * depth
    events = decode_all(b"".join(out))
    assert events.count(DirectoryStart()) == depth + 1
    assert events.count(DirectoryEnd()) == depth + 1
    assert events[-1] == DirectoryEnd()


def test_symlink_event():
    assert decode_all(nar(tree({"l": Link("target/path")}))) == [
        DirectoryStart(), Member("l"), Symlink("target/path"), DirectoryEnd(),
    ]


def test_contents_size_is_raw_uint64():
    data = token("nix-archive-1") + token("(") + token("type") + token("regular") + token("contents")
    data += struct.pack("<Q", 2) + b"hi" + b"\0" * 6 + token(")")
    assert decode_all(data) == [FileHeader(executable=False, size=2), b"hi"]
