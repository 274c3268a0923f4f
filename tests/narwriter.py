"""Reference NAR writer used to build test archives.

A tree is a dict (directory), bytes or str (regular file), `Executable`
or `Link`.
"""

import struct
from dataclasses import dataclass

from narextract.NarReader import DirectoryEnd, DirectoryStart, FileHeader, Member, Symlink


@dataclass(frozen=True)
class Executable:
    data: bytes


@dataclass(frozen=True)
class Link:
    target: str


def pad(length: int) -> bytes:
    return b"\0" * ((8 - length % 8) % 8)


def token(data) -> bytes:
    if isinstance(data, str):
        data = data.encode()
    return struct.pack("<Q", len(data)) + data + pad(len(data))


def contents(data: bytes) -> bytes:
    return token(b"contents") + struct.pack("<Q", len(data)) + data + pad(len(data))


def _file(node) -> tuple[bytes, bool]:
    if isinstance(node, Executable):
        return node.data, True
    if isinstance(node, str):
        return node.encode(), False
    return node, False


def _node(node, out: list):
    out += [token("("), token("type")]
    if isinstance(node, dict):
        out.append(token("directory"))
        for name in sorted(node):
            out += [token("entry"), token("("), token("name"), token(name), token("node")]
            _node(node[name], out)
            out.append(token(")"))
    elif isinstance(node, Link):
        out += [token("symlink"), token("target"), token(node.target)]
    else:
        data, executable = _file(node)
        out.append(token("regular"))
        if executable:
            out += [token("executable"), token("")]
        out.append(contents(data))
    out.append(token(")"))


def nar(node) -> bytes:
    out = [token("nix-archive-1")]
    _node(node, out)
    return b"".join(out)


def tree(files: dict) -> dict:
    """{"a/b.txt": b"hello"} -> {"a": {"b.txt": b"hello"}}"""
    root: dict = {}
    for path, node in files.items():
        *dirs, name = path.split("/")
        current = root
        for d in dirs:
            current = current.setdefault(d, {})
        current[name] = node
    return root


def expected_events(node) -> list:
    """Events and file contents a decoder should produce for `node`."""
    if isinstance(node, dict):
        events = [DirectoryStart()]
        for name in sorted(node):
            events.append(Member(name))
            events += expected_events(node[name])
        events.append(DirectoryEnd())
        return events
    if isinstance(node, Link):
        return [Symlink(node.target)]
    data, executable = _file(node)
    return [FileHeader(executable=executable, size=len(data)), data]
