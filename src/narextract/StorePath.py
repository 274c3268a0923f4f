"""Store path parsing.

A store path looks like ``/nix/store/<hash>-<name>[/sub/path]``. The hash
part keys the binary cache's narinfo, the name is what the original tool
searched for inside the archive, and anything below the top-level entry is
a path inside that entry's NAR.
"""

from dataclasses import dataclass

from .Config import DEFAULT_STORE_DIR
from .Errors import MalformedMetadata


@dataclass(frozen=True)
class StorePath:
    store_dir: str
    hash: str
    name: str
    relative: tuple[str, ...] = ()

    @property
    def base_name(self) -> str:
        return f"{self.hash}-{self.name}"

    def __str__(self) -> str:
        return "/".join((self.store_dir, self.base_name, *self.relative))


def parse_store_path(path: str, store_dir: str = DEFAULT_STORE_DIR) -> StorePath:
    """Split `path` into its hash, name and sub-path.

    The store directory prefix is optional; trailing slashes are ignored.

    Raises:
        MalformedMetadata: If `path` lives in another directory or its first
            component is not ``<hash>-<name>``.
    """
    store_dir = store_dir.rstrip("/")
    prefix = store_dir + "/"
    if path.startswith(prefix):
        path = path[len(prefix):]
    elif path.startswith("/"):
        raise MalformedMetadata(f"{path!r} is not inside {store_dir}")

    components = [c for c in path.split("/") if c]
    if not components:
        raise MalformedMetadata("empty store path")
    hash_, sep, name = components[0].partition("-")
    if not sep or not hash_ or not name:
        raise MalformedMetadata(f"{components[0]!r} is not of the form <hash>-<name>")
    for component in components[1:]:
        if component in (".", ".."):
            raise MalformedMetadata(f"store path {path!r} contains {component!r}")
    return StorePath(store_dir=store_dir, hash=hash_, name=name, relative=tuple(components[1:]))
