import io

import pytest

from narextract.Cache import NarInfo
from narextract.Errors import NotFound


class CountingStream(io.BytesIO):
    """BytesIO that remembers how far it has been read and how often it was closed."""

    def __init__(self, data: bytes, on_read=None):
        super().__init__(data)
        self.high_water = 0
        self.close_calls = 0
        self.on_read = on_read

    def readinto(self, b):
        if self.on_read:
            self.on_read()
        n = super().readinto(b)
        self.high_water = max(self.high_water, self.tell())
        return n

    def read(self, size=-1):
        if self.on_read:
            self.on_read()
        data = super().read(size)
        self.high_water = max(self.high_water, self.tell())
        return data

    def close(self):
        self.close_calls += 1
        super().close()


class FakeCache:
    """In-memory binary cache: store hash -> (NarInfo, compressed NAR bytes)."""

    def __init__(self):
        self.narinfos = {}
        self.nars = {}
        self.opened = []
        self.on_read = None

    def add(self, store_path: str, data: bytes, compression: str = "none"):
        store_hash = store_path.rsplit("/", 1)[-1].split("-", 1)[0]
        url = f"nar/{store_hash}.nar"
        self.narinfos[store_hash] = NarInfo(store_path=store_path, url=url, compression=compression,
                                           file_size=len(data))
        self.nars[url] = data

    def get_narinfo(self, store_hash):
        try:
            return self.narinfos[store_hash]
        except KeyError:
            raise NotFound(store_hash) from None

    def open_nar(self, url, progress_callback=None):
        stream = CountingStream(self.nars[url], on_read=self.on_read)
        self.opened.append(stream)
        return stream


class FakeLookup:
    def __init__(self, paths: dict):
        self.paths = paths

    def latest_output_path(self, job, output="out"):
        try:
            return self.paths[(job, output)]
        except KeyError:
            raise NotFound(job) from None


@pytest.fixture
def fake_cache():
    return FakeCache()
