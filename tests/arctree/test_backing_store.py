import io
import threading
import time

import pytest

from arctree.backing_store import BackingStore
from arctree.exceptions import (
    ArchiveClosedError,
    ArchiveEOFError,
    ArchiveIOError,
    ArchiveNotSupportedError,
)

DATA = bytes(range(256)) * 40


@pytest.fixture
def store():
    s = BackingStore(io.BytesIO(DATA), archive_path="memory.bin")
    yield s
    s.close()


def test_size_and_read_at(store):
    assert store.size == len(DATA)
    assert store.read_at(10, 5) == DATA[10:15]
    assert store.read_at(len(DATA) - 3, 10) == DATA[-3:]
    assert store.read_at(len(DATA), 10) == b""
    assert store.read_at(0, 0) == b""


def test_readers_are_independent(store):
    a = store.open_range(100, 50)
    b = store.open_range(100, 50)
    assert a.read(10) == DATA[100:110]
    assert b.read(20) == DATA[100:120]
    assert a.read(10) == DATA[110:120]
    assert a.tell() == 20
    assert b.tell() == 20


def test_reader_is_bounded(store):
    reader = store.open_range(1000, 100)
    assert reader.length == 100
    assert reader.read() == DATA[1000:1100]
    assert reader.read() == b""

    reader.seek(-10, io.SEEK_END)
    assert reader.read(100) == DATA[1090:1100]
    reader.seek(5)
    reader.seek(5, io.SEEK_CUR)
    assert reader.read(1) == DATA[1010:1011]
    with pytest.raises(ValueError):
        reader.seek(-1)


def test_reader_works_with_buffered_reader(store):
    with io.BufferedReader(store.open_range(0, 1000), buffer_size=64) as f:
        assert f.read(100) == DATA[:100]
        assert f.readinto(bytearray(10)) == 10


def test_range_past_end(store):
    with pytest.raises(ArchiveEOFError):
        store.open_range(len(DATA) - 10, 20)


def test_close_invalidates_readers(store):
    reader = store.open_range(0, 100)
    store.close()
    assert store.closed
    with pytest.raises(ArchiveClosedError, match="memory.bin"):
        store.read_at(0, 1)
    with pytest.raises(ArchiveClosedError):
        store.open_range(0, 1)
    assert reader.closed
    # Closing twice is fine
    store.close()


def test_caller_stream_is_not_closed():
    stream = io.BytesIO(DATA)
    store = BackingStore(stream)
    store.close()
    assert not stream.closed


def test_file_path(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(DATA)
    store = BackingStore(path)
    assert store.archive_path == str(path)
    assert store.open_all().read() == DATA
    store.close()


def test_missing_file(tmp_path):
    with pytest.raises(ArchiveIOError):
        BackingStore(tmp_path / "missing.bin")


def test_nonseekable_stream():
    class Pipe(io.BytesIO):
        def seekable(self):
            return False

    with pytest.raises(ArchiveNotSupportedError):
        BackingStore(Pipe(DATA))


def test_concurrent_readers(store):
    errors = []

    def worker(start: int):
        try:
            reader = store.open_range(start, 2000)
            expected = DATA[start : start + 2000]
            for i in range(0, 2000, 7):
                reader.seek(i)
                assert reader.read(7) == expected[i : i + 7]
        except Exception as e:  # noqa: BLE001
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n * 500,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert not errors


class SlowSeekFile(io.FileIO):
    """File whose seeks stall, so that a close can arrive mid-read."""

    def __init__(self, path, started: threading.Event):
        super().__init__(path, "rb")
        self.started = started

    def seek(self, *args):
        self.started.set()
        time.sleep(0.2)
        return super().seek(*args)


def test_close_during_read(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(DATA)
    store = BackingStore(str(path))
    started = threading.Event()
    store._file.close()
    store._file = SlowSeekFile(str(path), started)

    results: list[object] = []

    def read():
        try:
            results.append(store.read_at(100, 20))
        except Exception as e:  # noqa: BLE001
            results.append(e)

    reader = threading.Thread(target=read)
    reader.start()
    assert started.wait(5)
    closer = threading.Thread(target=store.close)
    closer.start()
    reader.join()
    closer.join()

    # The read that was already running completes; later ones see the close
    assert results == [DATA[100:120]]
    assert store.closed
    with pytest.raises(ArchiveClosedError):
        store.read_at(100, 20)
