import asyncio
import os

import pytest

from cloudtree import CloudDrive, Config
from cloudtree.errors import (
    AlreadyExistsError,
    InvalidPathError,
    NotFoundError,
    TypeMismatchError,
)
from cloudtree.path import RootRelativePath


def path(string):
    return RootRelativePath.from_string(string)


async def eventually(predicate, timeout=10):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


def test_root_location(provider, tmp_path):
    drive = CloudDrive(provider)

    assert drive.root_location == str(tmp_path / "containers" / "Default")

    drive = CloudDrive(provider, container="Photos", subdirectory=path("Trips/2020"))

    assert drive.root_location == str(
        tmp_path / "containers" / "Photos" / "Trips" / "2020"
    )


@pytest.mark.asyncio
async def test_start_creates_root(provider):
    async with CloudDrive(provider, subdirectory=path("Notes")) as drive:
        assert os.path.isdir(drive.root_location)
        assert drive.is_connected
        assert await drive.directory_exists(RootRelativePath.root)


@pytest.mark.asyncio
async def test_not_running(provider):
    drive = CloudDrive(provider)

    with pytest.raises(RuntimeError):
        await drive.read_file(path("a.txt"))

    await drive.start()
    await drive.write_file(b"abc", path("a.txt"))
    await drive.close()
    await drive.close()

    with pytest.raises(RuntimeError):
        await drive.file_exists(path("a.txt"))


@pytest.mark.asyncio
async def test_directories(provider):
    async with CloudDrive(provider) as drive:
        await drive.create_directory(path("Images/Sub"))

        assert await drive.directory_exists(path("Images"))
        assert await drive.directory_exists(path("Images/Sub"))
        assert not await drive.file_exists(path("Images"))
        assert not await drive.directory_exists(path("Videos"))

        await drive.create_directory(path("Images"))

        await drive.remove_directory(path("Images"))

        assert not await drive.directory_exists(path("Images"))

        with pytest.raises(NotFoundError):
            await drive.remove_directory(path("Images"))


@pytest.mark.asyncio
async def test_files(provider):
    async with CloudDrive(provider) as drive:
        a = path("a.txt")

        await drive.write_file(b"abc", a)

        assert await drive.file_exists(a)
        assert not await drive.directory_exists(a)
        assert await drive.read_file(a) == b"abc"

        with pytest.raises(AlreadyExistsError):
            await drive.write_file(b"xyz", a, overwrite=False)

        assert await drive.read_file(a) == b"abc"

        await drive.write_file(b"xyz", a)

        assert await drive.read_file(a) == b"xyz"

        await drive.remove_file(a)

        assert not await drive.file_exists(a)

        with pytest.raises(NotFoundError):
            await drive.read_file(a)


@pytest.mark.asyncio
async def test_removal_kind_mismatch(provider):
    async with CloudDrive(provider) as drive:
        await drive.create_directory(path("dir"))
        await drive.write_file(b"abc", path("a.txt"))

        with pytest.raises(TypeMismatchError):
            await drive.remove_file(path("dir"))

        with pytest.raises(TypeMismatchError):
            await drive.remove_directory(path("a.txt"))

        assert await drive.directory_exists(path("dir"))
        assert await drive.file_exists(path("a.txt"))


@pytest.mark.asyncio
async def test_contents_of_directory(provider):
    async with CloudDrive(provider) as drive:
        await drive.write_file(b"b", path("Docs/b.txt"))
        await drive.write_file(b"a", path("Docs/a.txt"))
        await drive.create_directory(path("Docs/c"))

        assert await drive.contents_of_directory(path("Docs")) == [
            path("Docs/a.txt"),
            path("Docs/b.txt"),
            path("Docs/c"),
        ]

        assert await drive.contents_of_directory(path("Docs/c")) == []

        with pytest.raises(TypeMismatchError):
            await drive.contents_of_directory(path("Docs/a.txt"))


@pytest.mark.asyncio
async def test_update_file(provider):
    async with CloudDrive(provider) as drive:
        a = path("a.txt")

        await drive.write_file(b"1", a)

        def increment(location):
            with open(location, "rb") as f:
                value = int(f.read())

            with open(location, "wb") as f:
                f.write(str(value + 1).encode())

        await asyncio.gather(*(drive.update_file(a, increment) for _ in range(10)))

        assert await drive.read_file(a) == b"11"


@pytest.mark.asyncio
async def test_update_file_failure(provider):
    async with CloudDrive(provider) as drive:
        a = path("a.txt")

        await drive.write_file(b"abc", a)

        def fail(location):
            with open(location, "wb") as f:
                f.write(b"partial")

            raise ValueError("invalid contents")

        with pytest.raises(ValueError, match="invalid contents"):
            await drive.update_file(a, fail)

        assert await drive.read_file(a) == b"abc"
        assert os.listdir(drive.root_location) == ["a.txt"]


@pytest.mark.asyncio
async def test_upload(provider, tmp_path):
    source = tmp_path / "external.txt"
    source.write_bytes(b"external")

    async with CloudDrive(provider) as drive:
        await drive.upload(str(source), path("Uploads/new.txt"))

        assert await drive.read_file(path("Uploads/new.txt")) == b"external"

        await drive.write_file(b"abc", path("a.txt"))

        with pytest.raises(AlreadyExistsError):
            await drive.upload(str(source), path("a.txt"))

        assert await drive.read_file(path("a.txt")) == b"abc"

        with pytest.raises(NotFoundError):
            await drive.upload(str(tmp_path / "missing.txt"), path("b.txt"))

        assert not await drive.file_exists(path("b.txt"))


@pytest.mark.asyncio
async def test_download(provider, tmp_path):
    async with CloudDrive(provider) as drive:
        await drive.write_file(b"abc", path("a.txt"))
        await drive.download(path("a.txt"), str(tmp_path / "out.txt"))

        assert (tmp_path / "out.txt").read_bytes() == b"abc"

        with pytest.raises(NotFoundError):
            await drive.download(path("missing.txt"), str(tmp_path / "other.txt"))


@pytest.mark.asyncio
async def test_evicted_file(provider):
    async with CloudDrive(provider) as drive:
        a = path("a.txt")

        await drive.write_file(b"abc", a)
        await provider.evict(a.absolute(drive.root_location))

        assert await drive.file_exists(a)
        assert await drive.contents_of_directory(RootRelativePath.root) == [a]
        assert await drive.read_file(a) == b"abc"


@pytest.mark.asyncio
async def test_concurrent_writes(provider):
    async with CloudDrive(provider) as drive:
        a = path("a.bin")

        payloads = [bytes([i]) * (256 * 1024) for i in range(4)]

        await asyncio.gather(*(drive.write_file(p, a) for p in payloads))

        assert await drive.read_file(a) in payloads
        assert provider.lock_count == 0


@pytest.mark.asyncio
async def test_from_config(tmp_path):
    config = Config()
    config.drive.path = str(tmp_path / "drive")
    config.drive.store_path = str(tmp_path / "store")
    config.drive.container = "Docs"
    config.drive.subdirectory = "Notes"
    config.coordination.lock_path = str(tmp_path / "locks")

    drive = await CloudDrive.from_config(config)

    try:
        assert drive.root_location == str(tmp_path / "drive" / "Docs" / "Notes")
        assert os.path.isdir(drive.root_location)
    finally:
        await drive.close()


@pytest.mark.asyncio
async def test_health_observer(provider, monkeypatch):
    async def changes(root_location, stop_event):
        yield provider.enumerate(root_location)
        raise OSError("feed broke")

    monkeypatch.setattr(provider, "changes", changes)

    config = Config()
    config.monitor.restart_delay = 0.01

    failures = []

    async with CloudDrive(provider, config=config) as drive:
        handle = drive.add_health_observer(failures.append)
        await eventually(lambda: len(failures) >= 1)

        drive.remove_health_observer(handle)

    assert "feed broke" in str(failures[0].error)


@pytest.mark.asyncio
async def test_update_file_failure_removes_new_directories(provider):
    async with CloudDrive(provider) as drive:

        def fail(location):
            raise ValueError("invalid contents")

        with pytest.raises(ValueError):
            await drive.update_file(path("new/deep/a.txt"), fail)

        assert not await drive.directory_exists(path("new"))
        assert await drive.contents_of_directory(RootRelativePath.root) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("name", [".notes.cloudtree", "notes.cloudtree-tmp"])
async def test_reserved_names(provider, tmp_path, name):
    source = tmp_path / "external.txt"
    source.write_bytes(b"external")

    async with CloudDrive(provider) as drive:
        with pytest.raises(InvalidPathError):
            await drive.write_file(b"user data", path(name))

        with pytest.raises(InvalidPathError):
            await drive.update_file(path(name), lambda location: None)

        with pytest.raises(InvalidPathError):
            await drive.upload(str(source), path(name))

        with pytest.raises(InvalidPathError):
            await drive.create_directory(path(f"{name}/sub"))

        assert not await drive.file_exists(path("notes"))
        assert await drive.contents_of_directory(RootRelativePath.root) == []


@pytest.mark.asyncio
async def test_names_resembling_reserved_ones(provider):
    async with CloudDrive(provider) as drive:
        for name in ["notes.cloudtree", ".cloudtree", ".notes.cloudtree.txt"]:
            await drive.write_file(b"abc", path(name))

            assert await drive.read_file(path(name)) == b"abc"


@pytest.mark.watch
@pytest.mark.asyncio
async def test_observer(provider):
    async with CloudDrive(provider) as drive:
        batches = []
        drive.add_observer(batches.append)

        await drive.write_file(b"abc", path("Docs/a.txt"))
        await eventually(lambda: path("Docs/a.txt") in set().union(*batches))

        assert path("Docs") in set().union(*batches)


@pytest.mark.watch
@pytest.mark.asyncio
async def test_observer_registration(provider):
    async with CloudDrive(provider) as drive:
        early = []
        handle = drive.add_observer(early.append)

        await drive.write_file(b"abc", path("a.txt"))
        await eventually(lambda: len(early) > 0)

        # Nothing is replayed to observers that register late
        late = []
        drive.add_observer(late.append)
        drive.remove_observer(handle)

        await asyncio.sleep(0.5)
        assert late == []

        count = len(early)

        await drive.write_file(b"def", path("b.txt"))
        await eventually(lambda: path("b.txt") in set().union(*late))

        assert len(early) == count
