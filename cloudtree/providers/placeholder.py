"""
Placeholder records that stand in for files that are not available locally.

When the sync agent evicts a file to free up space, or learns about a new file that
it hasn't downloaded yet, the file itself is absent from the tree. Instead there is a
hidden placeholder next to where it would be, so ".report.pdf.cloudtree" stands in
for "report.pdf". The placeholder records the size and modification time of the real
file, which lets the file be listed and fingerprinted without downloading it.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
import os
from typing import Optional

import msgpack

from cloudtree.constants import PLACEHOLDER_SUFFIX


@dataclass
class Placeholder:
    """Metadata of a file that has not been downloaded."""

    name: str
    size: int
    mtime_ns: int


def pack_placeholder(placeholder: Placeholder) -> bytes:
    """Serialize a placeholder as a MessagePack map of its fields."""
    return msgpack.packb(dataclasses.asdict(placeholder))


def unpack_placeholder(data: bytes) -> Placeholder:
    """Deserialize a placeholder, raising ValueError if it is malformed."""
    try:
        fields = msgpack.unpackb(data)
    except (TypeError, ValueError) as e:
        raise ValueError(f"malformed placeholder: {e}") from e

    if not isinstance(fields, dict) or fields.keys() != {"name", "size", "mtime_ns"}:
        raise ValueError(f"malformed placeholder: {fields!r}")

    name, size, mtime_ns = fields["name"], fields["size"], fields["mtime_ns"]

    if not isinstance(name, str) or not name:
        raise ValueError(f"placeholder has an invalid name: {name!r}")
    elif not isinstance(size, int) or size < 0:
        raise ValueError(f"placeholder has an invalid size: {size!r}")
    elif not isinstance(mtime_ns, int):
        raise ValueError(f"placeholder has an invalid mtime: {mtime_ns!r}")

    return Placeholder(name=name, size=size, mtime_ns=mtime_ns)


def placeholder_location(location: str) -> str:
    """Return where the placeholder for the file at a location is stored."""
    directory, name = os.path.split(location)
    return os.path.join(directory, f".{name}{PLACEHOLDER_SUFFIX}")


def placeholder_name(name: str) -> Optional[str]:
    """Return the name of the file a placeholder stands in for, if name is one."""
    if name.startswith(".") and name.endswith(PLACEHOLDER_SUFFIX):
        original = name[1 : -len(PLACEHOLDER_SUFFIX)]
        return original or None
    else:
        return None


def read_placeholder(location: str) -> Placeholder:
    """Read the placeholder stored at a location."""
    with open(location, "rb") as f:
        return unpack_placeholder(f.read())


def write_placeholder(location: str, placeholder: Placeholder) -> None:
    """Write a placeholder to a location."""
    with open(location, "wb") as f:
        f.write(pack_placeholder(placeholder))
