"""Module defining paths that are relative to the root of a synchronized tree."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import ClassVar, Tuple

from cloudtree.errors import InvalidPathError


@dataclass(frozen=True, order=True)
class RootRelativePath:
    """
    Location of an entry in terms of its position under the root of a tree.

    A RootRelativePath never refers to an absolute location on disk, which allows the
    same value to be used regardless of where the synchronized root happens to be
    mounted. Values are always normalized: there are no "." or ".." components and no
    empty components. Equality and ordering are based on the components alone.
    """

    components: Tuple[str, ...] = ()

    root: ClassVar[RootRelativePath]

    def __post_init__(self) -> None:
        for component in self.components:
            self._check_component(component)

    @staticmethod
    def from_string(path: str) -> RootRelativePath:
        """
        Parse and normalize a "/" separated path.

        Leading separators are ignored, so "/a/b" is the same as "a/b".
        """
        components: list = []

        for component in path.split("/"):
            if component in ("", "."):
                continue
            elif component == "..":
                if not components:
                    raise InvalidPathError(f"path escapes the root: {path!r}")
                components.pop()
            else:
                components.append(component)

        return RootRelativePath(tuple(components))

    @staticmethod
    def from_absolute(root_location: str, location: str) -> RootRelativePath:
        """Translate an absolute location inside the root into a relative path."""
        root_location = os.path.normpath(root_location)
        location = os.path.normpath(location)

        if os.path.commonpath([root_location, location]) != root_location:
            raise InvalidPathError(f"{location} is not inside {root_location}")

        relative = os.path.relpath(location, root_location)

        if relative == os.curdir:
            return RootRelativePath.root

        return RootRelativePath(tuple(relative.split(os.sep)))

    @staticmethod
    def _check_component(component: str) -> None:
        if not component:
            raise InvalidPathError("path components cannot be empty")
        elif "/" in component or os.sep in component:
            raise InvalidPathError(f"path component has a separator: {component!r}")
        elif component in (".", ".."):
            raise InvalidPathError(f"path component is not a name: {component!r}")

    def appending(self, component: str) -> RootRelativePath:
        """Return a new path with the specified component added to the end."""
        self._check_component(component)
        return RootRelativePath(self.components + (component,))

    @property
    def is_root(self) -> bool:
        return not self.components

    @property
    def name(self) -> str:
        """Return the last component, or an empty string for the root."""
        return self.components[-1] if self.components else ""

    @property
    def parent(self) -> RootRelativePath:
        """Return the containing directory. The parent of the root is the root."""
        return RootRelativePath(self.components[:-1])

    def absolute(self, root_location: str) -> str:
        """Resolve this path to an absolute location under the specified root."""
        return os.path.join(root_location, *self.components)

    def __str__(self) -> str:
        return "/".join(self.components)


RootRelativePath.root = RootRelativePath()
