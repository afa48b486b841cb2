"""Exclusion rules applied identically to the local and remote trees."""

from collections.abc import Iterable
from typing import Optional

from ..utils import normalize_path


class ExclusionFilter:
    """Decides whether a relative path takes part in sync.

    A path is excluded if any rule matches:

    - it is, or lies below, an excluded folder (whole-segment match);
    - its file name ends with an excluded extension;
    - hidden files are not included and any segment starts with a dot.

    The same instance must be used for both indices; an asymmetric filter
    would make every run discover a one-sided difference.

    Examples:
        >>> f = ExclusionFilter(excluded_folders=["archive"])
        >>> f.should_exclude("archive/old.md")
        True
        >>> f.should_exclude("archived/new.md")
        False
    """

    def __init__(
        self,
        excluded_folders: Optional[Iterable[str]] = None,
        excluded_extensions: Optional[Iterable[str]] = None,
        include_hidden: bool = False,
    ):
        """Initialize exclusion filter.

        Args:
            excluded_folders: Folder prefixes relative to the tree root
            excluded_extensions: Extensions such as ".tmp" or "tar.gz"
            include_hidden: Whether dot-files and dot-folders are synced
        """
        self.excluded_folders: tuple[tuple[str, ...], ...] = tuple(
            tuple(normalized.split("/"))
            for normalized in (normalize_path(f) for f in excluded_folders or [])
            if normalized
        )
        self.excluded_extensions: tuple[str, ...] = tuple(
            ext.strip().lstrip(".").lower()
            for ext in excluded_extensions or []
            if ext.strip().lstrip(".")
        )
        self.include_hidden = include_hidden

    def should_exclude(self, path: str) -> bool:
        """Check whether a path is excluded. Pure; performs no I/O.

        Args:
            path: Path relative to the tree root

        Returns:
            True if the path must not appear in any index
        """
        segments = path.replace("\\", "/").strip("/").split("/")

        for folder in self.excluded_folders:
            if tuple(segments[: len(folder)]) == folder:
                return True

        if self.excluded_extensions:
            name = segments[-1].lower()
            for ext in self.excluded_extensions:
                if name.endswith("." + ext) and len(name) > len(ext) + 1:
                    return True

        if not self.include_hidden:
            for segment in segments:
                if segment.startswith(".") and segment != ".":
                    return True

        return False

    def __call__(self, path: str) -> bool:
        return self.should_exclude(path)
