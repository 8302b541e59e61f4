"""Filesystem capability interface and its pyarrow-backed implementation.

``StorageHandler`` is what the rest of the indexer uses to read mapping
files and domain declarations, list directories and move files around.
``ArrowStorageHandler`` resolves a fresh ``pyarrow.fs.FileSystem`` for every
call, so ``hdfs://``, ``s3://``, ``file://`` URIs and plain local paths all
work through the same methods and no handle is shared between threads.
"""

import logging
import os
import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import pyarrow.fs as pafs

from search_indexer.errors import StorageDecodeError, StorageNotFoundError

logger = logging.getLogger(__name__)

# HDFS default (dfs.blocksize).
DEFAULT_BLOCK_SIZE = 128 * 1024 * 1024


@dataclass(frozen=True)
class ContentSummary:
    """Aggregate size and counts under a path."""
    length: int
    file_count: int
    directory_count: int

    @property
    def space_consumed(self) -> int:
        return self.length


class StorageHandler(ABC):
    """Interface required by any filesystem manager."""

    @abstractmethod
    def move(self, src: str, dst: str) -> bool:
        pass

    @abstractmethod
    def delete(self, path: str) -> bool:
        pass

    @abstractmethod
    def exist(self, path: str) -> bool:
        pass

    @abstractmethod
    def mkdirs(self, path: str) -> bool:
        pass

    @abstractmethod
    def copy_from_local(self, source: str, dest: str) -> None:
        pass

    @abstractmethod
    def move_from_local(self, source: str, dest: str) -> None:
        pass

    @abstractmethod
    def read(self, path: str) -> str:
        pass

    @abstractmethod
    def write(self, data: str, path: str) -> None:
        pass

    @abstractmethod
    def list(self, path: str, extension: str = "", since: datetime = datetime.min) -> list[str]:
        pass

    @abstractmethod
    def block_size(self, path: str) -> int:
        pass

    @abstractmethod
    def content_summary(self, path: str) -> ContentSummary:
        pass

    @abstractmethod
    def last_modified(self, path: str) -> int:
        pass

    def space_consumed(self, path: str) -> int:
        return self.content_summary(path).space_consumed


def _is_uri(path: str) -> bool:
    return "://" in path


def resolve_filesystem(path: str) -> tuple[pafs.FileSystem, str]:
    """Filesystem and in-filesystem path for a URI or a local path."""
    path = str(path)
    if _is_uri(path):
        return pafs.FileSystem.from_uri(path)
    return pafs.LocalFileSystem(), os.path.abspath(os.path.expanduser(path))


def _mtime_after(mtime_ns: int, since: datetime) -> bool:
    if since.tzinfo is not None:
        modified = datetime.fromtimestamp(mtime_ns / 1e9, tz=timezone.utc)
    else:
        # Naive bounds are local wall-clock times.
        modified = datetime.fromtimestamp(mtime_ns / 1e9)
    return modified > since


class ArrowStorageHandler(StorageHandler):
    """StorageHandler over ``pyarrow.fs``.

    Args:
        filesystem_factory: Optional zero-argument callable returning the
            filesystem to use. When omitted the filesystem is inferred from
            each path (URI scheme, or the local filesystem for plain paths).
        default_block_size: Value reported by ``block_size``.
    """

    def __init__(
        self,
        filesystem_factory: Optional[Callable[[], pafs.FileSystem]] = None,
        default_block_size: int = DEFAULT_BLOCK_SIZE,
    ) -> None:
        self._filesystem_factory = filesystem_factory
        self.default_block_size = default_block_size

    def _resolve(self, path: str) -> tuple[pafs.FileSystem, str]:
        path = str(path)
        if self._filesystem_factory is not None:
            return self._filesystem_factory(), path
        return resolve_filesystem(path)

    def _info(self, filesystem: pafs.FileSystem, fs_path: str, path: str) -> pafs.FileInfo:
        info = filesystem.get_file_info(fs_path)
        if info.type == pafs.FileType.NotFound:
            raise StorageNotFoundError(path)
        return info

    @staticmethod
    def _caller_path(original: str, fs_path: str, entry_path: str) -> str:
        # Hand back URIs when the caller passed one.
        if not _is_uri(original):
            return entry_path
        trimmed = original.rstrip("/")
        base = fs_path.rstrip("/")
        if base and trimmed.endswith(base):
            return trimmed[: len(trimmed) - len(base)] + entry_path
        return entry_path

    def read(self, path: str) -> str:
        """Read a UTF-8 text file into a string.

        Args:
            path: Absolute file path or filesystem URI.

        Returns:
            str: File content.
        """
        filesystem, fs_path = self._resolve(path)
        self._info(filesystem, fs_path, path)
        with filesystem.open_input_stream(fs_path) as stream:
            raw = stream.read()
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise StorageDecodeError(path, str(e)) from e

    def write(self, data: str, path: str) -> None:
        """Write a string to a UTF-8 text file, replacing any existing file."""
        filesystem, fs_path = self._resolve(path)
        existing = filesystem.get_file_info(fs_path)
        if existing.type == pafs.FileType.File:
            filesystem.delete_file(fs_path)
        parent = posixpath.dirname(fs_path.rstrip("/"))
        if parent:
            filesystem.create_dir(parent, recursive=True)
        with filesystem.open_output_stream(fs_path) as stream:
            stream.write(data.encode("utf-8"))

    def list(self, path: str, extension: str = "", since: datetime = datetime.min) -> list[str]:
        """List files under a folder, recursively.

        Args:
            path: Absolute folder path.
            extension: Files should end with this string. Empty lists all files.
            since: Only files modified strictly after this time are returned.

        Returns:
            list[str]: Matching file paths.
        """
        filesystem, fs_path = self._resolve(path)
        self._info(filesystem, fs_path, path)
        selector = pafs.FileSelector(fs_path, recursive=True)
        matches: list[str] = []
        for entry in filesystem.get_file_info(selector):
            if entry.type != pafs.FileType.File:
                continue
            if not entry.base_name.endswith(extension):
                continue
            if entry.mtime_ns is None or not _mtime_after(entry.mtime_ns, since):
                continue
            matches.append(self._caller_path(path, fs_path, entry.path))
        return matches

    def move(self, src: str, dst: str) -> bool:
        """Move a file or folder: copy to the destination, then delete the source."""
        src_fs, src_path = self._resolve(src)
        dst_fs, dst_path = self._resolve(dst)
        source_info = self._info(src_fs, src_path, src)
        parent = posixpath.dirname(dst_path.rstrip("/"))
        if parent:
            dst_fs.create_dir(parent, recursive=True)
        pafs.copy_files(
            src_path,
            dst_path,
            source_filesystem=src_fs,
            destination_filesystem=dst_fs,
        )
        if source_info.type == pafs.FileType.Directory:
            src_fs.delete_dir(src_path)
        else:
            src_fs.delete_file(src_path)
        logger.debug(f"Moved {src} to {dst}")
        return True

    def delete(self, path: str) -> bool:
        """Delete a file or folder recursively. There is no trash."""
        filesystem, fs_path = self._resolve(path)
        info = filesystem.get_file_info(fs_path)
        if info.type == pafs.FileType.NotFound:
            return False
        if info.type == pafs.FileType.Directory:
            filesystem.delete_dir(fs_path)
        else:
            filesystem.delete_file(fs_path)
        return True

    def mkdirs(self, path: str) -> bool:
        """Create a folder including any missing intermediate folder."""
        filesystem, fs_path = self._resolve(path)
        filesystem.create_dir(fs_path, recursive=True)
        return True

    def copy_from_local(self, source: str, dest: str) -> None:
        """Copy a file from the local filesystem to the target filesystem."""
        local_path = os.path.abspath(os.path.expanduser(str(source)))
        if not os.path.exists(local_path):
            raise FileNotFoundError(f"Local source not found: {source}")
        dst_fs, dst_path = self._resolve(dest)
        parent = posixpath.dirname(dst_path.rstrip("/"))
        if parent:
            dst_fs.create_dir(parent, recursive=True)
        pafs.copy_files(
            local_path,
            dst_path,
            source_filesystem=pafs.LocalFileSystem(),
            destination_filesystem=dst_fs,
        )

    def move_from_local(self, source: str, dest: str) -> None:
        """Move a file from the local filesystem to the target filesystem."""
        self.copy_from_local(source, dest)
        local = pafs.LocalFileSystem()
        local_path = os.path.abspath(os.path.expanduser(str(source)))
        if os.path.isdir(local_path):
            local.delete_dir(local_path)
        else:
            local.delete_file(local_path)

    def exist(self, path: str) -> bool:
        filesystem, fs_path = self._resolve(path)
        return filesystem.get_file_info(fs_path).type != pafs.FileType.NotFound

    def block_size(self, path: str) -> int:
        filesystem, fs_path = self._resolve(path)
        self._info(filesystem, fs_path, path)
        return self.default_block_size

    def content_summary(self, path: str) -> ContentSummary:
        filesystem, fs_path = self._resolve(path)
        info = self._info(filesystem, fs_path, path)
        if info.type == pafs.FileType.File:
            return ContentSummary(length=info.size or 0, file_count=1, directory_count=0)

        length = 0
        file_count = 0
        directory_count = 1
        for entry in filesystem.get_file_info(pafs.FileSelector(fs_path, recursive=True)):
            if entry.type == pafs.FileType.Directory:
                directory_count += 1
            elif entry.type == pafs.FileType.File:
                file_count += 1
                length += entry.size or 0
        return ContentSummary(
            length=length,
            file_count=file_count,
            directory_count=directory_count,
        )

    def last_modified(self, path: str) -> int:
        """Modification time in epoch milliseconds."""
        filesystem, fs_path = self._resolve(path)
        info = self._info(filesystem, fs_path, path)
        return (info.mtime_ns or 0) // 1_000_000
