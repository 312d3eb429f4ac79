"""
File access

The pipeline never touches dialogs or the filesystem directly. Inputs arrive
as LoadedFileHandle values (name + bytes + origin) and output goes through a
FileAccessProvider's ``write``.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Protocol

from ..errors import FileAccessError

logger = logging.getLogger(__name__)


class FileOrigin(Enum):
    DISK = "disk"        # read from a path by a provider
    MEMORY = "memory"    # bytes handed over directly (upload, MCP payload, tests)


@dataclass(frozen=True)
class LoadedFileHandle:
    """A file whose contents are already in memory"""
    name: str
    content_bytes: bytes
    origin: FileOrigin = FileOrigin.MEMORY
    path: Optional[str] = None

    @property
    def extension(self) -> str:
        return Path(self.name).suffix.lower()

    @property
    def stem(self) -> str:
        return Path(self.name).stem

    @property
    def label(self) -> str:
        """Name up to the first dot; used as the clip name for animation sources"""
        return Path(self.name).name.split('.')[0]


class WriteStatus(Enum):
    SUCCESS = "success"
    CANCELLED = "cancelled"
    FAILURE = "failure"


@dataclass
class WriteResult:
    status: WriteStatus
    path: Optional[str] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is WriteStatus.SUCCESS


class FileAccessProvider(Protocol):
    def list_loaded(self, paths: Iterable[str]) -> List[LoadedFileHandle]:
        ...

    def write(self, data: bytes, suggested_name: str) -> WriteResult:
        ...


class LocalFileProvider:
    """
    Reads and writes plain files.

    Args:
        output_dir: Where ``write`` puts files (default: ANIMERGE_OUTPUT_DIR or cwd)
        overwrite: If False, writing over an existing file is cancelled
    """

    def __init__(self, output_dir: Optional[str] = None, overwrite: bool = True):
        self.output_dir = output_dir or os.getenv("ANIMERGE_OUTPUT_DIR") or os.getcwd()
        self.overwrite = overwrite

    def read(self, path: str) -> LoadedFileHandle:
        """
        Read one file.

        Raises:
            FileAccessError: With a message naming the file
        """
        try:
            with open(path, 'rb') as f:
                data = f.read()
        except FileNotFoundError as e:
            raise FileAccessError(f"File not found: {path}", asset=os.path.basename(path)) from e
        except PermissionError as e:
            raise FileAccessError(
                f"Permission denied. Please check file permissions for: {path}",
                asset=os.path.basename(path),
            ) from e
        except OSError as e:
            raise FileAccessError(f"Failed to read file: {e}", asset=os.path.basename(path)) from e

        logger.info(f"File loaded: {os.path.basename(path)} ({len(data)} bytes)")
        return LoadedFileHandle(os.path.basename(path), data, FileOrigin.DISK, os.path.abspath(path))

    def list_loaded(self, paths: Iterable[str]) -> List[LoadedFileHandle]:
        """Read every readable path; unreadable ones are logged and skipped"""
        handles = []
        for path in paths:
            try:
                handles.append(self.read(path))
            except FileAccessError as e:
                logger.error(str(e))
        return handles

    def write(self, data: bytes, suggested_name: str) -> WriteResult:
        if not suggested_name:
            return WriteResult(WriteStatus.CANCELLED, reason="No file name given")

        path = os.path.join(self.output_dir, suggested_name)
        if os.path.exists(path) and not self.overwrite:
            return WriteResult(WriteStatus.CANCELLED, path=path, reason=f"File exists: {path}")

        try:
            os.makedirs(self.output_dir, exist_ok=True)
            with open(path, 'wb') as f:
                f.write(data)
        except PermissionError:
            reason = f"Permission denied. Please check file permissions for: {path}"
            logger.error(reason)
            return WriteResult(WriteStatus.FAILURE, path=path, reason=reason)
        except OSError as e:
            reason = f"Failed to write file: {e}"
            logger.error(reason)
            return WriteResult(WriteStatus.FAILURE, path=path, reason=reason)

        logger.info(f"Wrote {len(data)} bytes to {path}")
        return WriteResult(WriteStatus.SUCCESS, path=os.path.abspath(path))
