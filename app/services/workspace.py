"""
Workspace Manager - request-unique temp namespaces, clip storage and cleanup sweeps.

Every request works inside its own directory under the temp root, named by a
random id, so concurrent clips from the same source never collide. The source
file is duplicated into the workspace before any step so a cleanup sweep
cannot delete it mid-pipeline.
"""

import asyncio
import json
import logging
import os
import re
import shutil
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from app.services.errors import SegmentValidationError, SourceNotFoundError

logger = logging.getLogger(__name__)


_CLIP_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


@dataclass
class StoredClip:
    """A rendered clip moved into the clips directory."""

    clip_id: str
    file_path: str
    file_size_bytes: int


@dataclass
class SweepResult:
    """Counts of entries removed by a cleanup sweep."""

    uploads_removed: int = 0
    temp_entries_removed: int = 0
    errors: int = 0


class WorkspaceManager:
    """
    Owns the upload, temp and clip root directories.

    Output structure:
        temp/{workspace_id}/      per-request scratch (source copy, audio, .ass, clip)
        clips/{clip_id}.mp4       finished clips
        clips/{clip_id}.json      clip metadata
    """

    def __init__(self, upload_directory: str, temp_directory: str, output_directory: str):
        self.upload_directory = upload_directory
        self.temp_directory = temp_directory
        self.output_directory = output_directory
        self._active: set[str] = set()

    def ensure_directories(self) -> None:
        """Create the root directories if they don't exist."""
        for directory in (self.upload_directory, self.temp_directory, self.output_directory):
            os.makedirs(directory, exist_ok=True)
        logger.info(
            f"Workspace roots: uploads={self.upload_directory}, "
            f"temp={self.temp_directory}, clips={self.output_directory}"
        )

    @property
    def active_workspaces(self) -> frozenset[str]:
        return frozenset(self._active)

    def resolve_upload(self, filename: str) -> str:
        """Path of an uploaded source file; only plain file names are accepted."""
        if not filename or os.path.basename(filename) != filename or filename in (".", ".."):
            raise SegmentValidationError(f"Invalid filename: {filename!r}")

        path = os.path.join(self.upload_directory, filename)
        if not os.path.isfile(path):
            raise SourceNotFoundError(f"Video file not found: {filename}")
        return path

    def create(self) -> str:
        """Create and register a new request workspace."""
        path = os.path.join(self.temp_directory, uuid.uuid4().hex)
        os.makedirs(path)
        self._active.add(path)
        logger.debug(f"Created workspace {path}")
        return path

    def release(self, path: str) -> None:
        """Remove a workspace. Failures are logged, never raised."""
        self._active.discard(path)
        try:
            shutil.rmtree(path)
            logger.debug(f"Removed workspace {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove workspace {path}: {e}")

    @asynccontextmanager
    async def workspace(self) -> AsyncIterator[str]:
        """A workspace that is removed on success, failure and cancellation."""
        path = self.create()
        try:
            yield path
        finally:
            self.release(path)

    async def duplicate_source(self, source_path: str, work_dir: str) -> str:
        """Hard-link the source into the workspace, copying when linking is not possible."""
        target = os.path.join(work_dir, "source" + os.path.splitext(source_path)[1])

        def _duplicate():
            try:
                os.link(source_path, target)
            except OSError:
                shutil.copy2(source_path, target)

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, _duplicate)
        except FileNotFoundError as e:
            raise SourceNotFoundError(f"Video file not found: {source_path}") from e

        return target

    async def store_clip(
        self,
        local_path: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> StoredClip:
        """
        Move a rendered clip out of its workspace into the clips directory.

        Args:
            local_path: Path to the rendered clip inside a workspace
            metadata: Optional metadata saved alongside the clip

        Returns:
            StoredClip with the new id and path
        """
        clip_id = uuid.uuid4().hex
        output_path = os.path.join(self.output_directory, f"{clip_id}.mp4")
        os.makedirs(self.output_directory, exist_ok=True)

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: shutil.move(local_path, output_path))

        if metadata:
            metadata_path = os.path.join(self.output_directory, f"{clip_id}.json")
            with open(metadata_path, "w", encoding="utf-8") as f:
                json.dump(metadata, f, indent=2)

        file_size = os.path.getsize(output_path)
        logger.info(f"Clip saved: {output_path} ({file_size / 1024 / 1024:.1f} MB)")

        return StoredClip(clip_id=clip_id, file_path=output_path, file_size_bytes=file_size)

    def get_clip_path(self, clip_id: str) -> str:
        """Path of a stored clip."""
        if not _CLIP_ID_PATTERN.match(clip_id or ""):
            raise SegmentValidationError(f"Invalid clip id: {clip_id!r}")

        path = os.path.join(self.output_directory, f"{clip_id}.mp4")
        if not os.path.isfile(path):
            raise SourceNotFoundError(f"Clip not found: {clip_id}")
        return path

    def sweep(self, max_age_seconds: float, now: Optional[float] = None) -> SweepResult:
        """
        Remove stale uploads and orphaned temp entries.

        Uploads older than ``max_age_seconds`` are deleted. Temp entries are
        deleted unless an in-flight request holds them.
        """
        now = time.time() if now is None else now
        result = SweepResult()

        if os.path.isdir(self.upload_directory):
            for entry in os.scandir(self.upload_directory):
                try:
                    if entry.is_file() and now - entry.stat().st_mtime > max_age_seconds:
                        os.remove(entry.path)
                        result.uploads_removed += 1
                except OSError as e:
                    result.errors += 1
                    logger.warning(f"Failed to remove upload {entry.path}: {e}")

        if os.path.isdir(self.temp_directory):
            for entry in os.scandir(self.temp_directory):
                if entry.path in self._active:
                    continue
                try:
                    if entry.is_dir(follow_symlinks=False):
                        shutil.rmtree(entry.path)
                    else:
                        os.remove(entry.path)
                    result.temp_entries_removed += 1
                except OSError as e:
                    result.errors += 1
                    logger.warning(f"Failed to remove temp entry {entry.path}: {e}")

        logger.info(
            f"Cleanup sweep: {result.uploads_removed} uploads, "
            f"{result.temp_entries_removed} temp entries removed"
        )
        return result

    def remove_temp_root(self) -> None:
        """Remove the temp root at shutdown."""
        try:
            shutil.rmtree(self.temp_directory)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove temp directory {self.temp_directory}: {e}")
