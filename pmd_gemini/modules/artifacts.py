"""
PMD-Gemini Service - Scan Artifacts

Each scan writes the submitted source to its own temp file, named
``<uuid>-<filename>`` so concurrent requests never share a path, and removes
it once the analyzer step is over, whatever the outcome.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiofiles
import aiofiles.os
from loguru import logger

from .errors import IOFailure


def artifact_path(root: Path, name_hint: str) -> Path:
    return Path(root) / f"{uuid.uuid4().hex}-{name_hint}"


async def create_artifact(content: str, name_hint: str, root: Path) -> Path:
    """Write ``content`` to a fresh unique path under ``root``."""
    path = artifact_path(root, name_hint)
    try:
        await aiofiles.os.makedirs(str(root), exist_ok=True)
        # "x" mode: never reuse an existing file.
        async with aiofiles.open(path, "x", encoding="utf-8") as f:
            await f.write(content)
    except OSError as e:
        logger.error(f"Failed to create scan artifact {path}: {e}")
        # A partial write may have left the file behind.
        await destroy_artifact(path)
        raise IOFailure(f"Failed to create temporary file: {e.strerror or e}", str(e)) from e

    logger.info(f"Created temporary file: {path}")
    return path


async def destroy_artifact(path: Path) -> None:
    """Remove the artifact. Failures are logged, never raised."""
    try:
        await aiofiles.os.remove(str(path))
    except FileNotFoundError:
        logger.debug(f"Temporary file already gone: {path}")
        return
    except OSError as e:
        logger.warning(f"Failed to remove temporary file {path}: {e}")
        return

    logger.info(f"Cleaned up temporary file: {path}")


@asynccontextmanager
async def scan_artifact(content: str, name_hint: str, root: Path) -> AsyncIterator[Path]:
    path = await create_artifact(content, name_hint, root)
    try:
        yield path
    finally:
        await destroy_artifact(path)
