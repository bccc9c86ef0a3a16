"""
PMD-Gemini Service - Scan Pipeline

validate -> write artifact -> run analyzer -> remove artifact -> normalize
"""

from __future__ import annotations

import time
from pathlib import PurePosixPath, PureWindowsPath
from typing import List, Optional

from loguru import logger

from .artifacts import scan_artifact
from .config import ServiceConfig
from .errors import ValidationFailure
from .normalizer import normalize
from .process_runner import invoke
from .schemas import Violation

REQUIRED_FIELDS_MESSAGE = "Both 'filename' and 'source' fields are required"


def sanitize_filename(filename: str) -> str:
    """Keep only the final path component of a caller-supplied name."""
    name = PureWindowsPath(PurePosixPath(filename.strip()).name).name
    if not name or name in (".", "..") or "\x00" in name:
        raise ValidationFailure(
            f"Invalid filename: {filename!r}",
            "filename must name a file, not a directory or path",
        )
    return name


def validate_scan_request(
    filename: Optional[str],
    source: Optional[str],
    max_chars: int,
) -> str:
    """Check a /run body and return the sanitized filename."""
    if not filename or not filename.strip() or not source:
        raise ValidationFailure(REQUIRED_FIELDS_MESSAGE)

    if len(source) > max_chars:
        raise ValidationFailure(
            f"Source exceeds maximum size of {max_chars} characters",
            f"source has {len(source)} characters; limit is {max_chars}",
        )

    return sanitize_filename(filename)


async def run_scan(filename: Optional[str], source: Optional[str], config: ServiceConfig) -> List[Violation]:
    """Run one analyzer pass over ``source`` and return its violations."""
    safe_name = validate_scan_request(filename, source, config.max_source_chars)

    start = time.monotonic()
    logger.info(f"Running PMD scan on {safe_name} ({len(source)} chars)...")

    async with scan_artifact(source, safe_name, config.artifact_dir) as path:
        raw_output = await invoke(
            [*config.analyzer_command, str(path)],
            deadline_seconds=config.scan_timeout_seconds,
            max_output_bytes=config.max_output_bytes,
        )

    violations = normalize(raw_output)
    elapsed_ms = int((time.monotonic() - start) * 1000)
    logger.info(f"Code Analyzer scan completed in {elapsed_ms}ms - found {len(violations)} issues")
    return violations
