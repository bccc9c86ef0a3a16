"""
PMD-Gemini Service - Bounded Process Runner

Runs the external analyzer as a subprocess under a hard wall-clock deadline.

The process and a deadline timer run as two asyncio tasks; whichever finishes
first decides the outcome:
- process exits 0      -> captured stdout is returned, timer cancelled
- process exits != 0   -> ProcessFailure with stderr as detail
- timer fires first    -> TimeoutFailure, process killed, its output discarded

Whatever happens (including cancellation of the caller), neither the
subprocess nor the timer outlives ``invoke``.
"""

from __future__ import annotations

import asyncio
import shutil
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from loguru import logger

from .errors import ProcessFailure, TimeoutFailure

READ_CHUNK_BYTES = 64 * 1024


@dataclass(frozen=True)
class ProcessOutput:
    exit_code: int
    stdout: bytes
    stderr: bytes


class _OutputLimitExceeded(Exception):
    def __init__(self, stream_name: str, limit: int):
        super().__init__(f"{stream_name} exceeded {limit} bytes")
        self.stream_name = stream_name
        self.limit = limit


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


async def _read_capped(stream: Optional[asyncio.StreamReader], limit: int, name: str) -> bytes:
    if stream is None:
        return b""
    buf = bytearray()
    while True:
        chunk = await stream.read(READ_CHUNK_BYTES)
        if not chunk:
            return bytes(buf)
        buf.extend(chunk)
        if len(buf) > limit:
            raise _OutputLimitExceeded(name, limit)


def _terminate(proc: asyncio.subprocess.Process) -> None:
    """Best-effort kill; the event loop's child watcher reaps the process."""
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        pass


async def _collect(proc: asyncio.subprocess.Process, max_output_bytes: int) -> ProcessOutput:
    stdout, stderr = await asyncio.gather(
        _read_capped(proc.stdout, max_output_bytes, "stdout"),
        _read_capped(proc.stderr, max_output_bytes, "stderr"),
    )
    exit_code = await proc.wait()
    return ProcessOutput(exit_code=exit_code, stdout=stdout, stderr=stderr)


async def _launch(argv: Sequence[str]) -> asyncio.subprocess.Process:
    binary = argv[0]
    try:
        return await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise ProcessFailure(
            f"Static analysis tool not found: {binary}",
            str(e),
            kind=ProcessFailure.TOOL_MISSING,
        ) from e
    except OSError as e:
        raise ProcessFailure(
            f"Failed to launch static analysis tool: {binary}",
            str(e),
            kind=ProcessFailure.LAUNCH_ERROR,
        ) from e


def _failure_from_output(binary: str, output: ProcessOutput) -> ProcessFailure:
    stderr = _decode(output.stderr).strip()
    detail = stderr or _decode(output.stdout).strip() or f"{binary} exited with status {output.exit_code}"
    first_line = detail.splitlines()[0] if detail else ""
    return ProcessFailure(
        f"PMD scan failed: {first_line}",
        detail,
        kind=ProcessFailure.NONZERO_EXIT,
        exit_code=output.exit_code,
    )


async def invoke(
    argv: Sequence[str],
    *,
    deadline_seconds: float,
    max_output_bytes: int = 10_000_000,
) -> str:
    """Run ``argv`` and return its stdout, racing it against ``deadline_seconds``.

    Raises:
        ProcessFailure: launch error, missing binary, non-zero exit, output over cap
        TimeoutFailure: the deadline elapsed first
    """
    if not argv:
        raise ProcessFailure("No analyzer command configured", kind=ProcessFailure.LAUNCH_ERROR)

    binary = argv[0]
    start = time.monotonic()
    proc = await _launch(argv)
    logger.debug(f"Started {binary} (pid={proc.pid}) with deadline {deadline_seconds}s")

    collector = asyncio.ensure_future(_collect(proc, max_output_bytes))
    timer = asyncio.ensure_future(asyncio.sleep(deadline_seconds))

    try:
        done, _pending = await asyncio.wait({collector, timer}, return_when=asyncio.FIRST_COMPLETED)

        if collector not in done:
            logger.error(f"{binary} exceeded deadline of {deadline_seconds}s (pid={proc.pid}); killing")
            raise TimeoutFailure(
                f"PMD scan timed out after {deadline_seconds:g}s; "
                "the submitted source may be too large or complex",
                f"Process {binary} did not finish within {deadline_seconds:g} seconds",
                deadline_seconds=deadline_seconds,
            )

        try:
            output = collector.result()
        except _OutputLimitExceeded as e:
            logger.error(f"{binary} output exceeded limit: {e}")
            raise ProcessFailure(
                f"PMD scan output exceeded {e.limit} bytes",
                str(e),
                kind=ProcessFailure.OUTPUT_LIMIT,
            ) from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if output.exit_code != 0:
            failure = _failure_from_output(binary, output)
            logger.error(f"{binary} exited with status {output.exit_code} after {elapsed_ms}ms: {failure.details}")
            raise failure

        logger.debug(f"{binary} finished in {elapsed_ms}ms ({len(output.stdout)} bytes of output)")
        return _decode(output.stdout)

    finally:
        timer.cancel()
        if not collector.done():
            collector.cancel()
        _terminate(proc)


def probe_tool(binary: str) -> str:
    """Free-text availability of ``binary`` for the health endpoint."""
    location = shutil.which(binary)
    if location:
        return f"available ({location})"
    return f"not found on PATH ({binary})"
