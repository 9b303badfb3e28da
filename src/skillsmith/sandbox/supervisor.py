"""Spawn child processes under a timeout and guarantee they are torn down."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import tempfile
import time
from pathlib import Path
from typing import IO, AsyncIterator, Mapping, Optional, Sequence, Tuple

from skillsmith.agent.state import ExecutionOutcome
from skillsmith.exceptions import SandboxError
from skillsmith.sandbox.sanitizer import check_argv

logger = logging.getLogger(__name__)

_POSIX = os.name == "posix"
_SIGKILL = getattr(signal, "SIGKILL", signal.SIGTERM)
_TRUNCATION_MARKER = "\n[output truncated]"


def _read_capped(handle: IO[bytes], limit: int) -> str:
    handle.flush()
    handle.seek(0)
    data = handle.read(limit + 1)
    text = data[:limit].decode("utf-8", errors="replace")
    if len(data) > limit:
        text += _TRUNCATION_MARKER
    return text


class ProcessSupervisor:
    """Run one command at a time with a wall-clock bound.

    Each child is started in its own session, so it leads a fresh process
    group. Teardown signals the whole group: descendants forked by an
    interpreter die with the child. On platforms without process groups
    only the direct child can be killed.

    Output goes to anonymous temporary files rather than pipes, so waiting
    tracks the child itself: a background descendant that inherited stdout
    cannot hold the wait open past the child's exit.
    """

    def __init__(self, *, grace_period: float = 5.0, max_output_bytes: int = 64 * 1024):
        self.grace_period = grace_period
        self.max_output_bytes = max_output_bytes

    async def run(
        self,
        argv: Sequence[str],
        *,
        timeout: float,
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> ExecutionOutcome:
        command = check_argv(argv)
        started = time.perf_counter()
        timed_out = False

        with tempfile.TemporaryFile() as stdout, tempfile.TemporaryFile() as stderr:
            async with self.spawn(command, cwd=cwd, env=env, stdout=stdout, stderr=stderr) as proc:
                try:
                    await asyncio.wait_for(proc.wait(), timeout=timeout)
                except asyncio.TimeoutError:
                    timed_out = True
                    logger.warning("Command timed out after %.1fs: %s", timeout, " ".join(command))
                    await self.terminate(proc)

            wall_time = time.perf_counter() - started
            return ExecutionOutcome(
                exit_status=None if timed_out else proc.returncode,
                stdout=_read_capped(stdout, self.max_output_bytes),
                stderr=_read_capped(stderr, self.max_output_bytes),
                wall_time=wall_time,
                timed_out=timed_out,
                command=command,
            )

    @contextlib.asynccontextmanager
    async def spawn(
        self,
        argv: Tuple[str, ...],
        *,
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        stdout: Optional[IO[bytes]] = None,
        stderr: Optional[IO[bytes]] = None,
    ) -> AsyncIterator[asyncio.subprocess.Process]:
        """Start ``argv`` and reap it (and its group) on every exit path."""

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd) if cwd else None,
                env=dict(env) if env is not None else None,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=stdout if stdout is not None else asyncio.subprocess.DEVNULL,
                stderr=stderr if stderr is not None else asyncio.subprocess.DEVNULL,
                start_new_session=_POSIX,
            )
        except (FileNotFoundError, PermissionError, NotADirectoryError) as exc:
            raise SandboxError(f"Failed to spawn {argv[0]!r}: {exc}") from exc

        logger.debug("Spawned pid %s: %s", proc.pid, " ".join(argv))
        try:
            yield proc
        finally:
            if proc.returncode is None:
                await asyncio.shield(self.terminate(proc))
            else:
                # The leader is gone; sweep anything it left in its group.
                self._signal_group(proc, _SIGKILL)

    async def terminate(self, proc: asyncio.subprocess.Process) -> None:
        """SIGTERM the group, then SIGKILL once the grace period runs out."""

        if proc.returncode is None:
            self._signal_group(proc, signal.SIGTERM)
            try:
                await asyncio.wait_for(proc.wait(), timeout=self.grace_period)
            except asyncio.TimeoutError:
                logger.debug("pid %s ignored SIGTERM; sending SIGKILL", proc.pid)
        self._signal_group(proc, _SIGKILL)
        if proc.returncode is None:
            try:
                await asyncio.wait_for(proc.wait(), timeout=max(self.grace_period, 1.0))
            except asyncio.TimeoutError:
                logger.error("pid %s survived SIGKILL; giving up on reaping it", proc.pid)

    @staticmethod
    def _signal_group(proc: asyncio.subprocess.Process, sig: int) -> None:
        if _POSIX:
            try:
                os.killpg(proc.pid, sig)
            except ProcessLookupError:
                pass
            except PermissionError:
                logger.warning("Not permitted to signal process group %s", proc.pid)
            return
        if proc.returncode is None:
            logger.warning("No process groups on this platform; killing pid %s only", proc.pid)
            with contextlib.suppress(ProcessLookupError):
                proc.kill()


__all__ = ["ProcessSupervisor"]
