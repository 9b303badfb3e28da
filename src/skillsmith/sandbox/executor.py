"""Run generated probes in a container or, on explicit opt-in, on the host."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Set

from skillsmith.agent.state import ExecutionOutcome, Probe
from skillsmith.config.settings import ContainerSettings
from skillsmith.exceptions import RuntimeUnavailable, SandboxError
from skillsmith.sandbox.runtimes import (
    CONTAINER_SOURCE_DIR,
    CONTAINER_WORKDIR,
    RuntimeSpec,
    get_runtime,
)
from skillsmith.sandbox.sanitizer import (
    sanitize_container_name,
    sanitize_dependencies,
    sanitize_env_key,
    sanitize_path_component,
    sanitize_runtime,
)
from skillsmith.sandbox.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

_VERSION_TIMEOUT = 15.0
_TEARDOWN_TIMEOUT = 30.0
_HOST_ENV_PASSTHROUGH = ("PATH", "HOME", "LANG", "LC_ALL", "TMPDIR", "SYSTEMROOT", "USERPROFILE")


class ContainerStrategy:
    """``<runtime> run --rm`` per probe, always followed by ``<runtime> rm -f``."""

    def __init__(self, settings: ContainerSettings, supervisor: ProcessSupervisor):
        self.settings = settings
        self.supervisor = supervisor
        self.engine = sanitize_runtime(settings.runtime)
        self._available = False

    async def ensure_available(self, runtime: RuntimeSpec) -> None:
        if self._available:
            return
        try:
            outcome = await self.supervisor.run([self.engine, "--version"], timeout=_VERSION_TIMEOUT)
        except SandboxError as exc:
            raise RuntimeUnavailable(f"Container runtime '{self.engine}' is not available: {exc}") from exc
        if not outcome.passed:
            raise RuntimeUnavailable(
                f"Container runtime '{self.engine}' is not usable: "
                f"{(outcome.stderr or outcome.stdout).strip() or 'no output'}"
            )
        logger.info("Using container runtime: %s", outcome.stdout.strip() or self.engine)
        self._available = True

    def build_command(
        self,
        runtime: RuntimeSpec,
        workdir: Path,
        name: str,
        dependencies: List[str],
    ) -> List[str]:
        settings = self.settings
        argv = [self.engine, "run", "--rm", "--name", sanitize_container_name(name)]
        argv += ["--security-opt", "no-new-privileges"]
        if not settings.network:
            argv += ["--network", "none"]
        argv += ["-v", f"{workdir}:{CONTAINER_WORKDIR}", "-w", CONTAINER_WORKDIR]
        if settings.install_source != "registry":
            if not settings.source_path:
                raise SandboxError(f"install_source={settings.install_source} requires container.source_path")
            source = Path(settings.source_path).expanduser().resolve()
            argv += ["-v", f"{source}:{CONTAINER_SOURCE_DIR}:ro"]

        env: Dict[str, str] = dict(runtime.container_env(settings.install_source))
        env.update(settings.extra_env)
        for key, value in sorted(env.items()):
            argv += ["-e", f"{sanitize_env_key(key)}={value}"]

        argv.append(settings.image_for(runtime.name))
        argv += runtime.container_command(dependencies, settings.install_source)
        return argv

    async def run(self, probe: Probe, runtime: RuntimeSpec, workdir: Path, dependencies: List[str]) -> ExecutionOutcome:
        name = f"skillsmith-probe-{uuid.uuid4().hex[:12]}"
        argv = self.build_command(runtime, workdir, name, dependencies)
        timeout = self.settings.container_timeout(bool(dependencies))
        try:
            return await self.supervisor.run(argv, timeout=timeout)
        finally:
            await asyncio.shield(self._remove(name))

    async def _remove(self, name: str) -> None:
        try:
            outcome = await self.supervisor.run([self.engine, "rm", "-f", name], timeout=_TEARDOWN_TIMEOUT)
        except SandboxError:
            logger.exception("Failed to remove container %s", name)
            return
        if not outcome.passed:
            # --rm usually got there first.
            logger.debug("%s rm -f %s: %s", self.engine, name, outcome.stderr.strip())


class LocalStrategy:
    """Ephemeral environment on the host. Only used when configured explicitly."""

    def __init__(self, settings: ContainerSettings, supervisor: ProcessSupervisor):
        self.settings = settings
        self.supervisor = supervisor
        self._checked: Set[str] = set()

    async def ensure_available(self, runtime: RuntimeSpec) -> None:
        if runtime.name in self._checked:
            return
        try:
            outcome = await self.supervisor.run(runtime.version_command(), timeout=_VERSION_TIMEOUT)
        except SandboxError as exc:
            raise RuntimeUnavailable(f"Local {runtime.name} runtime is not available: {exc}") from exc
        if not outcome.passed:
            raise RuntimeUnavailable(f"Local {runtime.name} runtime is not usable: {outcome.stderr.strip()}")
        self._checked.add(runtime.name)

    def _environment(self, runtime: RuntimeSpec) -> Dict[str, str]:
        env = {key: os.environ[key] for key in _HOST_ENV_PASSTHROUGH if key in os.environ}
        if self.settings.install_source == "local-mount" and self.settings.source_path and runtime.name == "python":
            env["PYTHONPATH"] = str(Path(self.settings.source_path).expanduser().resolve())
        for key, value in self.settings.extra_env.items():
            env[sanitize_env_key(key)] = value
        return env

    async def run(self, probe: Probe, runtime: RuntimeSpec, workdir: Path, dependencies: List[str]) -> ExecutionOutcome:
        settings = self.settings
        env = self._environment(runtime)

        setup = runtime.local_setup_command(workdir)
        if setup:
            outcome = await self.supervisor.run(setup, timeout=settings.install_timeout, cwd=workdir, env=env)
            if not outcome.passed:
                return outcome

        source_path = None
        if settings.install_source == "local-install" and settings.source_path:
            source_path = str(Path(settings.source_path).expanduser().resolve())
        install = runtime.local_install_command(workdir, dependencies, source_path)
        if install:
            outcome = await self.supervisor.run(install, timeout=settings.install_timeout, cwd=workdir, env=env)
            if not outcome.passed:
                return outcome

        return await self.supervisor.run(
            runtime.local_run_command(workdir), timeout=settings.timeout, cwd=workdir, env=env
        )


class SandboxExecutor:
    """Execute one probe at a time in a fresh working directory."""

    def __init__(self, settings: ContainerSettings, supervisor: Optional[ProcessSupervisor] = None):
        self.settings = settings
        self.supervisor = supervisor or ProcessSupervisor(
            grace_period=settings.grace_period,
            max_output_bytes=settings.max_output_bytes,
        )
        if settings.strategy == "local":
            logger.warning("Local execution strategy enabled: probes run directly on this host")
            self.strategy = LocalStrategy(settings, self.supervisor)
        else:
            self.strategy = ContainerStrategy(settings, self.supervisor)

    async def check_available(self, runtime_name: str) -> None:
        """Raise ``RuntimeUnavailable`` if probes for ``runtime_name`` cannot run."""
        await self.strategy.ensure_available(get_runtime(sanitize_runtime(runtime_name)))

    async def execute(self, probe: Probe) -> ExecutionOutcome:
        runtime = get_runtime(sanitize_runtime(probe.runtime))
        dependencies = list(sanitize_dependencies(probe.dependencies))
        file_name = sanitize_path_component(runtime.file_name)

        await self.strategy.ensure_available(runtime)

        workdir = self._make_workdir()
        try:
            (workdir / file_name).write_text(probe.source, encoding="utf-8")
            logger.debug("Running probe %r in %s", probe.pattern_name, workdir)
            outcome = await self.strategy.run(probe, runtime, workdir, dependencies)
        finally:
            if self.settings.keep_workdirs:
                logger.info("Kept probe working directory for %r: %s", probe.pattern_name, workdir)
            else:
                shutil.rmtree(workdir, ignore_errors=True)

        if outcome.timed_out:
            logger.warning("Probe %r timed out after %.1fs", probe.pattern_name, outcome.wall_time)
        return outcome

    def _make_workdir(self) -> Path:
        root = self.settings.workdir_root
        if root:
            Path(root).mkdir(parents=True, exist_ok=True)
        try:
            path = tempfile.mkdtemp(prefix="skillsmith-probe-", dir=root)
        except OSError as exc:
            raise SandboxError(f"Could not create probe working directory: {exc}") from exc
        workdir = Path(path).resolve()
        # The container user may differ from ours.
        workdir.chmod(0o755)
        return workdir


class DryRunExecutor:
    """Reports every probe as passed without spawning anything."""

    async def check_available(self, runtime_name: str) -> None:
        get_runtime(sanitize_runtime(runtime_name))

    async def execute(self, probe: Probe) -> ExecutionOutcome:
        get_runtime(sanitize_runtime(probe.runtime))
        sanitize_dependencies(probe.dependencies)
        return ExecutionOutcome(
            exit_status=0,
            stdout=f"✓ Test passed: {probe.pattern_name} (dry run)\n",
            stderr="",
            wall_time=0.0,
            command=("dry-run", probe.runtime),
        )


__all__ = ["ContainerStrategy", "DryRunExecutor", "LocalStrategy", "SandboxExecutor"]
