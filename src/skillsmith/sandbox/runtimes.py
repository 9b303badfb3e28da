"""Registry of the languages a probe can be written in."""

from __future__ import annotations

import os
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from skillsmith.exceptions import SandboxError

CONTAINER_WORKDIR = "/workspace"
CONTAINER_SOURCE_DIR = "/package"


@dataclass(frozen=True)
class RuntimeSpec(ABC):
    """How to install dependencies for, and run, a probe in one language."""

    name: str
    file_name: str
    fence_tags: Tuple[str, ...]

    @abstractmethod
    def container_command(self, dependencies: Sequence[str], install_source: str = "registry") -> List[str]:
        """argv run inside the container image, from the working directory."""

    def container_env(self, install_source: str) -> Dict[str, str]:
        return {}

    @abstractmethod
    def local_install_command(
        self, workdir: Path, dependencies: Sequence[str], source_path: Optional[str] = None
    ) -> Optional[List[str]]:
        """argv installing ``dependencies`` on the host, or ``None`` when there is nothing to install."""

    @abstractmethod
    def local_run_command(self, workdir: Path) -> List[str]:
        ...

    def local_setup_command(self, workdir: Path) -> Optional[List[str]]:
        return None

    @abstractmethod
    def version_command(self) -> List[str]:
        ...


class PythonRuntime(RuntimeSpec):
    """Probes declare their dependencies in a PEP 723 header and run under ``uv``."""

    def container_command(self, dependencies: Sequence[str], install_source: str = "registry") -> List[str]:
        if install_source == "local-install":
            return ["uv", "run", "--with", CONTAINER_SOURCE_DIR, self.file_name]
        return ["uv", "run", self.file_name]

    def container_env(self, install_source: str) -> Dict[str, str]:
        if install_source == "local-mount":
            return {"PYTHONPATH": CONTAINER_SOURCE_DIR}
        return {}

    @staticmethod
    def venv_dir(workdir: Path) -> Path:
        return workdir / ".venv"

    def _venv_bin(self, workdir: Path, program: str) -> str:
        scripts = "Scripts" if os.name == "nt" else "bin"
        return str(self.venv_dir(workdir) / scripts / program)

    def local_setup_command(self, workdir: Path) -> Optional[List[str]]:
        return [sys.executable, "-m", "venv", str(self.venv_dir(workdir))]

    def local_install_command(
        self, workdir: Path, dependencies: Sequence[str], source_path: Optional[str] = None
    ) -> Optional[List[str]]:
        packages = list(dependencies)
        if source_path:
            packages.append(source_path)
        if not packages:
            return None
        return [self._venv_bin(workdir, "python"), "-m", "pip", "install", "--quiet", "--", *packages]

    def local_run_command(self, workdir: Path) -> List[str]:
        return [self._venv_bin(workdir, "python"), self.file_name]

    def version_command(self) -> List[str]:
        return [sys.executable, "--version"]


class JavaScriptRuntime(RuntimeSpec):
    """Probes are plain Node scripts; dependencies are installed with npm."""

    def container_command(self, dependencies: Sequence[str], install_source: str = "registry") -> List[str]:
        packages = list(dependencies)
        if install_source != "registry":
            packages.append(CONTAINER_SOURCE_DIR)
        if not packages:
            return ["node", self.file_name]
        # Package names travel as positional parameters, never inside the script text.
        script = f'npm install --no-save --no-audit --no-fund -- "$@" && exec node {self.file_name}'
        return ["sh", "-c", script, "sh", *packages]

    def local_install_command(
        self, workdir: Path, dependencies: Sequence[str], source_path: Optional[str] = None
    ) -> Optional[List[str]]:
        packages = list(dependencies)
        if source_path:
            packages.append(source_path)
        if not packages:
            return None
        return ["npm", "install", "--no-save", "--no-audit", "--no-fund", "--", *packages]

    def local_run_command(self, workdir: Path) -> List[str]:
        return ["node", self.file_name]

    def version_command(self) -> List[str]:
        return ["node", "--version"]


RUNTIMES: Dict[str, RuntimeSpec] = {
    "python": PythonRuntime(name="python", file_name="test.py", fence_tags=("python", "py")),
    "javascript": JavaScriptRuntime(
        name="javascript", file_name="test.js", fence_tags=("javascript", "js", "node")
    ),
}

_ALIASES = {"py": "python", "pypi": "python", "js": "javascript", "node": "javascript", "npm": "javascript"}


def normalize_runtime(name: str) -> str:
    key = (name or "").strip().lower()
    return _ALIASES.get(key, key)


def get_runtime(name: str) -> RuntimeSpec:
    try:
        return RUNTIMES[normalize_runtime(name)]
    except KeyError as exc:
        raise SandboxError(f"Unsupported probe runtime: {name!r}") from exc


__all__ = [
    "CONTAINER_SOURCE_DIR",
    "CONTAINER_WORKDIR",
    "JavaScriptRuntime",
    "PythonRuntime",
    "RUNTIMES",
    "RuntimeSpec",
    "get_runtime",
    "normalize_runtime",
]
