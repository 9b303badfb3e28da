import os
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for path in (ROOT, SRC):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from skillsmith.agent.state import CollectedData, ExecutionOutcome, Probe
from skillsmith.config.settings import Settings, Stage
from skillsmith.exceptions import CollaboratorError

Reply = Union[str, BaseException, Callable[[str, str, Optional[str]], str]]


class FakeGenerationClient:
    """Deterministic stand-in for one stage's model.

    ``replies`` are consumed in order; the last one repeats once the script
    runs out. Exceptions in the script are raised instead of returned.
    """

    def __init__(self, replies: Union[Reply, Sequence[Reply]] = "", *, role: str = "fake"):
        if isinstance(replies, (str, BaseException)) or callable(replies):
            replies = [replies]
        self.replies = list(replies)
        self.role = role
        self.calls: List[Dict[str, Optional[str]]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def complete(self, instructions: str, input_text: str, feedback: Optional[str] = None) -> str:
        self.calls.append({"instructions": instructions, "input_text": input_text, "feedback": feedback})
        reply = self.replies[min(len(self.calls) - 1, len(self.replies) - 1)]
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            return reply(instructions, input_text, feedback)
        return reply


def probe_reply(instructions: str, input_text: str, feedback: Optional[str] = None) -> str:
    """Probe generator reply that prints the marker for whichever pattern was asked for."""
    name = input_text.splitlines()[0].partition(":")[2].strip()
    return f"```python\nprint('✓ Test passed: {name}')\n```"


def make_clients(**replies: Union[Reply, Sequence[Reply]]) -> Dict[Stage, FakeGenerationClient]:
    defaults: Dict[str, Union[Reply, Sequence[Reply]]] = {
        "api_extractor": '{"apis": []}',
        "pattern_extractor": '{"patterns": []}',
        "context_extractor": '{"conventions": []}',
        "synthesizer": "",
        "reviewer": '{"passed": true, "issues": []}',
        "probe_generator": probe_reply,
    }
    defaults.update(replies)
    return {stage: FakeGenerationClient(defaults[stage.value], role=stage.value) for stage in Stage}


class FakeExecutor:
    """Records probes and answers with scripted outcomes per pattern name."""

    def __init__(self, failing: Sequence[str] = (), outcomes: Optional[Dict[str, ExecutionOutcome]] = None):
        self.failing = set(failing)
        self.outcomes = outcomes or {}
        self.probes: List[Probe] = []
        self.available_checks: List[str] = []

    async def check_available(self, runtime_name: str) -> None:
        self.available_checks.append(runtime_name)

    async def execute(self, probe: Probe) -> ExecutionOutcome:
        self.probes.append(probe)
        if probe.pattern_name in self.outcomes:
            return self.outcomes[probe.pattern_name]
        if probe.pattern_name in self.failing:
            return ExecutionOutcome(
                exit_status=1,
                stdout="",
                stderr=f"AttributeError: {probe.pattern_name} is broken",
                wall_time=0.1,
                command=("fake",),
            )
        return ExecutionOutcome(
            exit_status=0,
            stdout=f"✓ Test passed: {probe.pattern_name}\n",
            stderr="",
            wall_time=0.1,
            command=("fake",),
        )


def skill_md(pattern_names: Sequence[str], package: str = "demo-lib", version: str = "1.2.0") -> str:
    """A SKILL.md with one python pattern per name."""

    sections = []
    for name in pattern_names:
        sections.append(
            f"### {name} ✅ Current\n\n{name} with demo_lib.\n\n"
            f"```python\nimport demo_lib\n\nprint(demo_lib.run({name!r}))\n```\n"
        )
    return (
        f"---\nname: {package}\ndescription: demo\nversion: {version}\necosystem: python\n---\n\n"
        "## Imports\n\n```python\nimport demo_lib\n```\n\n"
        "## Core Patterns\n\n" + "\n".join(sections)
    )


@pytest.fixture
def collected() -> CollectedData:
    return CollectedData(
        package_name="demo-lib",
        version="1.2.0",
        ecosystem="python",
        license="MIT",
        project_urls=(("Homepage", "https://example.org/demo-lib"),),
        source_content="def run(name):\n    return name\n",
        test_content="def test_run():\n    assert run('x') == 'x'\n",
        docs_content="# demo-lib\n",
        source_file_count=3,
    )


@pytest.fixture
def settings(monkeypatch, tmp_path) -> Settings:
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("SKILLSMITH_"):
            monkeypatch.delenv(key, raising=False)
    return Settings(generation={"max_retries": 3})


@pytest.fixture
def network_error() -> CollaboratorError:
    return CollaboratorError("connection reset", kind=CollaboratorError.NETWORK, role="fake")


def process_alive(pid: int) -> bool:
    """True while ``pid`` runs; a killed but unreaped zombie counts as gone."""

    stat = Path(f"/proc/{pid}/stat")
    if stat.exists():
        try:
            return stat.read_text().rsplit(")", 1)[1].split()[0] != "Z"
        except (OSError, IndexError):
            return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
