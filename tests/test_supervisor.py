import asyncio
import os
import sys

import pytest

from conftest import process_alive
from skillsmith.exceptions import SandboxError
from skillsmith.sandbox.supervisor import ProcessSupervisor

posix_only = pytest.mark.skipif(os.name != "posix", reason="process groups are POSIX only")


@pytest.mark.asyncio
async def test_run_captures_output_and_exit_status():
    supervisor = ProcessSupervisor(grace_period=1.0)
    outcome = await supervisor.run(
        [sys.executable, "-c", "import sys; print('hello'); print('oops', file=sys.stderr); sys.exit(3)"],
        timeout=30,
    )
    assert outcome.exit_status == 3
    assert outcome.stdout.strip() == "hello"
    assert "oops" in outcome.stderr
    assert not outcome.timed_out
    assert not outcome.passed


@pytest.mark.asyncio
async def test_output_is_truncated_at_limit():
    supervisor = ProcessSupervisor(grace_period=1.0, max_output_bytes=100)
    outcome = await supervisor.run([sys.executable, "-c", "print('x' * 10000)"], timeout=30)
    assert outcome.exit_status == 0
    assert outcome.stdout.startswith("x" * 100)
    assert outcome.stdout.endswith("[output truncated]")


def _script(tmp_path, name: str, body: str) -> str:
    path = tmp_path / name
    path.write_text(body, encoding="utf-8")
    return str(path)


@posix_only
@pytest.mark.asyncio
async def test_timeout_kills_child_and_its_descendants(tmp_path):
    pid_file = tmp_path / "grandchild.pid"
    script = _script(
        tmp_path,
        "spawner.py",
        "import subprocess, sys, time\n"
        "child = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(60)'])\n"
        f"open({str(pid_file)!r}, 'w').write(str(child.pid))\n"
        "time.sleep(60)\n",
    )
    supervisor = ProcessSupervisor(grace_period=0.5)
    outcome = await supervisor.run([sys.executable, script], timeout=3)

    assert outcome.timed_out
    assert outcome.exit_status is None
    assert outcome.wall_time < 3 + 0.5 + 5
    grandchild = int(pid_file.read_text())
    for _ in range(50):
        if not process_alive(grandchild):
            break
        await asyncio.sleep(0.1)
    assert not process_alive(grandchild)


@posix_only
@pytest.mark.asyncio
async def test_sigterm_ignoring_child_is_killed(tmp_path):
    script = _script(
        tmp_path,
        "stubborn.py",
        "import signal, time\n"
        "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
        "print('ready', flush=True)\n"
        "time.sleep(60)\n",
    )
    supervisor = ProcessSupervisor(grace_period=0.5)
    outcome = await supervisor.run([sys.executable, script], timeout=2)
    assert outcome.timed_out
    assert outcome.exit_status is None
    assert "ready" in outcome.stdout
    assert outcome.wall_time < 2 + 0.5 + 5


@posix_only
@pytest.mark.asyncio
async def test_background_descendant_does_not_turn_exit_into_timeout(tmp_path):
    pid_file = tmp_path / "background.pid"
    script = _script(
        tmp_path,
        "detach.py",
        "import subprocess, sys\n"
        "child = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(30)'])\n"
        f"open({str(pid_file)!r}, 'w').write(str(child.pid))\n"
        "print('done', flush=True)\n",
    )
    supervisor = ProcessSupervisor(grace_period=0.5)
    outcome = await supervisor.run([sys.executable, script], timeout=10)

    assert not outcome.timed_out
    assert outcome.exit_status == 0
    assert outcome.stdout == "done\n"
    assert outcome.wall_time < 10
    background = int(pid_file.read_text())
    for _ in range(50):
        if not process_alive(background):
            break
        await asyncio.sleep(0.1)
    assert not process_alive(background)


@pytest.mark.asyncio
async def test_missing_executable_raises_sandbox_error():
    supervisor = ProcessSupervisor()
    with pytest.raises(SandboxError):
        await supervisor.run(["definitely-not-a-real-binary-skillsmith"], timeout=5)
