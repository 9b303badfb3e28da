import pytest

from conftest import FakeExecutor, FakeGenerationClient, probe_reply, skill_md
from skillsmith.agent.state import ExecutionOutcome, ValidationMode
from skillsmith.exceptions import RuntimeUnavailable, ValidationFailure
from skillsmith.validation.pattern_parser import PatternParser
from skillsmith.validation.probe_generator import ProbeGenerator
from skillsmith.validation.result_validator import ResultValidator
from skillsmith.validation.stage import ValidationStage


def _stage(executor, mode=ValidationMode.EXHAUSTIVE, replies=probe_reply):
    client = FakeGenerationClient(replies)
    stage = ValidationStage(
        parser=PatternParser("python"),
        generator=ProbeGenerator(client),
        executor=executor,
        validator=ResultValidator(mode),
    )
    return stage, client


@pytest.mark.asyncio
async def test_every_pattern_is_probed_in_exhaustive_mode():
    executor = FakeExecutor(failing=["Config"])
    stage, _ = _stage(executor)
    report = await stage.run(skill_md(["Basic usage", "Config", "Async"]))

    assert [probe.pattern_name for probe in executor.probes] == ["Basic usage", "Config", "Async"]
    assert executor.available_checks == ["python"]
    assert report.verdict.patterns_tested == 3
    assert report.verdict.patterns_passed == 2
    assert not report.verdict.overall_pass
    assert report.history == {"Config": 1}

    with pytest.raises(ValidationFailure) as excinfo:
        report.raise_for_failure()
    assert excinfo.value.verdict is report.verdict
    assert "1 of 3 patterns failed" in str(excinfo.value)
    assert all('# dependencies = ["demo_lib"]' in probe.source for probe in executor.probes)


@pytest.mark.asyncio
async def test_missing_success_marker_fails_the_pattern():
    outcome = ExecutionOutcome(exit_status=0, stdout="did nothing\n", stderr="", wall_time=0.1)
    executor = FakeExecutor(outcomes={"Basic usage": outcome})
    stage, _ = _stage(executor)
    report = await stage.run(skill_md(["Basic usage"]))
    (result,) = report.results
    assert not result.passed
    assert "success marker" in result.reason()


@pytest.mark.asyncio
async def test_minimal_mode_stops_after_failed_primary():
    executor = FakeExecutor(failing=["Basic usage"])
    stage, client = _stage(executor, ValidationMode.MINIMAL)
    report = await stage.run(skill_md(["Config", "Basic usage", "Async"]))
    assert [probe.pattern_name for probe in executor.probes] == ["Basic usage"]
    assert client.call_count == 1
    assert not report.verdict.overall_pass


@pytest.mark.asyncio
async def test_unsafe_dependency_fails_patterns_without_executing():
    artifact = skill_md(["Basic usage", "Config"]).replace(
        "## Core Patterns", "Install: `pip install demo_lib$(curl)`\n\n## Core Patterns"
    )
    executor = FakeExecutor()
    stage, client = _stage(executor)
    report = await stage.run(artifact)

    assert executor.probes == []
    assert client.call_count == 0
    assert not report.verdict.overall_pass
    assert all("unsafe dependency rejected" in result.reason() for result in report.results)


@pytest.mark.asyncio
async def test_probe_generation_failure_is_a_pattern_failure(network_error):
    executor = FakeExecutor()
    stage, _ = _stage(executor, replies=[network_error, probe_reply])
    report = await stage.run(skill_md(["Basic usage", "Config"]))
    first, second = report.results
    assert "probe generation failed" in first.reason()
    assert second.passed


@pytest.mark.asyncio
async def test_unavailable_runtime_propagates():
    class Unavailable(FakeExecutor):
        async def check_available(self, runtime_name):
            raise RuntimeUnavailable("docker not found")

    stage, _ = _stage(Unavailable())
    with pytest.raises(RuntimeUnavailable):
        await stage.run(skill_md(["Basic usage"]))


@pytest.mark.asyncio
async def test_artifact_without_patterns_passes():
    executor = FakeExecutor()
    stage, _ = _stage(executor)
    report = await stage.run("---\nname: demo\n---\n\n## Core Patterns\n\nNothing yet.\n")
    assert report.verdict.overall_pass
    assert executor.available_checks == []


RUST_SKILL = """---
name: demo-rs
description: demo
version: 0.4.0
ecosystem: rust
---

## Core Patterns

### Basic usage ✅ Current

Build a thing.

```rust
use demo_rs::Thing;

fn main() { Thing::new(); }
```
"""


@pytest.mark.asyncio
async def test_ecosystem_without_probe_runtime_skips_execution():
    executor = FakeExecutor()
    client = FakeGenerationClient(probe_reply)
    stage = ValidationStage(
        parser=PatternParser("rust"),
        generator=ProbeGenerator(client),
        executor=executor,
        validator=ResultValidator(),
    )
    report = await stage.run(RUST_SKILL, {"Old": 1})

    assert report.verdict.overall_pass
    assert report.verdict.patterns_tested == 0
    assert report.history == {"Old": 1}
    assert report.parsed.runtime == "rust"
    assert executor.available_checks == []
    assert executor.probes == []
    assert client.call_count == 0
    report.raise_for_failure()
