import pytest

from conftest import FakeGenerationClient
from skillsmith.agent.state import Pattern
from skillsmith.config.settings import PromptSettings, Stage
from skillsmith.exceptions import ParseError, UnsafeTokenError
from skillsmith.validation.probe_generator import ProbeGenerator, script_header, strip_script_header


def _pattern(**overrides):
    values = dict(
        name="Basic usage",
        import_statement="import requests",
        code_body="print(requests.__version__)",
        expected_behavior_summary="Prints the version.",
        dependencies=("requests",),
    )
    values.update(overrides)
    return Pattern(**values)


def test_script_header_declares_dependencies():
    header = script_header(["requests", "pydantic>=2"])
    assert header.splitlines() == [
        "# /// script",
        '# requires-python = ">=3.11"',
        '# dependencies = ["requests", "pydantic>=2"]',
        "# ///",
    ]


def test_strip_script_header():
    source = '# /// script\n# dependencies = ["evil"]\n# ///\nprint(1)\n'
    assert strip_script_header(source) == "print(1)\n"
    assert strip_script_header("print(1)\n") == "print(1)\n"


@pytest.mark.asyncio
async def test_generated_probe_uses_only_pattern_dependencies():
    reply = (
        "```python\n# /// script\n# dependencies = [\"requests\", \"malicious-extra\"]\n# ///\n"
        "import requests\nprint('✓ Test passed: Basic usage')\n```"
    )
    client = FakeGenerationClient(reply)
    probe = await ProbeGenerator(client).generate(_pattern())

    assert probe.dependencies == ("requests",)
    assert probe.runtime == "python"
    assert '# dependencies = ["requests"]' in probe.source
    assert "malicious-extra" not in probe.source
    assert "Pattern: Basic usage" in client.calls[0]["input_text"]
    assert "✓ Test passed: Basic usage" in client.calls[0]["input_text"]


@pytest.mark.asyncio
async def test_unsafe_dependency_never_reaches_the_model():
    client = FakeGenerationClient("```python\nprint(1)\n```")
    with pytest.raises(UnsafeTokenError):
        await ProbeGenerator(client).generate(_pattern(dependencies=("requests; rm -rf /",)))
    assert client.call_count == 0


@pytest.mark.asyncio
async def test_empty_reply_is_a_parse_error():
    client = FakeGenerationClient("```python\n```")
    with pytest.raises(ParseError):
        await ProbeGenerator(client).generate(_pattern())


@pytest.mark.asyncio
async def test_javascript_probe_has_no_header():
    client = FakeGenerationClient("```javascript\nconsole.log('✓ Test passed: Basic usage');\n```")
    pattern = _pattern(runtime="javascript", import_statement="const axios = require('axios');", dependencies=("axios",))
    probe = await ProbeGenerator(client).generate(pattern)
    assert probe.source == "console.log('✓ Test passed: Basic usage');\n"
    assert probe.dependencies == ("axios",)


def test_probe_instructions_cannot_be_overwritten():
    prompts = PromptSettings(override_prompts=True, custom={Stage.PROBE_GENERATOR: "Only print hello."})
    text = ProbeGenerator(FakeGenerationClient(), prompts, local_package="demo").instructions(_pattern())
    assert "Only print hello." in text
    assert "## Additional Instructions" in text
    assert 'the library "demo" is installed from a local checkout' in text
