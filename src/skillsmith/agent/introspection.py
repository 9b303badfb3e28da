"""Evidence for the reviewer, gathered by running a script against the real package.

The reviewer's collaborator writes a Python script that imports the package
and reads signatures, docstrings and the installed version. The script runs
through the same executor as validation probes. Whatever happens, the
reviewer gets a text block: the script's JSON, or a line explaining why
there is none.
"""

from __future__ import annotations

import logging
from typing import Optional

from skillsmith.agent.state import Probe
from skillsmith.config.settings import PromptSettings, Stage
from skillsmith.exceptions import CollaboratorError, SandboxError
from skillsmith.llm.client import GenerationClient
from skillsmith.llm.prompts import render
from skillsmith.sandbox.runtimes import normalize_runtime
from skillsmith.sandbox.sanitizer import sanitize_dependencies
from skillsmith.utils.fences import extract_code_block, parse_json_object
from skillsmith.validation.pattern_parser import parse_frontmatter
from skillsmith.validation.probe_generator import script_header, strip_script_header
from skillsmith.validation.stage import ProbeExecutor

logger = logging.getLogger(__name__)

INTROSPECTION_NAME = "introspection"


class Introspector:
    def __init__(
        self,
        client: GenerationClient,
        executor: ProbeExecutor,
        prompts: Optional[PromptSettings] = None,
    ):
        self.client = client
        self.executor = executor
        self.prompts = prompts or PromptSettings()

    def instructions(self, package_name: str, version: str) -> str:
        text = render("review_introspect", package_name=package_name, version=version)
        custom = self.prompts.custom_for(Stage.REVIEWER)
        if custom:
            text += f"\n\n## Additional Instructions\n\n{custom}\n"
        return text

    async def run(self, artifact: str) -> str:
        front = parse_frontmatter(artifact)
        ecosystem = normalize_runtime(front.get("ecosystem") or "python")
        package_name = front.get("name", "").strip()
        if ecosystem != "python":
            return "INTROSPECTION SKIPPED: only Python packages can be introspected"
        if not package_name:
            return "INTROSPECTION SKIPPED: the frontmatter names no package"

        try:
            probe = await self._script(artifact, package_name, front.get("version", ""))
            if probe is None:
                return "INTROSPECTION SKIPPED: no script was generated"
            await self.executor.check_available(probe.runtime)
            outcome = await self.executor.execute(probe)
        except (CollaboratorError, SandboxError) as exc:
            logger.warning("Introspection failed: %s", exc)
            return f"INTROSPECTION FAILED: {exc}"

        if outcome.timed_out:
            return "INTROSPECTION SKIPPED: script timed out"
        if not outcome.passed:
            logger.warning("Introspection script exited with %s: %s", outcome.exit_status, outcome.stderr[:200])
            return "INTROSPECTION SKIPPED: script execution failed"
        if parse_json_object(outcome.stdout) is None:
            logger.warning("Introspection output is not a JSON object; ignoring it")
            return "INTROSPECTION SKIPPED: script did not produce valid JSON"
        return outcome.stdout.strip()

    async def _script(self, artifact: str, package_name: str, version: str) -> Optional[Probe]:
        dependencies = sanitize_dependencies([package_name])
        response = await self.client.complete(self.instructions(package_name, version), artifact)
        code = extract_code_block(response, ("python", "py"))
        if code is None and "```" not in response and "import " in response:
            code = response.strip()
        code = strip_script_header(code or "").strip()
        if not code:
            return None
        logger.debug("Introspection script for %s: %d bytes", package_name, len(code))
        return Probe(
            pattern_name=INTROSPECTION_NAME,
            runtime="python",
            source=f"{script_header(dependencies)}\n{code}\n",
            dependencies=dependencies,
        )


__all__ = ["INTROSPECTION_NAME", "Introspector"]
