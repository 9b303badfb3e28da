"""Typer-based CLI for generating SKILL.md files."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from skillsmith import __version__
from skillsmith.agent.introspection import Introspector
from skillsmith.agent.orchestrator import RetryController
from skillsmith.agent.review import ReviewStage
from skillsmith.agent.state import CollectedData, Disposition, ReviewVerdict, RunResult, ValidationMode
from skillsmith.config.settings import Settings, Stage, load_settings
from skillsmith.exceptions import ConfigError, SafetyViolation, SkillsmithError
from skillsmith.llm.client import build_clients
from skillsmith.sandbox.executor import DryRunExecutor, SandboxExecutor
from skillsmith.utils.fileops import atomic_write, read_text

app = typer.Typer(help="skillsmith - generate and validate SKILL.md files for libraries")
console = Console()
logger = logging.getLogger("skillsmith")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_input(path: Path) -> CollectedData:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Input file '{path}' is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict) or not raw.get("package_name"):
        raise ConfigError(f"Input file '{path}' must be a JSON object with a 'package_name'")
    return CollectedData.from_dict(raw)


def _overrides(**options: Any) -> Dict[str, Any]:
    generation: Dict[str, Any] = {
        "max_retries": options["max_retries"],
        "run_timeout": options["timeout"],
        "validation_mode": options["mode"].value if options["mode"] else None,
    }
    if options["no_review"]:
        generation["enable_review"] = False
    if options["no_validate"]:
        generation["enable_validation"] = False
    if options["sequential"]:
        generation["parallel_extraction"] = False
    container: Dict[str, Any] = {"strategy": options["strategy"]}
    if options["keep_workdirs"]:
        container["keep_workdirs"] = True
    return {"generation": generation, "container": container}


def _print_summary(result: RunResult, output: Path) -> None:
    table = Table(title="Attempts")
    table.add_column("#", justify="right")
    table.add_column("Review")
    table.add_column("Patterns passed", justify="right")
    table.add_column("Validation")
    for row in result.history:
        review = {True: "pass", False: "fail", None: "-"}[row["review_passed"]]
        validation = {True: "pass", False: "fail", None: "skipped"}[row["validation_passed"]]
        table.add_row(
            str(row["attempt"]),
            review,
            f"{row['patterns_passed']}/{row['patterns_tested']}",
            validation,
        )
    if result.history:
        console.print(table)

    if result.disposition is Disposition.SUCCEEDED:
        console.print(f"[bold green]✓ SKILL.md written to {output}[/bold green]")
    elif result.disposition is Disposition.EXHAUSTED_RETRIES:
        console.print(f"[bold yellow]Retries exhausted:[/bold yellow] {escape(result.reason or '')}")
        console.print(f"Best attempt written to {output}")
    else:
        console.print(f"[bold red]Failed:[/bold red] {escape(result.reason or '')}")


@app.command()
def generate(
    input_file: Path = typer.Option(..., "--input", "-i", exists=True, readable=True, help="JSON file with the collected library data"),
    output: Path = typer.Option(Path("SKILL.md"), "--output", "-o", help="Where to write the SKILL.md"),
    existing: Optional[Path] = typer.Option(None, "--existing", help="Patch this SKILL.md instead of writing from scratch (defaults to --output when it exists)"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a skillsmith.toml"),
    max_retries: Optional[int] = typer.Option(None, "--max-retries", min=0, help="Retries after the first attempt"),
    timeout: Optional[float] = typer.Option(None, "--timeout", min=1.0, help="Overall run timeout in seconds, across all attempts (per-probe bounds come from [container] timeout and install_timeout)"),
    mode: Optional[ValidationMode] = typer.Option(None, "--mode", case_sensitive=False, help="Validation mode"),
    strategy: Optional[str] = typer.Option(None, "--strategy", help="Probe execution strategy: container or local"),
    no_review: bool = typer.Option(False, "--no-review", help="Skip the LLM review (the safety scan still runs)"),
    no_validate: bool = typer.Option(False, "--no-validate", help="Skip probe validation"),
    sequential: bool = typer.Option(False, "--sequential", help="Run the extraction calls one at a time"),
    keep_workdirs: bool = typer.Option(False, "--keep-workdirs", help="Keep probe working directories for inspection"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Use canned model responses and skip probe execution"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Generate (or patch) a validated SKILL.md for one library."""

    _configure_logging(verbose)
    try:
        settings = load_settings(
            config,
            _overrides(
                max_retries=max_retries,
                timeout=timeout,
                mode=mode,
                strategy=strategy,
                no_review=no_review,
                no_validate=no_validate,
                sequential=sequential,
                keep_workdirs=keep_workdirs,
            ),
        )
        data = _load_input(input_file)
        if existing is None and output.exists():
            existing = output
        existing_artifact = read_text(existing) if existing is not None else None
        if existing_artifact is not None:
            logger.info("Updating existing SKILL.md from %s", existing)

        clients = build_clients(settings, dry_run=dry_run)
        executor = DryRunExecutor() if dry_run else SandboxExecutor(settings.container)
        controller = RetryController(settings, clients, executor, existing_artifact=existing_artifact)
        result = asyncio.run(controller.run(data))
    except SkillsmithError as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=1)

    if result.artifact is not None:
        atomic_write(output, result.artifact)
    _print_summary(result, output)
    raise typer.Exit(code=result.exit_code)


def _print_review(verdict: ReviewVerdict) -> None:
    errors = sum(1 for issue in verdict.issues if issue.severity == "error")
    if not verdict.passed:
        console.print(f"[bold red]FAILED:[/bold red] {errors} error(s), {len(verdict.issues)} issue(s) found")
    elif verdict.issues:
        console.print(f"[bold yellow]PASSED with {len(verdict.issues)} warning(s)[/bold yellow]")
    else:
        console.print("[bold green]PASSED:[/bold green] no issues found")
    for number, issue in enumerate(verdict.issues, start=1):
        console.print(f"  {number}. [{issue.severity}/{issue.category}] {issue.complaint}", markup=False)
        if issue.evidence:
            console.print(f"     Evidence: {issue.evidence}", markup=False)


@app.command()
def review(
    path: Path = typer.Argument(..., exists=True, file_okay=True, dir_okay=False, readable=True, help="SKILL.md to review"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a skillsmith.toml"),
    strategy: Optional[str] = typer.Option(None, "--strategy", help="Introspection execution strategy: container or local"),
    no_introspection: bool = typer.Option(False, "--no-introspection", help="Review the text alone, without running a script against the package"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Use canned model responses and skip script execution"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Review an existing SKILL.md for accuracy and safety.

    Unlike the review inside ``generate``, an unreadable verdict or a failed
    model call is an error here.
    """

    _configure_logging(verbose)
    try:
        settings = load_settings(config, {"container": {"strategy": strategy}})
        artifact = read_text(path) or ""
        logger.info("Reviewing %s", path)

        clients = build_clients(settings, dry_run=dry_run)
        introspector = None
        if not no_introspection:
            executor = DryRunExecutor() if dry_run else SandboxExecutor(settings.container)
            introspector = Introspector(clients[Stage.REVIEWER], executor, settings.prompts)
        stage = ReviewStage(clients[Stage.REVIEWER], settings.prompts, strict=True, introspector=introspector)
        verdict = asyncio.run(stage.run(artifact))
    except SafetyViolation as exc:
        console.print(f"[bold red]FAILED:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=1)
    except SkillsmithError as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=1)

    _print_review(verdict)
    raise typer.Exit(code=0 if verdict.passed else 1)


@app.command("config-check")
def config_check(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a skillsmith.toml"),
) -> None:
    """Print the effective configuration."""

    try:
        settings: Settings = load_settings(config)
    except ConfigError as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        raise typer.Exit(code=1)

    table = Table(title="Stage models")
    table.add_column("Stage")
    table.add_column("Provider")
    table.add_column("Model")
    for stage in Stage:
        llm = settings.llm_for(stage)
        table.add_row(stage.value, llm.provider.value, llm.model)
    console.print(table)
    generation = settings.generation
    container = settings.container
    console.print(
        f"Validation: [bold]{generation.validation_mode.value}[/bold], "
        f"max retries {generation.max_retries}, review {'on' if generation.enable_review else 'off'}"
    )
    console.print(
        f"Execution: [bold]{container.strategy}[/bold] via {container.runtime}, "
        f"network {'on' if container.network else 'off'}, timeout {container.timeout:.0f}s "
        f"(+{container.install_timeout:.0f}s install when dependencies are declared)"
    )


@app.command()
def version() -> None:
    """Print the skillsmith version."""
    console.print(__version__)


if __name__ == "__main__":
    app()
