"""Sanitized, time-bounded execution of generated probes."""

from skillsmith.sandbox.executor import DryRunExecutor, SandboxExecutor
from skillsmith.sandbox.supervisor import ProcessSupervisor

__all__ = ["DryRunExecutor", "ProcessSupervisor", "SandboxExecutor"]
