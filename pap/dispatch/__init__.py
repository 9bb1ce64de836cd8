"""Sandbox execution."""

from pap.dispatch.sandbox import ProcessSandbox, RunOutcome, RunResult, SandboxRunner

__all__ = ["ProcessSandbox", "RunOutcome", "RunResult", "SandboxRunner"]
