"""Isolated execution of the analysis for one package.

A runner receives a normalized tree and an absolute deadline on the
``time.monotonic()`` clock and returns a :class:`RunResult`. It must have
torn down everything it created by the time it returns, whatever the
outcome.
"""

import json
import os
import shutil
import signal
import subprocess
import tempfile
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Protocol

from pap.core.config import Settings
from pap.core.logging import get_logger
from pap.intake.models import PackageTree
from pap.intake.validator import INTERFACE_FILE, TEST_DIRS

logger = get_logger(__name__)

# Bytes of stderr kept in crash descriptions
STDERR_TAIL = 2000


class RunOutcome(str, Enum):
    """How a sandboxed run ended."""

    SUCCESS = "success"
    STRUCTURED_FAILURE = "structured_failure"
    CRASHED = "crashed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class RunResult:
    """Result reported by a sandbox runner."""

    outcome: RunOutcome
    payload: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, payload: Any) -> "RunResult":
        return cls(RunOutcome.SUCCESS, payload=payload)

    @classmethod
    def failure(cls, error: str) -> "RunResult":
        return cls(RunOutcome.STRUCTURED_FAILURE, error=error)

    @classmethod
    def crashed(cls, detail: str) -> "RunResult":
        return cls(RunOutcome.CRASHED, error=detail)

    @classmethod
    def timed_out(cls, detail: str = "deadline exceeded") -> "RunResult":
        return cls(RunOutcome.TIMED_OUT, error=detail)

    @property
    def is_retryable(self) -> bool:
        return self.outcome in (RunOutcome.CRASHED, RunOutcome.TIMED_OUT)


class SandboxRunner(Protocol):
    """Runs the analysis for one package in isolation."""

    def run(self, tree: PackageTree, deadline: float) -> RunResult: ...


def parse_response(stdout: str) -> RunResult | None:
    """Parse the structured response an analysis prints as its last line.

    Returns:
        RunResult for a recognised response, None otherwise
    """
    lines = [line for line in stdout.splitlines() if line.strip()]
    if not lines:
        return None
    try:
        data = json.loads(lines[-1])
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    outcome = data.get("outcome")
    if outcome == "success":
        return RunResult.success(data.get("result"))
    if outcome == "failure":
        error = data.get("error")
        return RunResult.failure(str(error) if error is not None else "analysis failed")
    return None


class ProcessSandbox:
    """Runs a configured command against a private copy of the package.

    Every run gets a fresh temporary workspace and its own process session.
    On timeout the whole process group is killed, then the optional
    teardown command (for example ``docker rm -f {name}``) is run, and the
    workspace is removed before :meth:`run` returns.

    Placeholders in the command and teardown tokens:
        ``{workspace}`` the attempt's package directory
        ``{name}`` a unique name for the attempt (container name)
    """

    def __init__(
        self,
        command: list[str],
        teardown_command: list[str] | None = None,
        interface_header: Path | None = None,
        teardown_timeout: float = 30.0,
    ) -> None:
        if not command:
            raise ValueError("Sandbox command must not be empty")
        self.command = list(command)
        self.teardown_command = list(teardown_command or [])
        self.interface_header = interface_header
        self.teardown_timeout = teardown_timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProcessSandbox":
        return cls(
            command=settings.SANDBOX_COMMAND,
            teardown_command=settings.SANDBOX_TEARDOWN_COMMAND,
            interface_header=settings.SANDBOX_INTERFACE_HEADER,
        )

    def run(self, tree: PackageTree, deadline: float) -> RunResult:
        if time.monotonic() >= deadline:
            return RunResult.timed_out("deadline passed before the sandbox started")

        name = f"pap-{uuid.uuid4().hex[:16]}"
        with tempfile.TemporaryDirectory(prefix="pap-") as tmpdir:
            workspace = Path(tmpdir)
            try:
                self._materialize(tree, workspace)
                return self._execute(workspace, name, deadline)
            finally:
                self._teardown(workspace, name)

    def _materialize(self, tree: PackageTree, workspace: Path) -> None:
        """Write the package into the workspace."""
        for directory in TEST_DIRS:
            (workspace / directory).mkdir(parents=True, exist_ok=True)
        (workspace / "output").mkdir(exist_ok=True)
        for relative, content in tree.items():
            destination = workspace / relative
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(content)
        if self.interface_header is not None:
            shutil.copyfile(self.interface_header, workspace / INTERFACE_FILE)

    def _render(self, tokens: list[str], workspace: Path, name: str) -> list[str]:
        return [
            token.replace("{workspace}", str(workspace)).replace("{name}", name)
            for token in tokens
        ]

    def _execute(self, workspace: Path, name: str, deadline: float) -> RunResult:
        argv = self._render(self.command, workspace, name)
        try:
            process = subprocess.Popen(
                argv,
                cwd=workspace,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            return RunResult.crashed(f"unable to start sandbox: {e}")

        remaining = max(deadline - time.monotonic(), 0.0)
        try:
            stdout, stderr = process.communicate(timeout=remaining)
        except subprocess.TimeoutExpired:
            self._kill(process)
            process.communicate()
            return RunResult.timed_out(f"sandbox killed after deadline ({name})")

        response = parse_response(stdout.decode("utf-8", errors="replace"))
        if response is not None:
            return response

        stderr_tail = stderr.decode("utf-8", errors="replace")[-STDERR_TAIL:].strip()
        if process.returncode != 0:
            return RunResult.crashed(
                f"sandbox exited with status {process.returncode}: {stderr_tail}"
            )
        return RunResult.crashed(f"sandbox produced no structured response: {stderr_tail}")

    @staticmethod
    def _kill(process: subprocess.Popen[bytes]) -> None:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass

    def _teardown(self, workspace: Path, name: str) -> None:
        """Run the teardown command; the workspace itself goes with the tempdir."""
        if not self.teardown_command:
            return
        argv = self._render(self.teardown_command, workspace, name)
        try:
            completed = subprocess.run(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                timeout=self.teardown_timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error("sandbox_teardown_failed", name=name, error=str(e))
            raise
        if completed.returncode != 0:
            # Already gone (for example removed by --rm) is the common case
            logger.debug(
                "sandbox_teardown_nonzero",
                name=name,
                returncode=completed.returncode,
                stderr=completed.stderr.decode("utf-8", errors="replace")[-200:],
            )
