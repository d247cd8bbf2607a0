"""Command execution on top of invoke."""

import io
import re
import shlex
from pathlib import Path

from invoke import Context, Result
from invoke.exceptions import CommandTimedOut

from storesync.core.log import logger

# user:token@ in https remote URLs
_CREDENTIALS = re.compile(r"(https?://)[^/@\s]+@")


def redact(text: str) -> str:
    """Strip embedded credentials from a command line or its output."""
    return _CREDENTIALS.sub(r"\1***@", text)


class Runner(Context):
    """invoke.Context with a single execute() entry point.

    All process spawning in storesync goes through execute() so every
    command and its exit status is logged in one place, with
    credentials masked.
    """

    def execute(
        self,
        command: str,
        cwd: Path | None = None,
        timeout: int | None = None,
        stdin: str | None = None,
        check: bool = True,
        env: dict[str, str] | None = None,
    ) -> Result:
        """Run a command and capture its output.

        Args:
            command: Shell command line
            cwd: Working directory
            timeout: Seconds before the command is killed; a timed
                out command yields a Result with exited == -1
            stdin: Text fed to the command's standard input
            check: Raise invoke.UnexpectedExit on non-zero exit
            env: Extra environment variables (merged into os.environ)

        Returns:
            invoke.Result with stdout, stderr and exited
        """
        kwargs = {
            "hide": True,
            "warn": not check,
            "in_stream": False,
        }
        if timeout:
            kwargs["timeout"] = timeout
        if stdin is not None:
            kwargs["in_stream"] = io.StringIO(stdin)
        if env:
            kwargs["env"] = env

        logger.debug("Running command", command=redact(command),
                     cwd=str(cwd) if cwd else None)

        # Worker threads share one Runner, so no Context.cd stack
        if cwd:
            command = f"cd {shlex.quote(str(cwd))} && {command}"

        try:
            result = self.run(command, **kwargs)
        except CommandTimedOut as e:
            result = e.result
            result.exited = -1

        logger.debug(
            "Command finished",
            command=redact(command),
            exited=result.exited,
            stderr=redact(result.stderr.strip())[:500],
        )
        return result
