"""
External command execution

Every CLI the deployment tools drive (terraform, aws, kubectl, helm, the
scanners) goes through CommandRunner so the command is echoed before it runs
and failures come back as data rather than exceptions.
"""

import shutil
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

from lib.console import Colors

# Conventional shell exit codes for "not found" and "timed out"
EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124

_VERSION_ARGS = {
    'helm': ['version', '--short'],
    'kubectl': ['version', '--client'],
}


@dataclass
class CommandResult:
    """Outcome of one external command"""
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        return ' '.join(self.args)


class CommandError(Exception):
    """A required external command exited non-zero"""

    def __init__(self, result: CommandResult, message: Optional[str] = None):
        self.result = result
        detail = result.stderr.strip() or result.stdout.strip()
        msg = message or f"Command failed with exit code {result.returncode}: {result.command_line}"
        if detail:
            msg = f"{msg}\n{detail}"
        super().__init__(msg)


class CommandRunner:
    """Runs external commands, echoing each one first"""

    def __init__(self, echo: bool = True):
        self.echo = echo

    def run(self, args: Sequence[str], input_text: Optional[str] = None,
            timeout: Optional[int] = None, capture: bool = True) -> CommandResult:
        """
        Run a command and return its result.

        Args:
            args: Command and arguments
            input_text: Text written to the command's stdin
            timeout: Seconds before the command is killed
            capture: Capture stdout/stderr instead of streaming to the terminal

        Returns:
            CommandResult; a missing binary yields exit code 127, a timeout 124
        """
        args = [str(a) for a in args]
        if self.echo:
            Colors.info(f"$ {' '.join(args)}")

        try:
            proc = subprocess.run(
                args,
                input=input_text,
                capture_output=capture,
                text=True,
                timeout=timeout
            )
        except FileNotFoundError:
            return CommandResult(args, EXIT_NOT_FOUND, "", f"{args[0]}: command not found")
        except subprocess.TimeoutExpired:
            return CommandResult(args, EXIT_TIMEOUT, "", f"{args[0]}: timed out after {timeout}s")

        return CommandResult(args, proc.returncode, proc.stdout or "", proc.stderr or "")

    def check(self, args: Sequence[str], **kwargs) -> CommandResult:
        """Run a command and raise CommandError if it fails"""
        result = self.run(args, **kwargs)
        if not result.ok:
            raise CommandError(result)
        return result


def tool_installed(name: str) -> bool:
    return shutil.which(name) is not None


def tool_version(runner: CommandRunner, name: str) -> str:
    """First line of `<tool> --version`, or 'unknown'"""
    args = [name] + _VERSION_ARGS.get(name, ['--version'])
    result = runner.run(args, timeout=30)
    output = (result.stdout or result.stderr).strip()
    return output.splitlines()[0] if output else "unknown"
