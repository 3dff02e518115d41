"""Terraform CLI wrapper"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from lib.commands import CommandError, CommandResult, CommandRunner

# `terraform plan -detailed-exitcode` contract
PLAN_NO_CHANGES = 0
PLAN_ERROR = 1
PLAN_HAS_CHANGES = 2


class TerraformError(CommandError):
    """A terraform command failed"""


@dataclass
class PlanResult:
    """Outcome of a saved plan"""
    plan_file: str
    has_changes: bool
    destroy: bool
    output: str = ""

    @classmethod
    def from_command(cls, result: CommandResult, plan_file: str, destroy: bool) -> 'PlanResult':
        """Interpret the detailed exit code; anything but 0 or 2 is an error"""
        if result.returncode not in (PLAN_NO_CHANGES, PLAN_HAS_CHANGES):
            raise TerraformError(result, "terraform plan failed")
        return cls(
            plan_file=plan_file,
            has_changes=result.returncode == PLAN_HAS_CHANGES,
            destroy=destroy,
            output=result.stdout,
        )


class Terraform:
    """Runs terraform in one working directory"""

    def __init__(self, runner: CommandRunner, working_dir: Union[str, Path] = '.'):
        self.runner = runner
        self.working_dir = str(working_dir)

    def _args(self, *args: str) -> List[str]:
        return ['terraform', f'-chdir={self.working_dir}', *args]

    def _check(self, *args: str, message: Optional[str] = None, **kwargs) -> CommandResult:
        result = self.runner.run(self._args(*args), **kwargs)
        if not result.ok:
            raise TerraformError(result, message)
        return result

    def outputs(self) -> Dict[str, Any]:
        """
        All root module outputs as name -> value.

        Returns an empty dict when there is no state or terraform fails, the
        callers fall back to defaults in that case.
        """
        result = self.runner.run(self._args('output', '-json'))
        if not result.ok or not result.stdout.strip():
            return {}
        try:
            raw = json.loads(result.stdout)
        except json.JSONDecodeError:
            return {}
        return {name: entry.get('value') for name, entry in raw.items() if isinstance(entry, dict)}

    def show_outputs(self) -> str:
        """Human-readable `terraform output`"""
        result = self.runner.run(self._args('output'))
        return result.stdout if result.ok else ""

    def fmt_check(self) -> CommandResult:
        """`terraform fmt -check -recursive`; non-zero means files need formatting"""
        return self.runner.run(self._args('fmt', '-check', '-recursive'))

    def init(self, backend_config: Optional[Dict[str, str]] = None) -> CommandResult:
        args = ['init', '-input=false']
        for key, value in (backend_config or {}).items():
            args.append(f'-backend-config={key}={value}')
        return self._check(*args, message="terraform init failed", capture=False)

    def validate(self) -> CommandResult:
        return self._check('validate', message="terraform validate failed")

    def plan(self, plan_file: str = 'tfplan', destroy: bool = False,
             var_file: Optional[str] = None) -> PlanResult:
        args = ['plan', '-input=false', '-detailed-exitcode', f'-out={plan_file}']
        if destroy:
            args.append('-destroy')
        if var_file:
            args.append(f'-var-file={var_file}')
        result = self.runner.run(self._args(*args))
        return PlanResult.from_command(result, plan_file, destroy)

    def apply(self, plan: PlanResult) -> CommandResult:
        """Apply a saved plan; a destroy plan tears the stack down"""
        return self._check('apply', '-input=false', plan.plan_file,
                           message="terraform apply failed", capture=False)
