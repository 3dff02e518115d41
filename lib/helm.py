"""Helm CLI wrapper"""

from typing import Dict, List, Optional

from lib.commands import CommandResult, CommandRunner


def escape_set_key(key: str) -> str:
    """Escape dots inside a single --set path segment"""
    return key.replace('.', '\\.')


def set_path(*segments: str) -> str:
    """
    Build a --set key from path segments.

    set_path('serviceAccount', 'annotations', 'eks.amazonaws.com/role-arn')
    gives serviceAccount.annotations.eks\\.amazonaws\\.com/role-arn
    """
    return '.'.join(escape_set_key(s) for s in segments)


class Helm:
    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def repo_add(self, name: str, url: str) -> CommandResult:
        return self.runner.run(['helm', 'repo', 'add', name, url])

    def repo_update(self) -> CommandResult:
        return self.runner.run(['helm', 'repo', 'update'])

    def upgrade_install(self, release: str, chart: str, namespace: str,
                        values: Optional[Dict[str, str]] = None, wait: bool = True) -> CommandResult:
        """
        `helm upgrade --install`, which installs or upgrades in place.

        Args:
            values: --set key (already escaped, see set_path) to value
        """
        args: List[str] = ['helm', 'upgrade', '--install', release, chart, '--namespace', namespace]
        for key, value in (values or {}).items():
            args += ['--set', f'{key}={value}']
        if wait:
            args.append('--wait')
        return self.runner.run(args)
