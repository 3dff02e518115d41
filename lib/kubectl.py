"""kubectl wrapper returning parsed objects instead of column text"""

import json
from typing import Any, Dict, List, Optional

from lib.commands import CommandResult, CommandRunner


def node_is_ready(node: Dict[str, Any]) -> bool:
    for condition in node.get('status', {}).get('conditions', []):
        if condition.get('type') == 'Ready':
            return condition.get('status') == 'True'
    return False


def pod_is_running(pod: Dict[str, Any]) -> bool:
    return pod.get('status', {}).get('phase') == 'Running'


class Kubectl:
    """Thin layer over the kubectl CLI for the current kubeconfig context"""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def _args(self, *args: str) -> List[str]:
        return ['kubectl', *args]

    def _items(self, *args: str) -> List[Dict[str, Any]]:
        result = self.runner.run(self._args(*args, '-o', 'json'))
        if not result.ok:
            return []
        try:
            return json.loads(result.stdout).get('items', [])
        except json.JSONDecodeError:
            return []

    def cluster_info(self) -> CommandResult:
        return self.runner.run(self._args('cluster-info'), timeout=30)

    def get_nodes(self) -> List[Dict[str, Any]]:
        return self._items('get', 'nodes')

    def get_pods(self, namespace: str, selector: Optional[str] = None) -> List[Dict[str, Any]]:
        args = ['get', 'pods', '-n', namespace]
        if selector:
            args += ['-l', selector]
        return self._items(*args)

    def get_storage_classes(self) -> List[Dict[str, Any]]:
        return self._items('get', 'storageclasses')

    def get_text(self, *args: str) -> str:
        """Table output for display, empty string on failure"""
        result = self.runner.run(self._args('get', *args))
        return result.stdout if result.ok else ""

    def apply_url(self, url: str) -> CommandResult:
        return self.runner.run(self._args('apply', '-f', url))

    def apply_manifest(self, manifest: str) -> CommandResult:
        return self.runner.run(self._args('apply', '-f', '-'), input_text=manifest)

    def wait_for_pods(self, namespace: str, selector: str, timeout: int) -> bool:
        """Block until every pod matching selector is Ready, False on timeout"""
        result = self.runner.run(self._args(
            'wait', '--for=condition=Ready', 'pod',
            '-l', selector, '-n', namespace, f'--timeout={timeout}s'
        ))
        return result.ok

    def wait_for_pod(self, name: str, namespace: str, timeout: int) -> bool:
        result = self.runner.run(self._args(
            'wait', '--for=condition=Ready', f'pod/{name}',
            '-n', namespace, f'--timeout={timeout}s'
        ))
        return result.ok

    def pod_exists(self, name: str, namespace: str) -> bool:
        return self.runner.run(self._args('get', 'pod', name, '-n', namespace)).ok

    def delete_pod(self, name: str, namespace: str, force: bool = False) -> CommandResult:
        args = ['delete', 'pod', name, '-n', namespace, '--ignore-not-found']
        if force:
            args += ['--grace-period=0', '--force']
        return self.runner.run(self._args(*args))
