"""
Pytest configuration and fixtures for the deployment tools.

Nothing here touches AWS or a real cluster: external commands go through a
scripted runner and AWS calls through a mock of AWSClient.
"""

import json
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple
from unittest.mock import MagicMock

import pytest

from lib.aws_client import AWSClient
from lib.commands import CommandResult, CommandRunner
from lib.settings import DeploySettings, PipelineSettings

ACCOUNT_ID = "123456789012"
CALLER_ARN = f"arn:aws:iam::{ACCOUNT_ID}:user/deployer"
OIDC_ISSUER = "https://oidc.eks.us-east-1.amazonaws.com/id/EXAMPLED539D4633E53DE1B71EXAMPLE"

VALID_TFVARS = """
project_name       = "public"
aws_region         = "us-east-1"
vpc_cidr           = "10.0.0.0/16"
public_subnet_cidrs  = ["10.0.1.0/24", "10.0.2.0/24"]
private_subnet_cidrs = ["10.0.10.0/24", "10.0.11.0/24"]
kubernetes_version = "1.28"

node_group_min_size     = 1
node_group_desired_size = 2
node_group_max_size     = 3
node_instance_types     = ["t3.medium"]
node_capacity_type      = "ON_DEMAND"
node_disk_size          = 20

enable_nat_gateway = true
single_nat_gateway = true
"""

TERRAFORM_OUTPUTS = {
    'cluster_name': {'value': 'public-eks', 'type': 'string', 'sensitive': False},
    'cluster_endpoint': {'value': 'https://ABCDEF.gr7.us-east-1.eks.amazonaws.com',
                         'type': 'string', 'sensitive': False},
    'vpc_id': {'value': 'vpc-0123456789abcdef0', 'type': 'string', 'sensitive': False},
    'aws_load_balancer_controller_role_arn': {
        'value': f'arn:aws:iam::{ACCOUNT_ID}:role/public-eks-alb-controller',
        'type': 'string', 'sensitive': False},
}


class FakeRunner(CommandRunner):
    """
    Command runner that answers from a script instead of running anything.

    A rule matches when its tokens appear in the command in order, so
    ('terraform', 'plan') matches `terraform -chdir=. plan -input=false ...`.
    Rules added later win. A rule with several results returns them in turn
    and then keeps returning the last one. A rule may also write files, the
    way tools that take an output path do. Unmatched commands succeed with
    no output.
    """

    def __init__(self):
        super().__init__(echo=False)
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self._rules: List[Tuple[Tuple[str, ...], List[CommandResult], Dict[Path, str]]] = []

    def respond(self, tokens: Sequence[str], returncode: int = 0, stdout: str = "",
                stderr: str = "", writes: Optional[Dict[Path, str]] = None) -> 'FakeRunner':
        return self.respond_sequence(tokens, [(returncode, stdout, stderr)], writes=writes)

    def respond_sequence(self, tokens: Sequence[str], results: Sequence[tuple],
                         writes: Optional[Dict[Path, str]] = None) -> 'FakeRunner':
        queue = [CommandResult([], *result) for result in results]
        self._rules.append((tuple(tokens), queue, dict(writes or {})))
        return self

    def run(self, args, input_text=None, timeout=None, capture=True) -> CommandResult:
        args = [str(a) for a in args]
        self.calls.append(args)
        self.inputs.append(input_text)
        for tokens, queue, writes in reversed(self._rules):
            if _in_order(tokens, args):
                for path, text in writes.items():
                    Path(path).write_text(text)
                template = queue.pop(0) if len(queue) > 1 else queue[0]
                return CommandResult(args, template.returncode, template.stdout, template.stderr)
        return CommandResult(args, 0, "", "")

    def called(self, *tokens: str) -> bool:
        return any(_in_order(tokens, args) for args in self.calls)

    def calls_matching(self, *tokens: str) -> List[List[str]]:
        return [args for args in self.calls if _in_order(tokens, args)]


def _in_order(tokens: Sequence[str], args: Sequence[str]) -> bool:
    remaining = iter(args)
    return all(token in remaining for token in tokens)


def kube_list(items: List[Dict]) -> str:
    """`kubectl get -o json` output for a list of objects"""
    return json.dumps({'apiVersion': 'v1', 'kind': 'List', 'items': items})


def make_node(name: str, ready: bool = True) -> Dict:
    return {
        'metadata': {'name': name},
        'status': {'conditions': [
            {'type': 'MemoryPressure', 'status': 'False'},
            {'type': 'Ready', 'status': 'True' if ready else 'False'},
        ]},
    }


def make_pod(name: str, phase: str = 'Running') -> Dict:
    return {'metadata': {'name': name}, 'status': {'phase': phase}}


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def kube():
    """Builders for kubectl JSON output"""
    class Kube:
        list = staticmethod(kube_list)
        node = staticmethod(make_node)
        pod = staticmethod(make_pod)
    return Kube


@pytest.fixture
def terraform_outputs() -> Dict:
    return json.loads(json.dumps(TERRAFORM_OUTPUTS))


@pytest.fixture
def fake_aws() -> MagicMock:
    """
    AWSClient mock describing a healthy account and an ACTIVE cluster.

    Tests override individual methods to introduce failures.
    """
    aws = MagicMock(spec=AWSClient)
    aws.get_caller_identity.return_value = {
        'UserId': 'AIDAEXAMPLE', 'Account': ACCOUNT_ID, 'Arn': CALLER_ARN}
    aws.region_available.return_value = True
    aws.get_service_quota.return_value = 5.0
    aws.describe_vpcs.return_value = []
    aws.count_addresses.return_value = 0
    aws.available_cluster_versions.return_value = ['1.26', '1.27', '1.28', '1.29', '1.30']
    aws.bucket_accessible.return_value = True
    aws.bucket_versioning_enabled.return_value = True
    aws.bucket_encryption_enabled.return_value = True
    aws.lock_table_exists.return_value = True
    aws.simulate_permissions.side_effect = lambda arn, actions: {a: 'allowed' for a in actions}
    aws.describe_cluster.return_value = {
        'name': 'public-eks',
        'status': 'ACTIVE',
        'version': '1.28',
        'identity': {'oidc': {'issuer': OIDC_ISSUER}},
    }
    aws.wait_for_cluster_active.return_value = True
    aws.vpc_state.return_value = 'available'
    aws.count_subnets.return_value = 4
    aws.oidc_provider_registered.return_value = True
    return aws


@pytest.fixture
def aws_factory(fake_aws):
    """Factory handing out fake_aws and recording how often it was called"""
    def factory(region, debug):
        factory.calls.append((region, debug))
        return fake_aws
    factory.calls = []
    return factory


@pytest.fixture
def tf_dir(tmp_path) -> Path:
    path = tmp_path / 'infra'
    path.mkdir()
    return path


@pytest.fixture
def tfvars_text() -> str:
    """Contents of a valid terraform.tfvars"""
    return VALID_TFVARS


@pytest.fixture
def write_tfvars(tf_dir):
    """Write terraform.tfvars into the Terraform directory"""
    def write(text: str = VALID_TFVARS, name: str = 'terraform.tfvars') -> Path:
        path = tf_dir / name
        path.write_text(text)
        return path
    return write


@pytest.fixture
def deploy_settings(tf_dir) -> DeploySettings:
    return DeploySettings(aws_region='us-east-1', project_name='public', terraform_dir=tf_dir)


@pytest.fixture
def pipeline_settings(deploy_settings, tmp_path) -> PipelineSettings:
    return PipelineSettings(deploy=deploy_settings, reports_dir=tmp_path / 'reports')


@pytest.fixture
def sleeps() -> List[float]:
    """Injected in place of time.sleep; collects the requested delays"""
    return []


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "pre_deploy: Pre-deployment validation tests"
    )
    config.addinivalue_line(
        "markers", "post_deploy: Post-deployment verification tests"
    )
    config.addinivalue_line(
        "markers", "addons: Add-on installation tests"
    )
    config.addinivalue_line(
        "markers", "pipeline: CI pipeline orchestration tests"
    )
    config.addinivalue_line(
        "markers", "variables: Deployment variable validation tests"
    )
    config.addinivalue_line(
        "markers", "aws: AWS client wrapper tests"
    )
