"""
Add-on Installation Tests

Validates the Helm and kubectl commands issued for each add-on and that one
add-on failing never stops the other.
"""

import json

import pytest

from install_addons import (
    AddonInstaller,
    LB_CONTROLLER_READY_TIMEOUT,
    METRICS_SERVER_MANIFEST,
    METRICS_SERVER_READY_TIMEOUT,
)
from models.check_result import CheckStatus


@pytest.fixture
def outputs_runner(runner, terraform_outputs):
    runner.respond(['terraform', 'output', '-json'], stdout=json.dumps(terraform_outputs))
    return runner


@pytest.fixture
def installer(deploy_settings, outputs_runner):
    return AddonInstaller(deploy_settings, runner=outputs_runner)


def set_values(helm_args):
    values = {}
    for i, arg in enumerate(helm_args):
        if arg == '--set':
            key, _, value = helm_args[i + 1].partition('=')
            values[key] = value
    return values


@pytest.mark.addons
def test_installs_both_addons(installer, outputs_runner):
    assert installer.execute() == 0
    assert installer.installed == ["AWS Load Balancer Controller", "Metrics Server"]
    assert installer.results.count(CheckStatus.PASS) == 2

    assert outputs_runner.called('helm', 'repo', 'add', 'eks', 'https://aws.github.io/eks-charts')
    assert outputs_runner.called('helm', 'repo', 'update')
    assert outputs_runner.called('kubectl', 'apply', '-f', METRICS_SERVER_MANIFEST)


@pytest.mark.addons
def test_load_balancer_controller_helm_values(installer, outputs_runner, terraform_outputs):
    role_arn = terraform_outputs['aws_load_balancer_controller_role_arn']['value']
    installer.execute()

    helm = outputs_runner.calls_matching('helm', 'upgrade', '--install')[0]
    assert helm[3:5] == ['aws-load-balancer-controller', 'eks/aws-load-balancer-controller']
    assert helm[helm.index('--namespace') + 1] == 'kube-system'
    assert '--wait' in helm
    assert set_values(helm) == {
        'clusterName': 'public-eks',
        'serviceAccount.create': 'true',
        'serviceAccount.name': 'aws-load-balancer-controller',
        'serviceAccount.annotations.eks\\.amazonaws\\.com/role-arn': role_arn,
        'region': 'us-east-1',
        'vpcId': 'vpc-0123456789abcdef0',
    }


@pytest.mark.addons
def test_readiness_waits_use_addon_selectors(installer, outputs_runner):
    installer.execute()

    assert outputs_runner.called('kubectl', 'wait', '-l', 'app.kubernetes.io/name=aws-load-balancer-controller',
                                 f'--timeout={LB_CONTROLLER_READY_TIMEOUT}s')
    assert outputs_runner.called('kubectl', 'wait', '-l', 'k8s-app=metrics-server',
                                 f'--timeout={METRICS_SERVER_READY_TIMEOUT}s')


@pytest.mark.addons
def test_missing_role_arn_skips_controller_but_installs_metrics_server(
        deploy_settings, runner, terraform_outputs):
    del terraform_outputs['aws_load_balancer_controller_role_arn']
    runner.respond(['terraform', 'output', '-json'], stdout=json.dumps(terraform_outputs))
    installer = AddonInstaller(deploy_settings, runner=runner)

    assert installer.execute() == 0
    error = installer.results.results[0]
    assert error.status == CheckStatus.ERROR
    assert error.description == "AWS Load Balancer Controller IAM role not found"
    assert not runner.called('helm')
    assert installer.installed == ["Metrics Server"]


@pytest.mark.addons
def test_helm_repo_add_failure_is_tolerated(installer, outputs_runner):
    outputs_runner.respond(['helm', 'repo', 'add'], returncode=1,
                           stderr='repository name (eks) already exists')

    installer.execute()

    assert "AWS Load Balancer Controller" in installer.installed


@pytest.mark.addons
def test_helm_install_failure_is_error_and_continues(installer, outputs_runner):
    outputs_runner.respond(['helm', 'upgrade', '--install'], returncode=1, stderr="timed out waiting")

    assert installer.execute() == 0
    assert installer.results.results[0].status == CheckStatus.ERROR
    assert installer.installed == ["Metrics Server"]


@pytest.mark.addons
def test_readiness_timeout_is_warning_and_still_counted(installer, outputs_runner):
    outputs_runner.respond(['kubectl', 'wait', 'k8s-app=metrics-server'], returncode=1,
                           stderr="timed out waiting for the condition")

    assert installer.execute() == 0
    assert installer.installed == ["AWS Load Balancer Controller", "Metrics Server"]
    assert installer.results.results[-1].status == CheckStatus.WARNING


@pytest.mark.addons
def test_metrics_server_apply_failure_is_error(installer, outputs_runner):
    outputs_runner.respond(['kubectl', 'apply', '-f', METRICS_SERVER_MANIFEST], returncode=1,
                           stderr="unable to connect")

    assert installer.execute() == 0
    assert installer.results.results[-1].status == CheckStatus.ERROR
    assert installer.installed == ["AWS Load Balancer Controller"]
