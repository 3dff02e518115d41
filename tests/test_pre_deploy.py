"""
Pre-Deployment Validation Tests

Runs the pre-deploy checklist against a scripted command runner and a
mocked AWS account.
"""

from dataclasses import replace

import pytest
from botocore.exceptions import ClientError, NoCredentialsError

from models.check_result import CheckStatus
from pre_deploy import PreDeployValidator, REQUIRED_ACTIONS


def client_error(code: str, operation: str = 'Operation') -> ClientError:
    return ClientError({'Error': {'Code': code, 'Message': code}}, operation)


@pytest.fixture
def validator(deploy_settings, runner, aws_factory, write_tfvars):
    write_tfvars()
    return PreDeployValidator(deploy_settings, runner=runner, aws_factory=aws_factory,
                              which=lambda tool: True)


def descriptions(validator, status: CheckStatus):
    return [r.description for r in validator.results.results if r.status == status]


@pytest.mark.pre_deploy
def test_healthy_environment_passes(validator, fake_aws):
    assert validator.execute() == 0
    assert validator.results.count(CheckStatus.FAIL) == 0
    assert validator.results.count(CheckStatus.WARNING) == 0
    fake_aws.simulate_permissions.assert_called_once()


@pytest.mark.pre_deploy
def test_missing_required_tools_fail_before_any_aws_call(deploy_settings, runner, aws_factory):
    """All required tools absent => non-zero exit before the AWS client exists"""
    validator = PreDeployValidator(deploy_settings, runner=runner, aws_factory=aws_factory,
                                   which=lambda tool: False)

    assert validator.execute() == 1
    assert aws_factory.calls == []
    failure = validator.results.results[-1]
    assert failure.status == CheckStatus.FAIL
    assert failure.description == "Missing required tools: terraform, aws"


@pytest.mark.pre_deploy
def test_missing_optional_tools_only_warn(deploy_settings, runner, aws_factory, write_tfvars):
    write_tfvars()
    validator = PreDeployValidator(deploy_settings, runner=runner, aws_factory=aws_factory,
                                   which=lambda tool: tool in ('terraform', 'aws'))

    assert validator.execute() == 0
    assert descriptions(validator, CheckStatus.WARNING) == [
        "kubectl is not installed", "helm is not installed"]


@pytest.mark.pre_deploy
def test_tool_versions_are_reported(validator, runner):
    runner.respond(['terraform', '--version'], stdout="Terraform v1.6.6\non linux_amd64\n")

    validator.execute()

    terraform = validator.results.results[0]
    assert terraform.description == "terraform is installed"
    assert terraform.details == "Terraform v1.6.6"


@pytest.mark.pre_deploy
@pytest.mark.parametrize("error", [NoCredentialsError(), client_error('InvalidClientTokenId')])
def test_invalid_credentials_are_hard_failure(validator, fake_aws, error):
    fake_aws.get_caller_identity.side_effect = error

    assert validator.execute() == 1
    assert validator.results.results[-1].description == "AWS credentials are invalid or not configured"
    fake_aws.region_available.assert_not_called()


@pytest.mark.pre_deploy
def test_inaccessible_region_is_hard_failure(validator, fake_aws):
    fake_aws.region_available.return_value = False

    assert validator.execute() == 1
    assert validator.results.results[-1].description == "Region us-east-1 is not accessible"


@pytest.mark.pre_deploy
def test_quota_headroom_warns_when_deployment_would_exceed_quota(validator, fake_aws):
    fake_aws.describe_vpcs.return_value = [{'VpcId': f'vpc-{i}', 'CidrBlock': f'172.{i}.0.0/16'}
                                           for i in range(5)]
    fake_aws.count_addresses.return_value = 4

    assert validator.execute() == 0
    warnings = descriptions(validator, CheckStatus.WARNING)
    assert "VPCs: 5/5 (close to quota limit)" in warnings
    # 4 in use plus one NAT gateway EIP fits in 5
    assert "Elastic IPs: 4/5" in descriptions(validator, CheckStatus.PASS)


@pytest.mark.pre_deploy
def test_quota_uses_nat_gateway_count_from_variables(validator, fake_aws, write_tfvars, tfvars_text):
    write_tfvars(tfvars_text.replace("single_nat_gateway = true", "single_nat_gateway = false"))
    fake_aws.count_addresses.return_value = 4

    validator.execute()

    eip = next(r for r in validator.results.results if r.description.startswith("Elastic IPs"))
    assert eip.status == CheckStatus.WARNING
    assert eip.metadata['needed'] == 2


@pytest.mark.pre_deploy
def test_quota_lookup_falls_back_to_default(validator, fake_aws):
    validator.execute()

    fake_aws.get_service_quota.assert_any_call('vpc', 'L-F678F1CE', default=5)
    fake_aws.get_service_quota.assert_any_call('ec2', 'L-0263D0A3', default=5)


@pytest.mark.pre_deploy
def test_formatting_drift_is_warning(validator, runner):
    runner.respond(['terraform', 'fmt', '-check'], returncode=3, stdout="main.tf\nvpc.tf\n")

    assert validator.execute() == 0
    drift = next(r for r in validator.results.results if r.description == "Terraform files need formatting")
    assert drift.status == CheckStatus.WARNING
    assert "vpc.tf" in drift.details


@pytest.mark.pre_deploy
def test_missing_tfvars_is_hard_failure(deploy_settings, runner, aws_factory):
    validator = PreDeployValidator(deploy_settings, runner=runner, aws_factory=aws_factory,
                                   which=lambda tool: True)

    assert validator.execute() == 1
    assert validator.results.results[-1].description == "terraform.tfvars not found"


@pytest.mark.pre_deploy
def test_invalid_variables_are_hard_failure(validator, write_tfvars, tfvars_text, fake_aws):
    write_tfvars(tfvars_text.replace('node_group_desired_size = 2', 'node_group_desired_size = 7'))

    assert validator.execute() == 1
    failure = validator.results.results[-1]
    assert failure.description == "1 invalid variable(s) in terraform.tfvars"
    assert "node_group_desired_size" in failure.details
    fake_aws.available_cluster_versions.assert_not_called()


@pytest.mark.pre_deploy
def test_cidr_overlap_with_existing_vpc_warns(validator, fake_aws):
    fake_aws.describe_vpcs.return_value = [
        {'VpcId': 'vpc-aaa', 'CidrBlock': '10.0.128.0/17',
         'CidrBlockAssociationSet': [{'CidrBlock': '10.0.128.0/17'}]},
        {'VpcId': 'vpc-bbb', 'CidrBlock': '110.0.0.0/16'},
    ]

    assert validator.execute() == 0
    conflict = next(r for r in validator.results.results if "overlaps existing VPCs" in r.description)
    assert conflict.status == CheckStatus.WARNING
    assert conflict.metadata['conflicts'] == ['vpc-aaa (10.0.128.0/17)']


@pytest.mark.pre_deploy
def test_unsupported_kubernetes_version_lists_latest_five(validator, fake_aws):
    fake_aws.available_cluster_versions.return_value = [
        '1.24', '1.25', '1.26', '1.27', '1.29', '1.30', '1.31']

    assert validator.execute() == 0
    version = next(r for r in validator.results.results if r.description.startswith("Kubernetes version"))
    assert version.status == CheckStatus.WARNING
    assert version.details == "Available versions: 1.31, 1.30, 1.29, 1.27, 1.26"


@pytest.mark.pre_deploy
def test_state_backend_checked_when_configured(deploy_settings, runner, aws_factory, fake_aws, write_tfvars):
    write_tfvars()
    settings = replace(deploy_settings, state_bucket='tf-state', lock_table='tf-locks')
    fake_aws.bucket_encryption_enabled.return_value = False
    validator = PreDeployValidator(settings, runner=runner, aws_factory=aws_factory, which=lambda t: True)

    assert validator.execute() == 0
    assert "State bucket encryption is not enabled" in descriptions(validator, CheckStatus.WARNING)
    assert "State lock table tf-locks is accessible" in descriptions(validator, CheckStatus.PASS)


@pytest.mark.pre_deploy
def test_unreachable_state_bucket_is_hard_failure(deploy_settings, runner, aws_factory, fake_aws, write_tfvars):
    write_tfvars()
    settings = replace(deploy_settings, state_bucket='tf-state')
    fake_aws.bucket_accessible.return_value = False
    validator = PreDeployValidator(settings, runner=runner, aws_factory=aws_factory, which=lambda t: True)

    assert validator.execute() == 1
    assert validator.results.results[-1].description == "State bucket tf-state is not accessible"
    fake_aws.lock_table_exists.assert_not_called()


@pytest.mark.pre_deploy
def test_state_backend_skipped_when_not_configured(validator, fake_aws):
    validator.execute()

    fake_aws.bucket_accessible.assert_not_called()
    fake_aws.lock_table_exists.assert_not_called()


@pytest.mark.pre_deploy
def test_denied_iam_actions_warn(validator, fake_aws):
    fake_aws.simulate_permissions.side_effect = None
    fake_aws.simulate_permissions.return_value = {
        action: ('implicitDeny' if action == 'iam:CreateRole' else 'allowed')
        for action in REQUIRED_ACTIONS}

    assert validator.execute() == 0
    assert descriptions(validator, CheckStatus.WARNING) == ["iam:CreateRole may be denied"]


@pytest.mark.pre_deploy
def test_unavailable_policy_simulator_is_skipped(validator, fake_aws):
    fake_aws.simulate_permissions.side_effect = client_error('AccessDenied', 'SimulatePrincipalPolicy')

    assert validator.execute() == 0
    skipped = validator.results.results[-1]
    assert skipped.status == CheckStatus.SKIP
    assert "AccessDenied" in skipped.details


@pytest.mark.pre_deploy
def test_region_mismatch_between_tfvars_and_environment_warns(validator, write_tfvars, tfvars_text):
    write_tfvars(tfvars_text.replace('"us-east-1"', '"us-west-2"'))

    assert validator.execute() == 0
    assert "Variables file region differs from the target region" in descriptions(validator, CheckStatus.WARNING)


@pytest.mark.pre_deploy
def test_undecodable_tfvars_is_hard_failure(validator, tf_dir, fake_aws):
    (tf_dir / 'terraform.tfvars').write_bytes(b'project_name = "\xff\xfe"\n')

    assert validator.execute() == 1
    failure = validator.results.results[-1]
    assert failure.description == "terraform.tfvars could not be read"
    assert "utf-8" in failure.details
    # the quota check ran on defaults before the file was reported
    fake_aws.get_service_quota.assert_any_call('vpc', 'L-F678F1CE', default=5)
    fake_aws.available_cluster_versions.assert_not_called()


@pytest.mark.pre_deploy
def test_unreadable_tfvars_is_hard_failure(deploy_settings, runner, aws_factory, tf_dir):
    (tf_dir / 'terraform.tfvars').mkdir()
    validator = PreDeployValidator(deploy_settings, runner=runner, aws_factory=aws_factory,
                                   which=lambda tool: True)

    assert validator.execute() == 1
    assert validator.results.results[-1].description == "terraform.tfvars could not be read"


@pytest.mark.pre_deploy
def test_quoted_numbers_in_tfvars_are_accepted(validator, write_tfvars, tfvars_text):
    write_tfvars(tfvars_text.replace("node_disk_size          = 20", 'node_disk_size          = "20"'))

    assert validator.execute() == 0
    assert "All variables are valid" in descriptions(validator, CheckStatus.PASS)
