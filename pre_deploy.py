#!/usr/bin/env python3
"""
pre_deploy.py - Pre-Deployment Validation for the EKS stack

Checks that the local toolchain, AWS account and Terraform inputs are ready
before anything is planned or applied.

SYNOPSIS:
  pre_deploy.py [options]

DESCRIPTION:
  Runs a sequential checklist. A hard failure (missing tools, invalid
  credentials, inaccessible region, missing or invalid variables, unreachable
  remote state) stops the run with exit code 1. Soft failures (quota
  headroom, formatting drift, CIDR overlap, unsupported Kubernetes version,
  missing IAM permissions) are reported as warnings and the run continues.

  Settings come from environment variables (AWS_REGION, PROJECT_NAME, TF_DIR,
  TF_VARS_FILE, TF_STATE_BUCKET, TF_STATE_LOCK_TABLE, DEBUG); flags override.
"""

import sys
import argparse
import traceback
from typing import Any, Callable, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from check_framework import CheckSuite
from lib.aws_client import AWSClient, error_code
from lib.commands import CommandRunner, tool_installed, tool_version
from lib.console import Colors, print_status
from lib.settings import DeploySettings, add_settings_arguments, apply_overrides
from lib.terraform import Terraform
from models.variables import DeploymentVariables, cidrs_overlap
from reporters.markdown_report import write_markdown_report
from utils.tfvars import load_tfvars

REQUIRED_TOOLS = ('terraform', 'aws')
OPTIONAL_TOOLS = ('kubectl', 'helm')

# (service code, quota code) in Service Quotas
VPC_QUOTA = ('vpc', 'L-F678F1CE')
EIP_QUOTA = ('ec2', 'L-0263D0A3')
DEFAULT_QUOTA = 5

REQUIRED_ACTIONS = [
    'eks:CreateCluster',
    'ec2:CreateVpc',
    'ec2:CreateSubnet',
    'iam:CreateRole',
]

ESTIMATED_DEPLOY_TIME = "15-20 minutes"
LATEST_VERSIONS_SHOWN = 5


class PreDeployValidator(CheckSuite):
    """Sequential pre-deployment checklist"""

    title = "🔍 Pre-Deployment Validation"

    def __init__(self, settings: DeploySettings, runner: Optional[CommandRunner] = None,
                 aws_factory: Optional[Callable[[str, bool], AWSClient]] = None,
                 which: Callable[[str], bool] = tool_installed):
        """
        Args:
            settings: Deployment settings
            runner: Command runner for terraform and tool version probes
            aws_factory: Builds the AWS client from (region, debug); only
                called once the required tools are known to be present
            which: Returns True when a tool is on PATH
        """
        super().__init__('pre_deploy')
        self.settings = settings
        self.runner = runner or CommandRunner()
        self.terraform = Terraform(self.runner, settings.terraform_dir)
        self.which = which
        self._aws_factory = aws_factory or (lambda region, debug: AWSClient(region, debug=debug))
        self._aws: Optional[AWSClient] = None
        self._caller_arn: Optional[str] = None
        self._existing_vpcs: Optional[List[Dict[str, Any]]] = None
        self._variables: Optional[DeploymentVariables] = None
        self._tfvars: Dict[str, Any] = {}

    @property
    def aws(self) -> AWSClient:
        if self._aws is None:
            self._aws = self._aws_factory(self.settings.aws_region, self.settings.debug)
        return self._aws

    def run(self):
        self.check_tools()
        self.check_credentials()
        self.check_region()
        self.check_quotas()
        self.check_formatting()
        variables = self.check_variables()
        self.check_cidr_conflicts(variables)
        self.check_kubernetes_version(variables)
        self.check_state_backend()
        self.check_iam_permissions()
        self.print_deployment_details(variables)

    # -- toolchain ----------------------------------------------------------------

    def check_tools(self):
        self.section("📦 Checking required tools...")
        missing = []
        for tool in REQUIRED_TOOLS:
            if self.which(tool):
                self.add_pass(f"{tool} is installed", tool_version(self.runner, tool))
            else:
                print_status("FAIL", f"{tool} is not installed")
                missing.append(tool)

        if missing:
            self.fail(f"Missing required tools: {', '.join(missing)}",
                      "Please install missing tools before proceeding.")

        for tool in OPTIONAL_TOOLS:
            if self.which(tool):
                self.add_pass(f"{tool} is installed", tool_version(self.runner, tool))
            else:
                self.add_warning(f"{tool} is not installed",
                                 "Needed for post-deployment verification and add-ons")

    # -- AWS account --------------------------------------------------------------

    def check_credentials(self):
        self.section("🔐 Checking AWS credentials...")
        try:
            identity = self.aws.get_caller_identity()
        except (ClientError, BotoCoreError) as e:
            self.fail("AWS credentials are invalid or not configured",
                      f"{e}\nRun 'aws configure' or export AWS credentials")

        self._caller_arn = identity.get('Arn')
        self.add_pass("AWS credentials are valid",
                      f"Account ID: {identity.get('Account')}\nIAM ARN: {self._caller_arn}")

    def check_region(self):
        self.section("🌍 Checking AWS region...")
        region = self.settings.aws_region
        if not region:
            self.fail("AWS region is not configured", "Set AWS_REGION")
        if not self.aws.region_available(region):
            self.fail(f"Region {region} is not accessible")
        self.add_pass(f"Region {region} is accessible")

    def check_quotas(self):
        self.section("📊 Checking AWS service quotas...")
        needs = self._planned_variables()
        if needs.validate():
            # invalid values are reported by the variables check
            needs = DeploymentVariables()

        try:
            self._existing_vpcs = self.aws.describe_vpcs()
        except (ClientError, BotoCoreError) as e:
            self.add_warning("Could not count existing VPCs", str(e))
        else:
            quota = self.aws.get_service_quota(*VPC_QUOTA, default=DEFAULT_QUOTA)
            self._quota_result("VPCs", len(self._existing_vpcs), 1, quota)

        try:
            eip_count = self.aws.count_addresses()
        except (ClientError, BotoCoreError) as e:
            self.add_warning("Could not count Elastic IPs", str(e))
        else:
            quota = self.aws.get_service_quota(*EIP_QUOTA, default=DEFAULT_QUOTA)
            self._quota_result("Elastic IPs", eip_count, needs.nat_gateway_count, quota)

    def _quota_result(self, label: str, used: int, needed: int, quota: float):
        details = f"In use: {used}, needed: {needed}, quota: {quota:g}"
        if used + needed > quota:
            self.add_warning(f"{label}: {used}/{quota:g} (close to quota limit)", details,
                             used=used, needed=needed, quota=quota)
        else:
            self.add_pass(f"{label}: {used}/{quota:g}", details,
                          used=used, needed=needed, quota=quota)

    # -- Terraform inputs ---------------------------------------------------------

    def check_formatting(self):
        self.section("📝 Checking Terraform formatting...")
        result = self.terraform.fmt_check()
        if result.ok:
            self.add_pass("Terraform files are properly formatted")
            return
        files = result.stdout.strip()
        details = "Run: terraform fmt -recursive"
        if files:
            details = f"{details}\nFiles:\n{files}"
        self.add_warning("Terraform files need formatting", details)

    def _load_variables(self) -> DeploymentVariables:
        """Parse the vars file once; OSError or UnicodeDecodeError when it cannot be read"""
        if self._variables is None:
            self._tfvars = load_tfvars(self.settings.tfvars_path)
            self._variables = DeploymentVariables.from_tfvars(self._tfvars)
        return self._variables

    def _planned_variables(self) -> DeploymentVariables:
        """Variables from the vars file if readable, defaults otherwise"""
        if not self.settings.tfvars_path.exists():
            return DeploymentVariables()
        try:
            return self._load_variables()
        except (OSError, UnicodeDecodeError):
            # reported by the variables check
            return DeploymentVariables()

    def check_variables(self) -> DeploymentVariables:
        self.section("📄 Checking variables file...")
        path = self.settings.tfvars_path
        if not path.exists():
            self.fail(f"{path.name} not found",
                      f"Expected at {path}\nCopy terraform.tfvars.example and adjust the values")
        try:
            variables = self._load_variables()
        except (OSError, UnicodeDecodeError) as e:
            self.fail(f"{path.name} could not be read", str(e))
        self.add_pass(f"{path.name} found")

        errors = variables.validate()
        if errors:
            self.fail(f"{len(errors)} invalid variable(s) in {path.name}",
                      "\n".join(str(e) for e in errors))
        self.add_pass("All variables are valid")

        if 'aws_region' in self._tfvars and variables.aws_region != self.settings.aws_region:
            self.add_warning(
                "Variables file region differs from the target region",
                f"aws_region = {variables.aws_region}, AWS_REGION = {self.settings.aws_region}")
        return variables

    def check_cidr_conflicts(self, variables: DeploymentVariables):
        self.section("🌐 Checking VPC CIDR conflicts...")
        if self._existing_vpcs is None:
            try:
                self._existing_vpcs = self.aws.describe_vpcs()
            except (ClientError, BotoCoreError) as e:
                self.add_warning("Could not list existing VPCs", str(e))
                return

        conflicts = []
        for vpc in self._existing_vpcs:
            blocks = [a['CidrBlock'] for a in vpc.get('CidrBlockAssociationSet', []) if a.get('CidrBlock')]
            if not blocks and vpc.get('CidrBlock'):
                blocks = [vpc['CidrBlock']]
            for block in blocks:
                if cidrs_overlap(variables.vpc_cidr, block):
                    conflicts.append(f"{vpc.get('VpcId', 'unknown')} ({block})")

        if conflicts:
            self.add_warning(f"VPC CIDR {variables.vpc_cidr} overlaps existing VPCs",
                             "\n".join(conflicts), conflicts=conflicts)
        else:
            self.add_pass(f"No CIDR conflicts for {variables.vpc_cidr}")

    def check_kubernetes_version(self, variables: DeploymentVariables):
        self.section("☸️  Checking Kubernetes version...")
        try:
            versions = self.aws.available_cluster_versions()
        except (ClientError, BotoCoreError) as e:
            self.add_warning("Could not list EKS Kubernetes versions", str(e))
            return

        version = variables.kubernetes_version
        if version in versions:
            self.add_pass(f"Kubernetes version {version} is supported")
        else:
            latest = list(reversed(versions[-LATEST_VERSIONS_SHOWN:]))
            self.add_warning(f"Kubernetes version {version} may not be supported",
                             f"Available versions: {', '.join(latest) or 'none reported'}")

    # -- remote state ---------------------------------------------------------

    def check_state_backend(self):
        bucket = self.settings.state_bucket
        table = self.settings.lock_table
        if not bucket and not table:
            return

        self.section("🗄️  Checking Terraform state backend...")
        if bucket:
            if not self.aws.bucket_accessible(bucket):
                self.fail(f"State bucket {bucket} is not accessible")
            self.add_pass(f"State bucket {bucket} is accessible")

            try:
                if self.aws.bucket_versioning_enabled(bucket):
                    self.add_pass("State bucket versioning is enabled")
                else:
                    self.add_warning("State bucket versioning is not enabled")
            except (ClientError, BotoCoreError) as e:
                self.add_warning("Could not read state bucket versioning", str(e))

            try:
                if self.aws.bucket_encryption_enabled(bucket):
                    self.add_pass("State bucket encryption is enabled")
                else:
                    self.add_warning("State bucket encryption is not enabled")
            except (ClientError, BotoCoreError) as e:
                self.add_warning("Could not read state bucket encryption", str(e))

        if table:
            if not self.aws.lock_table_exists(table):
                self.fail(f"State lock table {table} is not accessible")
            self.add_pass(f"State lock table {table} is accessible")

    # -- IAM ----------------------------------------------------------------------

    def check_iam_permissions(self):
        self.section("👤 Checking IAM permissions...")
        if not self._caller_arn:
            self.add_skip("IAM permission simulation", "caller ARN unknown")
            return
        try:
            decisions = self.aws.simulate_permissions(self._caller_arn, REQUIRED_ACTIONS)
        except (ClientError, BotoCoreError) as e:
            self.add_skip("IAM permission simulation",
                          f"policy simulator unavailable ({error_code(e) or e})")
            return

        for action in REQUIRED_ACTIONS:
            decision = decisions.get(action, 'unknown')
            if decision == 'allowed':
                self.add_pass(f"{action} allowed")
            else:
                self.add_warning(f"{action} may be denied", f"Simulator decision: {decision}",
                                 action=action, decision=decision)

    def print_deployment_details(self, variables: DeploymentVariables):
        print()
        Colors.info(f"⏱️  Estimated deployment time: {ESTIMATED_DEPLOY_TIME}")
        print()
        print("Deployment Details:")
        print(f"  Project: {variables.project_name}")
        print(f"  Region: {self.settings.aws_region}")
        print(f"  Kubernetes Version: {variables.kubernetes_version}")
        print(f"  VPC CIDR: {variables.vpc_cidr}")

    def report_context(self) -> Dict[str, str]:
        variables = self._variables or DeploymentVariables()
        return {
            'Project': variables.project_name,
            'Region': self.settings.aws_region,
            'Kubernetes Version': variables.kubernetes_version,
            'VPC CIDR': variables.vpc_cidr,
        }


def parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description='Pre-deployment validation for the EKS Terraform stack',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate the stack in the current directory
  %(prog)s

  # Validate another directory and write a markdown report
  %(prog)s -d infra/eks --report reports/pre-deploy.md
        """
    )
    add_settings_arguments(parser)
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main entry point"""
    args = parse_arguments(argv)
    settings = apply_overrides(DeploySettings.from_environment(), args)

    validator = PreDeployValidator(settings)
    exit_code = validator.execute()
    if exit_code == 0:
        print()
        Colors.success("You can now proceed with terraform plan/apply")

    if args.report:
        path = write_markdown_report(validator.results, args.report, validator.title,
                                     validator.report_context())
        Colors.info(f"Markdown report written to: {path}")
    return exit_code


def cli():
    """Console script entry point"""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print()
        Colors.warning("Operation cancelled by user")
        sys.exit(130)
    except Exception as e:
        Colors.error(f"Unexpected error: {e}")
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    cli()
