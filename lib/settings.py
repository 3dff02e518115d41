"""Environment-driven settings for the deployment tools"""

import argparse
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_REGION = "us-east-1"
DEFAULT_PROJECT = "public"
DEFAULT_TFVARS_FILE = "terraform.tfvars"

_TRUE_VALUES = ('1', 'true', 'yes', 'on')


def env_flag(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    value = env.get(name)
    if value is None or value == '':
        return default
    return value.strip().lower() in _TRUE_VALUES


@dataclass
class DeploySettings:
    """
    Settings shared by pre-deploy, post-deploy and add-on installation.

    Everything comes from environment variables so the tools run in CI with
    no arguments; CLI flags only override.
    """
    aws_region: str = DEFAULT_REGION
    project_name: str = DEFAULT_PROJECT
    terraform_dir: Path = field(default_factory=lambda: Path('.'))
    tfvars_file: str = DEFAULT_TFVARS_FILE
    state_bucket: Optional[str] = None
    lock_table: Optional[str] = None
    debug: bool = False

    @classmethod
    def from_environment(cls, env: Optional[Mapping[str, str]] = None) -> 'DeploySettings':
        env = os.environ if env is None else env
        return cls(
            aws_region=env.get('AWS_REGION') or env.get('AWS_DEFAULT_REGION') or DEFAULT_REGION,
            project_name=env.get('PROJECT_NAME') or DEFAULT_PROJECT,
            terraform_dir=Path(env.get('TF_DIR') or '.'),
            tfvars_file=env.get('TF_VARS_FILE') or DEFAULT_TFVARS_FILE,
            state_bucket=env.get('TF_STATE_BUCKET') or None,
            lock_table=env.get('TF_STATE_LOCK_TABLE') or None,
            debug=env_flag(env, 'DEBUG'),
        )

    @property
    def tfvars_path(self) -> Path:
        path = Path(self.tfvars_file)
        return path if path.is_absolute() else self.terraform_dir / path

    @property
    def default_cluster_name(self) -> str:
        return f"{self.project_name}-eks"


@dataclass
class PipelineSettings:
    """CI pipeline options layered on top of DeploySettings"""
    deploy: DeploySettings = field(default_factory=DeploySettings)
    action: str = "apply"
    auto_approve: bool = False
    variant: str = "basic"
    slack_webhook_url: Optional[str] = None
    email_to: Optional[str] = None
    email_from: str = "eks-pipeline@localhost"
    smtp_host: Optional[str] = None
    smtp_port: int = 25
    reports_dir: Path = field(default_factory=lambda: Path('reports'))

    @classmethod
    def from_environment(cls, env: Optional[Mapping[str, str]] = None) -> 'PipelineSettings':
        env = os.environ if env is None else env
        return cls(
            deploy=DeploySettings.from_environment(env),
            action=(env.get('TF_ACTION') or 'apply').lower(),
            auto_approve=env_flag(env, 'AUTO_APPROVE'),
            variant=(env.get('PIPELINE_VARIANT') or 'basic').lower(),
            slack_webhook_url=env.get('SLACK_WEBHOOK_URL') or None,
            email_to=env.get('NOTIFY_EMAIL_TO') or None,
            email_from=env.get('NOTIFY_EMAIL_FROM') or "eks-pipeline@localhost",
            smtp_host=env.get('SMTP_HOST') or None,
            smtp_port=int(env.get('SMTP_PORT') or 25),
            reports_dir=Path(env.get('REPORTS_DIR') or 'reports'),
        )


def add_settings_arguments(parser: argparse.ArgumentParser):
    """Optional overrides for the environment-driven settings"""
    group = parser.add_argument_group('Settings (override environment variables)')
    group.add_argument('-d', '--terraform-dir',
                       help='Terraform working directory (env: TF_DIR, default: .)')
    group.add_argument('--var-file',
                       help='Variables file relative to the Terraform directory '
                            '(env: TF_VARS_FILE, default: terraform.tfvars)')
    group.add_argument('-r', '--region',
                       help='AWS region (env: AWS_REGION, default: us-east-1)')
    group.add_argument('-p', '--project',
                       help='Project name (env: PROJECT_NAME, default: public)')
    group.add_argument('--debug', action='store_true',
                       help='Print AWS CLI equivalents of API calls (env: DEBUG)')
    group.add_argument('--report',
                       help='Also write a markdown summary to this path')


def apply_overrides(settings: DeploySettings, args: argparse.Namespace) -> DeploySettings:
    overrides = {}
    if getattr(args, 'terraform_dir', None):
        overrides['terraform_dir'] = Path(args.terraform_dir)
    if getattr(args, 'var_file', None):
        overrides['tfvars_file'] = args.var_file
    if getattr(args, 'region', None):
        overrides['aws_region'] = args.region
    if getattr(args, 'project', None):
        overrides['project_name'] = args.project
    if getattr(args, 'debug', False):
        overrides['debug'] = True
    return replace(settings, **overrides)
