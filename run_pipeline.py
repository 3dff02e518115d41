#!/usr/bin/env python3
"""
run_pipeline.py - CI pipeline for the EKS Terraform stack

SYNOPSIS:
  run_pipeline.py [--action apply|destroy] [--variant basic|full] [--auto-approve]

DESCRIPTION:
  Runs the deployment stages in order and stops at the first failed stage.

  basic:  checkout -> format -> init -> validate -> plan -> approval ->
          apply/destroy -> post-deploy verification -> add-ons
  full:   basic plus variable validation, parallel security scans (tfsec,
          checkov) after validate, cost estimation (infracost) after plan and
          Slack/email notifications at the end

  The plan runs with -detailed-exitcode. When it reports no changes the
  approval and apply/destroy stages are skipped. Otherwise approval is
  required unless auto-approve is set; without a terminal to prompt on, the
  pipeline aborts instead of waiting.

  Settings come from environment variables (TF_ACTION, AUTO_APPROVE,
  PIPELINE_VARIANT, SLACK_WEBHOOK_URL, NOTIFY_EMAIL_TO, SMTP_HOST, ...).
"""

import sys
import argparse
import traceback
from dataclasses import replace
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from check_framework import CheckSuite, HardFailure
from install_addons import AddonInstaller
from lib.commands import CommandError, CommandRunner
from lib.console import Colors
from lib.notify import Notifier
from lib.scanners import estimate_cost, run_security_scans
from lib.settings import PipelineSettings, add_settings_arguments, apply_overrides
from lib.terraform import PlanResult, Terraform
from models.check_result import CheckStatus
from models.variables import DeploymentVariables
from post_deploy import PostDeployVerifier
from reporters.markdown_report import write_markdown_report
from utils.tfvars import load_tfvars

ACTIONS = ('apply', 'destroy')
VARIANTS = ('basic', 'full')
PLAN_FILE = 'tfplan'


def prompt_for_approval(prompt: str) -> bool:
    answer = input(prompt)
    return answer.strip().lower() in ('y', 'yes')


class PipelineError(Exception):
    """Invalid pipeline configuration"""


class Pipeline(CheckSuite):
    """Stage runner shared by the basic and full variants"""

    title = "🚀 EKS Deployment Pipeline"

    def __init__(self, settings: PipelineSettings, runner: Optional[CommandRunner] = None,
                 approver: Callable[[str], bool] = prompt_for_approval,
                 interactive: Optional[bool] = None,
                 post_deploy_factory: Optional[Callable[..., CheckSuite]] = None,
                 addon_factory: Optional[Callable[..., CheckSuite]] = None,
                 notifier: Optional[Notifier] = None):
        """
        Args:
            settings: Pipeline settings
            runner: Command runner shared by every stage
            approver: Asks the operator to approve a plan, True to proceed
            interactive: Whether the approver can be asked; defaults to
                whether stdin is a terminal
            post_deploy_factory: Builds the verification suite from
                (deploy settings, runner)
            addon_factory: Builds the add-on suite from (deploy settings, runner)
            notifier: Delivers the final result in the full variant
        """
        if settings.action not in ACTIONS:
            raise PipelineError(f"Unknown action '{settings.action}', expected one of {', '.join(ACTIONS)}")
        if settings.variant not in VARIANTS:
            raise PipelineError(f"Unknown variant '{settings.variant}', expected one of {', '.join(VARIANTS)}")

        super().__init__('pipeline')
        self.settings = settings
        self.runner = runner or CommandRunner()
        self.terraform = Terraform(self.runner, settings.deploy.terraform_dir)
        self.approver = approver
        self.interactive = sys.stdin.isatty() if interactive is None else interactive
        self.post_deploy_factory = post_deploy_factory or PostDeployVerifier
        self.addon_factory = addon_factory or AddonInstaller
        self.notifier = notifier or Notifier(settings)
        self.plan: Optional[PlanResult] = None
        self.stages_run: List[str] = []

    @property
    def full(self) -> bool:
        return self.settings.variant == 'full'

    @property
    def destroying(self) -> bool:
        return self.settings.action == 'destroy'

    def stages(self) -> List[Tuple[str, Callable[[], None]]]:
        stages = [
            ("Checkout", self.stage_checkout),
            ("Format Check", self.stage_format),
            ("Init", self.stage_init),
            ("Validate", self.stage_validate),
        ]
        if self.full:
            stages += [
                ("Variable Validation", self.stage_variables),
                ("Security Scan", self.stage_security_scan),
            ]
        stages.append(("Plan", self.stage_plan))
        if self.full:
            stages.append(("Cost Estimation", self.stage_cost))
        stages += [
            ("Approval", self.stage_approval),
            ("Destroy" if self.destroying else "Apply", self.stage_apply),
        ]
        if not self.destroying:
            stages += [
                ("Post-Deploy Verification", self.stage_post_deploy),
                ("Add-ons", self.stage_addons),
            ]
        return stages

    def run(self):
        print(f"Action: {self.settings.action}")
        print(f"Variant: {self.settings.variant}")
        print(f"Terraform directory: {self.settings.deploy.terraform_dir}")

        for title, stage in self.stages():
            self.section(title)
            self.stages_run.append(title)
            try:
                stage()
            except CommandError as e:
                self.fail(f"{title} failed", str(e))
            except HardFailure:
                raise
            except Exception as e:
                self.fail(f"{title} failed", f"{type(e).__name__}: {e}")

    def execute(self) -> int:
        exit_code = super().execute()
        if self.full:
            self.send_notifications(exit_code == 0)
        return exit_code

    # -- stages -------------------------------------------------------------------

    def stage_checkout(self):
        result = self.runner.run(['git', '-C', str(self.settings.deploy.terraform_dir),
                                  'rev-parse', '--short', 'HEAD'])
        if result.ok:
            self.add_pass(f"Source at commit {result.stdout.strip()}")
        else:
            self.add_warning("Terraform directory is not a git checkout",
                             "Continuing with the files on disk")

    def stage_format(self):
        result = self.terraform.fmt_check()
        if result.ok:
            self.add_pass("Terraform files are properly formatted")
        else:
            self.add_warning("Terraform files need formatting",
                             result.stdout.strip() or "Run: terraform fmt -recursive")

    def stage_init(self):
        deploy = self.settings.deploy
        backend = {}
        if deploy.state_bucket:
            backend['bucket'] = deploy.state_bucket
            backend['region'] = deploy.aws_region
        if deploy.lock_table:
            backend['dynamodb_table'] = deploy.lock_table
        self.terraform.init(backend)
        self.add_pass("Terraform initialized",
                      f"Backend: s3://{deploy.state_bucket}" if deploy.state_bucket else None)

    def stage_validate(self):
        self.terraform.validate()
        self.add_pass("Terraform configuration is valid")

    def stage_variables(self):
        path = self.settings.deploy.tfvars_path
        if not path.exists():
            self.add_warning(f"{path.name} not found", "Terraform defaults will be used")
            return
        try:
            values = load_tfvars(path)
        except (OSError, UnicodeDecodeError) as e:
            self.fail(f"{path.name} could not be read", str(e))
        errors = DeploymentVariables.from_tfvars(values).validate()
        if errors:
            self.fail(f"{len(errors)} invalid variable(s) in {path.name}",
                      "\n".join(str(e) for e in errors))
        self.add_pass("All variables are valid")

    def stage_security_scan(self):
        for scan in run_security_scans(self.runner, self.settings.deploy.terraform_dir,
                                       self.settings.reports_dir):
            if not scan.ran:
                self.add_warning(f"{scan.scanner} did not run", scan.error)
            elif scan.findings:
                self.add_warning(f"{scan.scanner}: {scan.findings} finding(s)",
                                 f"Report: {scan.report_file}", findings=scan.findings)
            else:
                self.add_pass(f"{scan.scanner}: no findings", f"Report: {scan.report_file}")

    def _var_file(self) -> Optional[str]:
        path = self.settings.deploy.tfvars_path
        if not path.exists():
            return None
        # relative paths are resolved by terraform against -chdir
        return path.name if path.parent == self.settings.deploy.terraform_dir else str(path.resolve())

    def stage_plan(self):
        self.plan = self.terraform.plan(PLAN_FILE, destroy=self.destroying, var_file=self._var_file())
        if self.plan.output.strip():
            print(self.plan.output.rstrip())
        if self.plan.has_changes:
            self.add_pass("Plan has changes", f"Saved to {self.plan.plan_file}")
        else:
            self.add_pass("No changes. Infrastructure matches the configuration.")

    def stage_cost(self):
        estimate = estimate_cost(self.runner, self.settings.deploy.terraform_dir,
                                 self.settings.reports_dir)
        if estimate.error:
            self.add_warning("Cost estimation unavailable", estimate.error)
        else:
            self.add_pass(f"Estimated monthly cost: {estimate.monthly_cost} {estimate.currency}",
                          f"Report: {estimate.report_file}")

    def stage_approval(self):
        if not self.plan.has_changes:
            self.add_skip("Approval", "plan has no changes")
            return
        if self.settings.auto_approve:
            self.add_pass("Auto-approved")
            return
        if not self.interactive:
            self.fail("Approval required",
                      "No terminal to prompt on. Set AUTO_APPROVE=true to apply without a prompt.")

        verb = "destroy" if self.destroying else "apply"
        if not self.approver(f"Do you want to {verb} these changes? [y/N]: "):
            self.fail(f"{verb.capitalize()} was not approved")
        self.add_pass("Approved by operator")

    def stage_apply(self):
        if not self.plan.has_changes:
            self.add_skip("Apply" if not self.destroying else "Destroy", "plan has no changes")
            return
        self.terraform.apply(self.plan)
        if self.destroying:
            self.add_pass("Infrastructure destroyed")
        else:
            self.add_pass("Infrastructure applied")

    def stage_post_deploy(self):
        verifier = self.post_deploy_factory(self.settings.deploy, self.runner)
        if verifier.execute() != 0:
            self.fail("Post-deployment verification failed")
        self.add_pass("Cluster verified", _summary_line(verifier))

    def stage_addons(self):
        installer = self.addon_factory(self.settings.deploy, self.runner)
        installer.execute()
        if installer.results.count(CheckStatus.ERROR):
            self.add_warning("Some add-ons could not be installed", _summary_line(installer))
        else:
            self.add_pass("Add-ons installed", _summary_line(installer))

    # -- notifications ------------------------------------------------------------

    def result_summary(self, success: bool) -> str:
        summary = self.results.get_summary()
        lines = [
            f"Result: {'SUCCESS' if success else 'FAILURE'}",
            f"Region: {self.settings.deploy.aws_region}",
            f"Stages: {' -> '.join(self.stages_run)}",
            f"Passed: {summary['passed']}, Warnings: {summary['warnings']}, "
            f"Failed: {summary['failed']}, Skipped: {summary['skipped']}",
        ]
        failed = [r for r in self.results.results if r.is_hard_failure]
        if failed:
            lines.append(f"Failed at: {failed[-1].category}: {failed[-1].description}")
        return "\n".join(lines)

    def send_notifications(self, success: bool):
        if not self.notifier.channels:
            return
        self.section("📣 Notifications")
        errors = self.notifier.notify(success, self.result_summary(success))
        for error in errors:
            self.add_warning("Notification not delivered", error)
        if not errors:
            self.add_pass(f"Notified via {', '.join(self.notifier.channels)}")


def _summary_line(suite: CheckSuite) -> str:
    summary = suite.results.get_summary()
    return (f"Passed: {summary['passed']}, Warnings: {summary['warnings']}, "
            f"Errors: {summary['errors']}, Skipped: {summary['skipped']}")


def parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description='CI pipeline for the EKS Terraform stack',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Plan and apply with an approval prompt
  %(prog)s

  # Non-interactive CI run with scans, cost estimate and notifications
  %(prog)s --variant full --auto-approve

  # Tear the stack down
  %(prog)s --action destroy
        """
    )
    pipeline = parser.add_argument_group('Pipeline Options')
    pipeline.add_argument('--action', choices=ACTIONS,
                          help='Terraform action (env: TF_ACTION, default: apply)')
    pipeline.add_argument('--variant', choices=VARIANTS,
                          help='Pipeline variant (env: PIPELINE_VARIANT, default: basic)')
    pipeline.add_argument('--auto-approve', action='store_true', default=None,
                          help='Apply without prompting (env: AUTO_APPROVE)')
    pipeline.add_argument('--reports-dir',
                          help='Directory for scanner and cost reports (env: REPORTS_DIR)')
    add_settings_arguments(parser)
    return parser.parse_args(argv)


def settings_from_arguments(args) -> PipelineSettings:
    settings = PipelineSettings.from_environment()
    settings = replace(settings, deploy=apply_overrides(settings.deploy, args))
    if args.action:
        settings = replace(settings, action=args.action)
    if args.variant:
        settings = replace(settings, variant=args.variant)
    if args.auto_approve:
        settings = replace(settings, auto_approve=True)
    if args.reports_dir:
        settings = replace(settings, reports_dir=Path(args.reports_dir))
    return settings


def main(argv=None) -> int:
    """Main entry point"""
    args = parse_arguments(argv)
    try:
        pipeline = Pipeline(settings_from_arguments(args))
    except PipelineError as e:
        Colors.error(str(e))
        return 1

    exit_code = pipeline.execute()

    if args.report:
        path = write_markdown_report(pipeline.results, args.report, pipeline.title,
                                     {'Action': pipeline.settings.action,
                                      'Variant': pipeline.settings.variant,
                                      'Region': pipeline.settings.deploy.aws_region})
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
