#!/usr/bin/env python3
"""
install_addons.py - Kubernetes add-on installation for the EKS cluster

Installs the AWS Load Balancer Controller (Helm, IRSA role from the Terraform
outputs) and the Metrics Server (upstream release manifest).

Each add-on is independent: a failure is reported as an error for that add-on
and the next one is still attempted. A readiness timeout is only a warning
since the pods may still be starting. The run always exits 0.
"""

import sys
import argparse
import traceback
from typing import Dict, List, Optional

from check_framework import CheckSuite
from lib.commands import CommandRunner
from lib.console import Colors
from lib.helm import Helm, set_path
from lib.kubectl import Kubectl
from lib.settings import DeploySettings, add_settings_arguments, apply_overrides
from lib.terraform import Terraform
from models.deployment import ClusterDescriptor
from reporters.markdown_report import write_markdown_report

ADDON_NAMESPACE = 'kube-system'

EKS_CHARTS_REPO = ('eks', 'https://aws.github.io/eks-charts')
LB_CONTROLLER_RELEASE = 'aws-load-balancer-controller'
LB_CONTROLLER_CHART = 'eks/aws-load-balancer-controller'
LB_CONTROLLER_SERVICE_ACCOUNT = 'aws-load-balancer-controller'
LB_CONTROLLER_SELECTOR = 'app.kubernetes.io/name=aws-load-balancer-controller'
LB_CONTROLLER_READY_TIMEOUT = 180

METRICS_SERVER_MANIFEST = (
    'https://github.com/kubernetes-sigs/metrics-server/releases/latest/download/components.yaml'
)
METRICS_SERVER_SELECTOR = 'k8s-app=metrics-server'
METRICS_SERVER_READY_TIMEOUT = 120


def load_balancer_controller_values(cluster: ClusterDescriptor) -> Dict[str, str]:
    """Helm --set values for the controller, keyed by escaped path"""
    return {
        'clusterName': cluster.name,
        'serviceAccount.create': 'true',
        'serviceAccount.name': LB_CONTROLLER_SERVICE_ACCOUNT,
        set_path('serviceAccount', 'annotations', 'eks.amazonaws.com/role-arn'):
            cluster.load_balancer_controller_role_arn,
        'region': cluster.region,
        'vpcId': cluster.vpc_id,
    }


class AddonInstaller(CheckSuite):
    """Installs cluster add-ons one after another"""

    title = "📦 Installing Kubernetes Add-ons"

    def __init__(self, settings: DeploySettings, runner: Optional[CommandRunner] = None):
        super().__init__('addons')
        self.settings = settings
        self.runner = runner or CommandRunner()
        self.terraform = Terraform(self.runner, settings.terraform_dir)
        self.helm = Helm(self.runner)
        self.kubectl = Kubectl(self.runner)
        self.cluster: Optional[ClusterDescriptor] = None
        self.installed: List[str] = []

    def run(self):
        self.cluster = ClusterDescriptor.from_terraform_outputs(
            self.terraform.outputs(), self.settings.aws_region, self.settings.default_cluster_name)
        print(f"Cluster: {self.cluster.name}")
        print(f"Region: {self.cluster.region}")

        self.install_load_balancer_controller()
        self.install_metrics_server()
        self.print_installed()

    def _wait_ready(self, selector: str, timeout: int) -> bool:
        print(f"  Waiting for pods with label {selector} in namespace {ADDON_NAMESPACE}...")
        return self.kubectl.wait_for_pods(ADDON_NAMESPACE, selector, timeout)

    def install_load_balancer_controller(self):
        name = "AWS Load Balancer Controller"
        self.section(f"📍 Installing {name}...")

        if not self.cluster.load_balancer_controller_role_arn:
            self.add_error(f"{name} IAM role not found",
                           "Terraform output aws_load_balancer_controller_role_arn is empty")
            return

        # an existing repo of the same name is fine
        self.helm.repo_add(*EKS_CHARTS_REPO)
        self.helm.repo_update()

        result = self.helm.upgrade_install(
            LB_CONTROLLER_RELEASE, LB_CONTROLLER_CHART, ADDON_NAMESPACE,
            values=load_balancer_controller_values(self.cluster), wait=True)
        if not result.ok:
            self.add_error(f"{name} Helm installation failed", result.stderr.strip() or None)
            return

        self.installed.append(name)
        if self._wait_ready(LB_CONTROLLER_SELECTOR, LB_CONTROLLER_READY_TIMEOUT):
            self.add_pass(f"{name} installed successfully")
        else:
            self.add_warning(f"{name} installed, pods not Ready yet",
                             "Timeout waiting for pods, they may still be initializing")

    def install_metrics_server(self):
        name = "Metrics Server"
        self.section(f"📊 Installing {name}...")

        result = self.kubectl.apply_url(METRICS_SERVER_MANIFEST)
        if not result.ok:
            self.add_error(f"{name} manifest could not be applied", result.stderr.strip() or None)
            return

        self.installed.append(name)
        if self._wait_ready(METRICS_SERVER_SELECTOR, METRICS_SERVER_READY_TIMEOUT):
            self.add_pass(f"{name} installed successfully")
        else:
            self.add_warning(f"{name} installed, pods not Ready yet",
                             "Timeout waiting for pods, they may still be initializing")

    def print_installed(self):
        print()
        print("Installed Add-ons:")
        if not self.installed:
            print("  (none)")
        for name in self.installed:
            print(f"  ✓ {name}")
        print()
        print("Verify installations:")
        print("  kubectl get pods -A")
        print("  kubectl get svc -A")

    def report_context(self) -> Dict[str, str]:
        context = {'Region': self.settings.aws_region,
                   'Installed Add-ons': ', '.join(self.installed) or 'none'}
        if self.cluster:
            context['Cluster Name'] = self.cluster.name
        return context


def parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description='Install Kubernetes add-ons into the EKS cluster',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    add_settings_arguments(parser)
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main entry point"""
    args = parse_arguments(argv)
    settings = apply_overrides(DeploySettings.from_environment(), args)

    installer = AddonInstaller(settings)
    installer.execute()

    if args.report:
        path = write_markdown_report(installer.results, args.report, installer.title,
                                     installer.report_context())
        Colors.info(f"Markdown report written to: {path}")
    return 0


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
