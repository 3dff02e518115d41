#!/usr/bin/env python3
"""
post_deploy.py - Post-Deployment Verification for the EKS stack

Confirms a freshly applied cluster is usable: the control plane is ACTIVE,
kubeconfig works, the API server answers, nodes have joined and the core
system workloads are running.

SYNOPSIS:
  post_deploy.py [options]

DESCRIPTION:
  Reads the cluster name, endpoint and VPC ID from the Terraform outputs,
  then walks the cluster through these stages:

    cluster status -> kubeconfig -> API reachable -> nodes -> system
    workloads -> VPC / OIDC -> connectivity probe

  The run fails (exit 1) only when the cluster is missing or never becomes
  ACTIVE, kubeconfig cannot be updated, or the API server never answers.
  Everything after that is reported as warnings; a cluster whose nodes are
  still joining is not a failed deployment.
"""

import sys
import json
import time
import argparse
import traceback
from typing import Any, Callable, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from check_framework import CheckSuite
from lib.aws_client import AWSClient
from lib.commands import CommandRunner
from lib.console import Colors
from lib.kubectl import Kubectl, node_is_ready, pod_is_running
from lib.settings import DeploySettings, add_settings_arguments, apply_overrides
from lib.terraform import Terraform
from models.deployment import ClusterDescriptor, VerificationStage
from reporters.markdown_report import write_markdown_report

# EKS cluster_active waiter
CLUSTER_WAIT_DELAY = 30
CLUSTER_WAIT_ATTEMPTS = 40

API_MAX_RETRIES = 10
API_RETRY_DELAY = 10

NODE_WAIT_TIMEOUT = 600
NODE_POLL_INTERVAL = 30

CONNECTIVITY_TIMEOUT = 60
PROBE_POD_NAME = 'connectivity-test'
PROBE_NAMESPACE = 'default'

SYSTEM_NAMESPACE = 'kube-system'
SYSTEM_WORKLOADS = [
    ('CoreDNS', 'k8s-app=kube-dns'),
    ('kube-proxy', 'k8s-app=kube-proxy'),
    ('VPC CNI', 'k8s-app=aws-node'),
]

NEXT_STEPS = [
    "Review the cluster information above",
    "Install additional add-ons with install_addons.py",
    "Deploy your applications",
    "Configure monitoring and logging",
]

USEFUL_COMMANDS = [
    "kubectl get nodes",
    "kubectl get pods -A",
    "kubectl cluster-info",
]


def probe_pod_manifest(name: str = PROBE_POD_NAME, namespace: str = PROBE_NAMESPACE) -> str:
    """Single busybox pod that sleeps long enough to be observed Ready"""
    return json.dumps({
        'apiVersion': 'v1',
        'kind': 'Pod',
        'metadata': {'name': name, 'namespace': namespace},
        'spec': {
            'restartPolicy': 'Never',
            'containers': [{
                'name': 'test',
                'image': 'busybox:latest',
                'command': ['sh', '-c', 'sleep 30'],
            }],
        },
    })


class PostDeployVerifier(CheckSuite):
    """Staged verification of a deployed cluster"""

    title = "🔍 Post-Deployment Verification"

    def __init__(self, settings: DeploySettings, runner: Optional[CommandRunner] = None,
                 aws_factory: Optional[Callable[[str, bool], AWSClient]] = None,
                 sleep: Callable[[float], None] = time.sleep):
        super().__init__('post_deploy')
        self.settings = settings
        self.runner = runner or CommandRunner()
        self.terraform = Terraform(self.runner, settings.terraform_dir)
        self.kubectl = Kubectl(self.runner)
        self.sleep = sleep
        self._aws_factory = aws_factory or (lambda region, debug: AWSClient(region, debug=debug))
        self._aws: Optional[AWSClient] = None

        self.stage = VerificationStage.CLUSTER_UNKNOWN
        self.cluster: Optional[ClusterDescriptor] = None
        self.cluster_info: Dict[str, Any] = {}
        self.node_count = 0
        self.ready_node_count = 0

    @property
    def aws(self) -> AWSClient:
        if self._aws is None:
            self._aws = self._aws_factory(self.settings.aws_region, self.settings.debug)
        return self._aws

    def run(self):
        self.read_outputs()
        self.check_cluster_status()
        self.update_kubeconfig()
        self.wait_for_api()
        self.check_nodes()
        self.check_system_workloads()
        self.check_vpc()
        self.check_oidc_provider()
        self.check_connectivity()
        self.stage = VerificationStage.COMPLETE
        self.print_outputs_and_next_steps()

    def read_outputs(self):
        self.section("📋 Reading Terraform outputs...")
        outputs = self.terraform.outputs()
        self.cluster = ClusterDescriptor.from_terraform_outputs(
            outputs, self.settings.aws_region, self.settings.default_cluster_name)

        details = (f"Cluster Name: {self.cluster.name}\n"
                   f"Cluster Endpoint: {self.cluster.endpoint}\n"
                   f"VPC ID: {self.cluster.vpc_id}")
        if outputs:
            self.add_pass("Terraform outputs read", details)
        else:
            self.add_warning("No Terraform outputs found, using defaults", details)

    # -- control plane ------------------------------------------------------------

    def check_cluster_status(self):
        self.section("☸️  Verifying EKS cluster status...")
        name = self.cluster.name
        try:
            description = self.aws.describe_cluster(name)
        except (ClientError, BotoCoreError) as e:
            self.fail(f"Could not describe EKS cluster {name}", str(e))

        if description is None:
            self.fail(f"EKS cluster {name} not found")

        status = description.get('status', 'UNKNOWN')
        if status == 'CREATING':
            self.stage = VerificationStage.CLUSTER_CREATING
            Colors.warning(f"⚠  EKS cluster status: {status}")
            print("  Cluster is still being created. This may take 10-15 minutes.")
            print("  Waiting for cluster to become active...")
            if not self.aws.wait_for_cluster_active(name, delay=CLUSTER_WAIT_DELAY,
                                                    max_attempts=CLUSTER_WAIT_ATTEMPTS):
                self.fail(f"EKS cluster {name} did not become ACTIVE",
                          f"Waited {CLUSTER_WAIT_DELAY * CLUSTER_WAIT_ATTEMPTS}s")
            try:
                description = self.aws.describe_cluster(name) or description
            except (ClientError, BotoCoreError) as e:
                self.add_warning("Could not refresh the cluster description", str(e))
            self.add_pass("Cluster is now ACTIVE")
        elif status == 'ACTIVE':
            self.add_pass("EKS cluster is ACTIVE", f"Version: {description.get('version', 'unknown')}")
        else:
            self.fail(f"EKS cluster status: {status}")

        self.cluster_info = description
        self.stage = VerificationStage.CLUSTER_ACTIVE

    def update_kubeconfig(self):
        self.section("🔧 Updating kubeconfig...")
        result = self.runner.run([
            'aws', 'eks', 'update-kubeconfig',
            '--name', self.cluster.name,
            '--region', self.settings.aws_region,
            '--alias', self.settings.project_name,
        ])
        if not result.ok:
            self.fail("Failed to update kubeconfig", result.stderr.strip() or None)
        self.add_pass("Kubeconfig updated", f"Context: {self.settings.project_name}")
        self.stage = VerificationStage.CREDENTIALS_REFRESHED

    def wait_for_api(self):
        self.section("⏳ Waiting for API server to respond...")
        for attempt in range(1, API_MAX_RETRIES + 1):
            result = self.kubectl.cluster_info()
            if result.ok:
                self.add_pass("API server is responsive", f"Attempts: {attempt}")
                self.stage = VerificationStage.API_REACHABLE
                print()
                Colors.info("📊 Cluster Information:")
                print(result.stdout.rstrip())
                return
            print(f"  Retry {attempt}/{API_MAX_RETRIES}...")
            if attempt < API_MAX_RETRIES:
                self.sleep(API_RETRY_DELAY)

        self.fail(f"API server is not responding after {API_MAX_RETRIES} retries")

    # -- workloads --------------------------------------------------------------

    def _wait_for_nodes(self) -> List[Dict[str, Any]]:
        """Poll until at least one node registers or the timeout passes"""
        Colors.warning("⚠  No nodes found. Node groups may still be initializing...")
        print("  Waiting for nodes to join the cluster...")
        elapsed = 0
        while elapsed < NODE_WAIT_TIMEOUT:
            self.sleep(NODE_POLL_INTERVAL)
            elapsed += NODE_POLL_INTERVAL
            nodes = self.kubectl.get_nodes()
            if nodes:
                Colors.success("✓ Nodes have joined the cluster")
                return nodes
            print(f"  Still waiting... ({elapsed}/{NODE_WAIT_TIMEOUT}s)")
        return []

    def check_nodes(self):
        self.section("🖥️  Checking node status...")
        nodes = self.kubectl.get_nodes()
        if not nodes:
            nodes = self._wait_for_nodes()

        self.node_count = len(nodes)
        self.ready_node_count = sum(1 for n in nodes if node_is_ready(n))
        details = f"Total Nodes: {self.node_count}\nReady Nodes: {self.ready_node_count}"

        if self.node_count == 0:
            self.add_warning("No nodes have joined the cluster", details,
                             total=0, ready=0)
        elif self.ready_node_count < self.node_count:
            self.add_warning("Some nodes are not Ready", details,
                             total=self.node_count, ready=self.ready_node_count)
        else:
            self.add_pass("All nodes are Ready", details,
                          total=self.node_count, ready=self.ready_node_count)

        node_table = self.kubectl.get_text('nodes', '-o', 'wide')
        if node_table:
            print()
            Colors.info("📋 Node Details:")
            print(node_table.rstrip())
        self.stage = VerificationStage.NODES_CHECKED

    def check_system_workloads(self):
        self.section("🔍 Checking system pods...")
        for label, selector in SYSTEM_WORKLOADS:
            pods = self.kubectl.get_pods(SYSTEM_NAMESPACE, selector)
            if pods:
                running = sum(1 for p in pods if pod_is_running(p))
                self.add_pass(f"{label}: {running}/{len(pods)} pods running",
                              running=running, total=len(pods))
            else:
                self.add_warning(f"{label} pods not found", f"Selector: {selector}")

        storage_classes = [sc.get('metadata', {}).get('name', '?')
                           for sc in self.kubectl.get_storage_classes()]
        print()
        Colors.info("💿 Storage Classes:")
        print(f"  {', '.join(storage_classes) if storage_classes else 'none'}")
        self.stage = VerificationStage.WORKLOADS_CHECKED

    # -- AWS side -------------------------------------------------------------------

    def check_vpc(self):
        self.section("🌐 Verifying VPC configuration...")
        vpc_id = self.cluster.vpc_id
        if not vpc_id:
            self.add_skip("VPC verification", "vpc_id output not available")
            return

        state = self.aws.vpc_state(vpc_id)
        try:
            subnets = f"Subnets: {self.aws.count_subnets(vpc_id)}"
        except (ClientError, BotoCoreError) as e:
            subnets = f"Subnets: unknown ({e})"

        if state == 'available':
            self.add_pass(f"VPC {vpc_id} is available", subnets)
        else:
            self.add_warning(f"VPC state: {state or 'not found'}", subnets)

    def check_oidc_provider(self):
        self.section("🔐 Checking OIDC provider...")
        issuer = self.cluster_info.get('identity', {}).get('oidc', {}).get('issuer')
        if not issuer:
            self.add_warning("Cluster has no OIDC issuer")
            return
        try:
            registered = self.aws.oidc_provider_registered(issuer)
        except (ClientError, BotoCoreError) as e:
            self.add_warning("Could not list OIDC providers", str(e))
            return

        if registered:
            self.add_pass("OIDC provider is configured")
        else:
            self.add_warning("OIDC provider not found", f"Issuer: {issuer}")

    def check_connectivity(self):
        self.section("🔌 Testing pod connectivity...")
        created = self.kubectl.apply_manifest(probe_pod_manifest())
        if not created.ok:
            self.add_skip("Pod creation test", "test pod could not be created")
            self.stage = VerificationStage.CONNECTIVITY_CHECKED
            return

        print("  Waiting for test pod...")
        self.kubectl.wait_for_pod(PROBE_POD_NAME, PROBE_NAMESPACE, CONNECTIVITY_TIMEOUT)

        if self.kubectl.pod_exists(PROBE_POD_NAME, PROBE_NAMESPACE):
            self.add_pass("Pod creation successful")
            self.kubectl.delete_pod(PROBE_POD_NAME, PROBE_NAMESPACE, force=True)
        else:
            self.add_skip("Pod creation test", "test pod did not appear")
        self.stage = VerificationStage.CONNECTIVITY_CHECKED

    def print_outputs_and_next_steps(self):
        outputs = self.terraform.show_outputs()
        if outputs:
            print()
            Colors.info("📤 Terraform Outputs:")
            print(outputs.rstrip())

        print()
        print("Next Steps:")
        for i, step in enumerate(NEXT_STEPS, 1):
            print(f"  {i}. {step}")
        print()
        print("Useful Commands:")
        for command in USEFUL_COMMANDS:
            print(f"  {command}")

    def report_context(self) -> Dict[str, str]:
        context = {
            'Region': self.settings.aws_region,
            'Stage Reached': self.stage.value,
        }
        if self.cluster:
            context['Cluster Name'] = self.cluster.name
            context['Cluster Endpoint'] = self.cluster.endpoint or 'unknown'
            context['VPC ID'] = self.cluster.vpc_id or 'unknown'
        context['Nodes'] = f"{self.ready_node_count}/{self.node_count} Ready"
        return context


def parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description='Post-deployment verification for the EKS cluster',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Verify the cluster deployed from the current directory
  %(prog)s

  # Verify with a markdown report
  %(prog)s -d infra/eks --report reports/post-deploy.md
        """
    )
    add_settings_arguments(parser)
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main entry point"""
    args = parse_arguments(argv)
    settings = apply_overrides(DeploySettings.from_environment(), args)

    verifier = PostDeployVerifier(settings)
    exit_code = verifier.execute()

    if args.report:
        path = write_markdown_report(verifier.results, args.report, verifier.title,
                                     verifier.report_context())
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
