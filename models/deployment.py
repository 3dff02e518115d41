"""Deployed cluster model"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping


class VerificationStage(Enum):
    """How far post-deploy verification has progressed"""
    CLUSTER_UNKNOWN = "cluster_unknown"
    CLUSTER_CREATING = "cluster_creating"
    CLUSTER_ACTIVE = "cluster_active"
    CREDENTIALS_REFRESHED = "credentials_refreshed"
    API_REACHABLE = "api_reachable"
    NODES_CHECKED = "nodes_checked"
    WORKLOADS_CHECKED = "workloads_checked"
    CONNECTIVITY_CHECKED = "connectivity_checked"
    COMPLETE = "complete"


@dataclass(frozen=True)
class ClusterDescriptor:
    """
    The cluster as Terraform reports it.

    Read from `terraform output -json`; AWS and the Terraform state are the
    source of truth, this is only a snapshot of the outputs.
    """
    name: str
    region: str
    endpoint: str = ""
    vpc_id: str = ""
    load_balancer_controller_role_arn: str = ""

    @classmethod
    def from_terraform_outputs(cls, outputs: Mapping[str, Any], region: str,
                               default_name: str) -> 'ClusterDescriptor':
        """
        Args:
            outputs: Output name to value, as returned by Terraform.outputs()
            region: AWS region the cluster lives in
            default_name: Cluster name used when the output is missing
        """
        def text(key: str) -> str:
            value = outputs.get(key)
            return str(value) if value not in (None, '') else ''

        return cls(
            name=text('cluster_name') or default_name,
            region=region,
            endpoint=text('cluster_endpoint'),
            vpc_id=text('vpc_id'),
            load_balancer_controller_role_arn=text('aws_load_balancer_controller_role_arn'),
        )
