"""Deployment input variables and their validation rules"""

import ipaddress
import re
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional

PROJECT_NAME_PATTERN = re.compile(r'^[a-z][a-z0-9-]{1,30}[a-z0-9]$')
REGION_PATTERN = re.compile(r'^[a-z]{2}(-gov)?-[a-z]+-\d$')
KUBERNETES_VERSION_PATTERN = re.compile(r'^1\.\d{2}$')
INSTANCE_TYPE_PATTERN = re.compile(r'^[a-z][a-z0-9-]*\.[a-z0-9]+$')
IPV4_CIDR_PATTERN = re.compile(r'^(\d{1,3}\.){3}\d{1,3}/\d{1,2}$')

CAPACITY_TYPES = ('ON_DEMAND', 'SPOT')
VPC_PREFIX_RANGE = (16, 28)
DISK_SIZE_RANGE = (20, 1000)
MAX_NODE_GROUP_SIZE = 100

INTEGER_PATTERN = re.compile(r'^-?\d+$')
NUMBER_VARIABLES = ('node_group_min_size', 'node_group_desired_size', 'node_group_max_size',
                    'node_disk_size')
BOOL_VARIABLES = ('enable_nat_gateway', 'single_nat_gateway')


@dataclass
class VariableError:
    """A single failed validation predicate"""
    field: str
    message: str
    value: Any = None

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class VariableValidationError(Exception):
    """Raised when one or more deployment variables are invalid"""

    def __init__(self, errors: List[VariableError]):
        self.errors = errors
        super().__init__(f"Configuration validation failed: {'; '.join(str(e) for e in errors)}")


def parse_ipv4_cidr(cidr: Any) -> Optional[ipaddress.IPv4Network]:
    """Return the network for a valid a.b.c.d/n string, None otherwise"""
    if not isinstance(cidr, str) or not IPV4_CIDR_PATTERN.match(cidr):
        return None
    try:
        return ipaddress.IPv4Network(cidr, strict=False)
    except ValueError:
        return None


def cidrs_overlap(cidr1: str, cidr2: str) -> bool:
    """Check if two CIDR blocks overlap; invalid blocks never overlap"""
    net1 = parse_ipv4_cidr(cidr1)
    net2 = parse_ipv4_cidr(cidr2)
    if net1 is None or net2 is None:
        return False
    return net1.overlaps(net2)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _coerce(name: str, value: Any) -> Any:
    """Terraform converts quoted numbers and booleans for number and bool variables"""
    if not isinstance(value, str):
        return value
    if name in NUMBER_VARIABLES and INTEGER_PATTERN.match(value.strip()):
        return int(value.strip())
    if name in BOOL_VARIABLES and value.strip() in ('true', 'false'):
        return value.strip() == 'true'
    return value


@dataclass
class DeploymentVariables:
    """
    The input variable set of the EKS deployment.

    Mirrors the Terraform variables, each with the predicate Terraform would
    enforce, so a bad value is rejected before plan or apply ever runs.
    """
    project_name: str = "public"
    aws_region: str = "us-east-1"
    vpc_cidr: str = "10.0.0.0/16"
    public_subnet_cidrs: List[str] = field(default_factory=lambda: ["10.0.1.0/24", "10.0.2.0/24"])
    private_subnet_cidrs: List[str] = field(default_factory=lambda: ["10.0.10.0/24", "10.0.11.0/24"])
    kubernetes_version: str = "1.28"
    node_group_min_size: int = 1
    node_group_desired_size: int = 2
    node_group_max_size: int = 3
    node_instance_types: List[str] = field(default_factory=lambda: ["t3.medium"])
    node_capacity_type: str = "ON_DEMAND"
    node_disk_size: int = 20
    enable_nat_gateway: bool = True
    single_nat_gateway: bool = True

    @classmethod
    def from_tfvars(cls, values: Mapping[str, Any]) -> 'DeploymentVariables':
        """Build from parsed tfvars, keeping defaults for unset variables"""
        known = {f.name for f in fields(cls)}
        return cls(**{k: _coerce(k, v) for k, v in values.items() if k in known})

    @property
    def nat_gateway_count(self) -> int:
        """Elastic IPs the NAT gateways will allocate"""
        if not self.enable_nat_gateway:
            return 0
        if self.single_nat_gateway:
            return 1
        return len(self.public_subnet_cidrs)

    def validate(self) -> List[VariableError]:
        """Evaluate every predicate and return all violations"""
        errors: List[VariableError] = []

        if not isinstance(self.project_name, str) or not PROJECT_NAME_PATTERN.match(self.project_name):
            errors.append(VariableError(
                'project_name',
                "must be 3-32 lowercase alphanumerics or hyphens, starting with a letter",
                self.project_name))

        if not isinstance(self.aws_region, str) or not REGION_PATTERN.match(self.aws_region):
            errors.append(VariableError('aws_region', "must be a valid AWS region name", self.aws_region))

        vpc = parse_ipv4_cidr(self.vpc_cidr)
        if vpc is None:
            errors.append(VariableError('vpc_cidr', "must be a valid IPv4 CIDR block", self.vpc_cidr))
        elif not VPC_PREFIX_RANGE[0] <= vpc.prefixlen <= VPC_PREFIX_RANGE[1]:
            errors.append(VariableError(
                'vpc_cidr',
                f"prefix length must be between /{VPC_PREFIX_RANGE[0]} and /{VPC_PREFIX_RANGE[1]}",
                self.vpc_cidr))

        errors.extend(self._validate_subnets(vpc))

        if not isinstance(self.kubernetes_version, str) or not KUBERNETES_VERSION_PATTERN.match(self.kubernetes_version):
            errors.append(VariableError(
                'kubernetes_version', "must look like 1.NN (e.g. 1.28)", self.kubernetes_version))

        errors.extend(self._validate_node_group())

        if not isinstance(self.node_instance_types, list) or not self.node_instance_types:
            errors.append(VariableError(
                'node_instance_types', "must be a non-empty list", self.node_instance_types))
        else:
            for i, instance_type in enumerate(self.node_instance_types):
                if not isinstance(instance_type, str) or not INSTANCE_TYPE_PATTERN.match(instance_type):
                    errors.append(VariableError(
                        f'node_instance_types[{i}]', "must be an EC2 instance type like t3.medium",
                        instance_type))

        if self.node_capacity_type not in CAPACITY_TYPES:
            errors.append(VariableError(
                'node_capacity_type', f"must be one of {', '.join(CAPACITY_TYPES)}",
                self.node_capacity_type))

        if not _is_int(self.node_disk_size) or not DISK_SIZE_RANGE[0] <= self.node_disk_size <= DISK_SIZE_RANGE[1]:
            errors.append(VariableError(
                'node_disk_size',
                f"must be an integer between {DISK_SIZE_RANGE[0]} and {DISK_SIZE_RANGE[1]} GiB",
                self.node_disk_size))

        for name in ('enable_nat_gateway', 'single_nat_gateway'):
            if not isinstance(getattr(self, name), bool):
                errors.append(VariableError(name, "must be true or false", getattr(self, name)))

        return errors

    def _validate_subnets(self, vpc: Optional[ipaddress.IPv4Network]) -> List[VariableError]:
        errors = []
        seen: Dict[str, ipaddress.IPv4Network] = {}

        for name in ('public_subnet_cidrs', 'private_subnet_cidrs'):
            cidrs = getattr(self, name)
            if not isinstance(cidrs, list) or not cidrs:
                errors.append(VariableError(name, "must be a non-empty list of CIDR blocks", cidrs))
                continue

            for i, cidr in enumerate(cidrs):
                label = f"{name}[{i}]"
                subnet = parse_ipv4_cidr(cidr)
                if subnet is None:
                    errors.append(VariableError(label, "must be a valid IPv4 CIDR block", cidr))
                    continue
                if vpc is not None and not subnet.subnet_of(vpc):
                    errors.append(VariableError(label, f"must be within VPC CIDR {self.vpc_cidr}", cidr))
                for other_label, other in seen.items():
                    if subnet.overlaps(other):
                        errors.append(VariableError(label, f"overlaps {other_label} ({other})", cidr))
                seen[label] = subnet

        return errors

    def _validate_node_group(self) -> List[VariableError]:
        min_size = self.node_group_min_size
        desired = self.node_group_desired_size
        max_size = self.node_group_max_size

        errors = []
        for name, value in (('node_group_min_size', min_size),
                            ('node_group_desired_size', desired),
                            ('node_group_max_size', max_size)):
            if not _is_int(value):
                errors.append(VariableError(name, "must be an integer", value))
        if errors:
            return errors

        if min_size < 0:
            errors.append(VariableError('node_group_min_size', "must be >= 0", min_size))
        if not 1 <= max_size <= MAX_NODE_GROUP_SIZE:
            errors.append(VariableError(
                'node_group_max_size', f"must be between 1 and {MAX_NODE_GROUP_SIZE}", max_size))
        if not min_size <= desired <= max_size:
            errors.append(VariableError(
                'node_group_desired_size',
                f"must satisfy min ({min_size}) <= desired ({desired}) <= max ({max_size})",
                desired))
        return errors

    def validate_or_raise(self):
        errors = self.validate()
        if errors:
            raise VariableValidationError(errors)
