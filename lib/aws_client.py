"""
AWS API access for the deployment checks

Wraps the boto3 clients the pre-deploy and post-deploy tools need. All calls
are read-only except the EKS waiter, which only polls.
"""

import configparser
import json
import os
import re
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from lib.console import Colors

AUTH_ERROR_CODES = ('UnauthorizedOperation', 'AccessDenied', 'AccessDeniedException')


def error_code(e: Exception) -> Optional[str]:
    """Extract the AWS error code from a botocore exception"""
    if hasattr(e, 'response') and isinstance(e.response, dict):
        return e.response.get('Error', {}).get('Code')
    return None


def format_aws_cli_command(service: str, operation: str, params: Dict[str, Any]) -> str:
    """Format boto3 call as AWS CLI equivalent command with proper quoting"""
    cmd_parts = [f"aws {service} {operation}"]

    for key, value in params.items():
        # CamelCase to kebab-case
        cli_key = re.sub(r'([A-Z])', r'-\1', key).lower().lstrip('-')

        if isinstance(value, list):
            if all(isinstance(item, dict) for item in value):
                filter_parts = []
                for item in value:
                    parts = []
                    for k, v in item.items():
                        if isinstance(v, list):
                            parts.append(f"{k}={','.join(str(x) for x in v)}")
                        else:
                            parts.append(f"{k}={v}")
                    filter_parts.append(','.join(parts))
                cmd_parts.append(f'--{cli_key} "{" ".join(filter_parts)}"')
            else:
                cmd_parts.append(f"--{cli_key} {' '.join(str(v) for v in value)}")
        elif isinstance(value, dict):
            cmd_parts.append(f"--{cli_key} '{json.dumps(value)}'")
        elif isinstance(value, bool):
            if value:
                cmd_parts.append(f"--{cli_key}")
        elif isinstance(value, str) and (' ' in value or '*' in value):
            cmd_parts.append(f'--{cli_key} "{value}"')
        else:
            cmd_parts.append(f"--{cli_key} {value}")

    cmd_parts.append("--output json")
    return ' '.join(cmd_parts)


def role_arn_from_caller(arn: str) -> str:
    """
    Map an STS assumed-role ARN to the IAM role ARN the policy simulator
    accepts. User and role ARNs are returned unchanged.
    """
    match = re.match(r'^arn:(aws[\w-]*):sts::(\d{12}):assumed-role/([^/]+)/.+$', arn)
    if match:
        partition, account, role = match.groups()
        return f"arn:{partition}:iam::{account}:role/{role}"
    return arn


def _read_aws_config_proxy(debug: bool) -> Dict[str, str]:
    """Proxy and CA bundle settings from ~/.aws/config for the active profile"""
    found: Dict[str, str] = {}
    aws_config_file = os.path.expanduser('~/.aws/config')
    if not os.path.exists(aws_config_file):
        return found

    config = configparser.ConfigParser()
    try:
        config.read(aws_config_file)
    except configparser.Error as e:
        if debug:
            print(f"Warning: Failed to read AWS config file: {e}")
        return found

    profile = os.environ.get('AWS_PROFILE')
    sections = [f'profile {profile}', profile] if profile else []
    sections.append('default')

    for section in sections:
        if not config.has_section(section):
            continue
        for option in ('ca_bundle', 'https_proxy', 'http_proxy'):
            if option not in found and config.has_option(section, option):
                found[option] = config.get(section, option).strip('"').strip("'")
                if debug:
                    print(f"Read {option} from [{section}]: {found[option]}")
        if found:
            break
    return found


class AWSClient:
    """Read-only AWS queries used by the deployment checks"""

    def __init__(self, region: str, debug: bool = False, session: Optional[boto3.Session] = None):
        self.region = region
        self.debug = debug
        self._shown_detailed_auth_error = False

        session = session or boto3.Session(region_name=region)
        client_kwargs = self._client_kwargs()

        self.sts = session.client('sts', region_name=region, **client_kwargs)
        self.ec2 = session.client('ec2', region_name=region, **client_kwargs)
        self.service_quotas = session.client('service-quotas', region_name=region, **client_kwargs)
        self.eks = session.client('eks', region_name=region, **client_kwargs)
        self.s3 = session.client('s3', region_name=region, **client_kwargs)
        self.dynamodb = session.client('dynamodb', region_name=region, **client_kwargs)
        self.iam = session.client('iam', region_name=region, **client_kwargs)

    def _client_kwargs(self) -> Dict[str, Any]:
        """Proxy and CA bundle settings, environment first, then ~/.aws/config"""
        https_proxy = os.environ.get('HTTPS_PROXY') or os.environ.get('https_proxy')
        http_proxy = os.environ.get('HTTP_PROXY') or os.environ.get('http_proxy')
        ca_bundle = os.environ.get('AWS_CA_BUNDLE')

        if not (https_proxy or http_proxy or ca_bundle):
            file_settings = _read_aws_config_proxy(self.debug)
            https_proxy = file_settings.get('https_proxy')
            http_proxy = file_settings.get('http_proxy')
            ca_bundle = file_settings.get('ca_bundle')

        kwargs: Dict[str, Any] = {}
        if https_proxy or http_proxy:
            proxies = {}
            if https_proxy:
                proxies['https'] = https_proxy
            if http_proxy:
                proxies['http'] = http_proxy
            kwargs['config'] = Config(
                proxies=proxies,
                proxies_config={'proxy_use_forwarding_for_https': True}
            )
            if self.debug:
                print(f"Proxy configuration detected: {proxies}")
        if ca_bundle:
            kwargs['verify'] = ca_bundle
        return kwargs

    def _call(self, client, service: str, operation: str, **params):
        """Invoke one API operation, printing the CLI equivalent in debug mode"""
        if self.debug:
            print(format_aws_cli_command(service, operation, params))
        method = getattr(client, operation.replace('-', '_'))
        try:
            return method(**params)
        except (ClientError, BotoCoreError) as e:
            self._handle_aws_error(e, f"{service} {operation}")
            raise

    def _handle_aws_error(self, e: Exception, operation: str):
        """Show caller identity once for authorization failures"""
        code = error_code(e)
        if code not in AUTH_ERROR_CODES:
            return
        if self._shown_detailed_auth_error:
            Colors.error(f"✗ {code}: {operation} (see earlier error for details)")
            return

        Colors.error(f"✗ {code}: {operation}")
        Colors.error(f"  Error: {e}")
        try:
            identity = self.sts.get_caller_identity()
            Colors.error(f"  Account: {identity.get('Account', 'Unknown')}")
            Colors.error(f"  ARN: {identity.get('Arn', 'Unknown')}")
        except (ClientError, BotoCoreError):
            Colors.error("  Unable to retrieve caller identity")
        Colors.error("This IAM principal lacks the required permissions.")
        self._shown_detailed_auth_error = True

    # -- identity and region -------------------------------------------------

    def get_caller_identity(self) -> Dict[str, str]:
        return self._call(self.sts, 'sts', 'get-caller-identity')

    def region_available(self, region: str) -> bool:
        try:
            response = self._call(self.ec2, 'ec2', 'describe-regions', RegionNames=[region])
        except (ClientError, BotoCoreError):
            return False
        return any(r.get('RegionName') == region for r in response.get('Regions', []))

    # -- quotas and capacity ---------------------------------------------------

    def get_service_quota(self, service_code: str, quota_code: str, default: float = 5.0) -> float:
        """Applied quota value, or default when it cannot be looked up"""
        try:
            response = self._call(self.service_quotas, 'service-quotas', 'get-service-quota',
                                  ServiceCode=service_code, QuotaCode=quota_code)
        except (ClientError, BotoCoreError):
            return default
        return float(response.get('Quota', {}).get('Value', default))

    def describe_vpcs(self, vpc_ids: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        params = {'VpcIds': vpc_ids} if vpc_ids else {}
        if self.debug:
            print(format_aws_cli_command('ec2', 'describe-vpcs', params))
        vpcs = []
        for page in self.ec2.get_paginator('describe_vpcs').paginate(**params):
            vpcs.extend(page.get('Vpcs', []))
        return vpcs

    def count_addresses(self) -> int:
        response = self._call(self.ec2, 'ec2', 'describe-addresses')
        return len(response.get('Addresses', []))

    def count_subnets(self, vpc_id: str) -> int:
        response = self._call(self.ec2, 'ec2', 'describe-subnets',
                              Filters=[{'Name': 'vpc-id', 'Values': [vpc_id]}])
        return len(response.get('Subnets', []))

    def vpc_state(self, vpc_id: str) -> Optional[str]:
        try:
            vpcs = self.describe_vpcs(vpc_ids=[vpc_id])
        except (ClientError, BotoCoreError):
            return None
        return vpcs[0].get('State') if vpcs else None

    # -- EKS ---------------------------------------------------------------------

    def available_cluster_versions(self) -> List[str]:
        """Kubernetes versions EKS add-ons are published for, oldest first"""
        if self.debug:
            print(format_aws_cli_command('eks', 'describe-addon-versions', {}))
        versions = set()
        for page in self.eks.get_paginator('describe_addon_versions').paginate():
            for addon in page.get('addons', []):
                for addon_version in addon.get('addonVersions', []):
                    for compat in addon_version.get('compatibilities', []):
                        if compat.get('clusterVersion'):
                            versions.add(compat['clusterVersion'])
        return sorted(versions, key=lambda v: [int(p) for p in v.split('.') if p.isdigit()])

    def describe_cluster(self, name: str) -> Optional[Dict[str, Any]]:
        """Cluster description, None when the cluster does not exist"""
        try:
            return self._call(self.eks, 'eks', 'describe-cluster', name=name)['cluster']
        except ClientError as e:
            if error_code(e) == 'ResourceNotFoundException':
                return None
            raise

    def wait_for_cluster_active(self, name: str, delay: int = 30, max_attempts: int = 40) -> bool:
        """Poll until the cluster is ACTIVE; False if it never gets there"""
        waiter = self.eks.get_waiter('cluster_active')
        try:
            waiter.wait(name=name, WaiterConfig={'Delay': delay, 'MaxAttempts': max_attempts})
        except WaiterError:
            return False
        return True

    def oidc_provider_registered(self, issuer_url: str) -> bool:
        """True when IAM has an OIDC provider for the cluster's issuer"""
        issuer = re.sub(r'^https://', '', issuer_url or '')
        if not issuer:
            return False
        response = self._call(self.iam, 'iam', 'list-open-id-connect-providers')
        return any(p.get('Arn', '').endswith(f"oidc-provider/{issuer}")
                   for p in response.get('OpenIDConnectProviderList', []))

    # -- remote state backend ----------------------------------------------------

    def bucket_accessible(self, bucket: str) -> bool:
        try:
            self._call(self.s3, 's3api', 'head-bucket', Bucket=bucket)
        except (ClientError, BotoCoreError):
            return False
        return True

    def bucket_versioning_enabled(self, bucket: str) -> bool:
        response = self._call(self.s3, 's3api', 'get-bucket-versioning', Bucket=bucket)
        return response.get('Status') == 'Enabled'

    def bucket_encryption_enabled(self, bucket: str) -> bool:
        try:
            response = self._call(self.s3, 's3api', 'get-bucket-encryption', Bucket=bucket)
        except ClientError as e:
            if error_code(e) == 'ServerSideEncryptionConfigurationNotFoundError':
                return False
            raise
        rules = response.get('ServerSideEncryptionConfiguration', {}).get('Rules', [])
        return bool(rules)

    def lock_table_exists(self, table: str) -> bool:
        try:
            self._call(self.dynamodb, 'dynamodb', 'describe-table', TableName=table)
        except (ClientError, BotoCoreError):
            return False
        return True

    # -- IAM -------------------------------------------------------------------------

    def simulate_permissions(self, principal_arn: str, actions: List[str]) -> Dict[str, str]:
        """Policy simulator decision per action ('allowed', 'implicitDeny', ...)"""
        response = self._call(self.iam, 'iam', 'simulate-principal-policy',
                              PolicySourceArn=role_arn_from_caller(principal_arn),
                              ActionNames=actions)
        return {r['EvalActionName']: r['EvalDecision'] for r in response.get('EvaluationResults', [])}
