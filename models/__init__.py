"""Data models for deployment checks"""

from .check_result import CheckResult, CheckResultSet, CheckStatus
from .deployment import ClusterDescriptor, VerificationStage
from .variables import DeploymentVariables, VariableError, VariableValidationError

__all__ = [
    'CheckResult', 'CheckResultSet', 'CheckStatus',
    'ClusterDescriptor', 'VerificationStage',
    'DeploymentVariables', 'VariableError', 'VariableValidationError',
]
