"""
Environment file loading and environment variable validation.
"""

from .files import env_file_candidates, find_env_file, load_env, read_env_file
from .rules import (
    APPLICATION_RULES,
    EnvVarRule,
    development_rules,
    validate_env_var,
    validate_environment,
    validate_paystack_key_consistency,
)

__all__ = [
    "APPLICATION_RULES",
    "EnvVarRule",
    "development_rules",
    "env_file_candidates",
    "find_env_file",
    "load_env",
    "read_env_file",
    "validate_env_var",
    "validate_environment",
    "validate_paystack_key_consistency",
]
