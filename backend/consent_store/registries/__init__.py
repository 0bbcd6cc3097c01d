"""
Entity registries: typed operations over the hook pipeline.

Each function takes a RegistryContext as its first argument.
"""

from .audit_log import audit_hooks, create_audit_log, find_audit_logs
from .consent import create_consent, find_consent_by_id, find_consents, withdraw_consent
from .context import RegistryContext
from .domain import (
    create_domain,
    find_domain_by_id,
    find_domain_by_name,
    find_domains,
    find_or_create_domain,
)
from .policy import find_latest_policy, find_or_create_latest_policy, find_policy_by_id
from .purpose import find_or_create_purpose, find_purpose_by_code, find_purposes
from .subject import (
    create_subject,
    find_or_create_subject,
    find_subject_by_external_id,
    find_subject_by_id,
)

__all__ = [
    "RegistryContext",
    "audit_hooks",
    "create_audit_log",
    "create_consent",
    "create_domain",
    "create_subject",
    "find_audit_logs",
    "find_consent_by_id",
    "find_consents",
    "find_domain_by_id",
    "find_domain_by_name",
    "find_domains",
    "find_latest_policy",
    "find_or_create_domain",
    "find_or_create_latest_policy",
    "find_or_create_purpose",
    "find_or_create_subject",
    "find_policy_by_id",
    "find_purpose_by_code",
    "find_purposes",
    "find_subject_by_external_id",
    "find_subject_by_id",
    "withdraw_consent",
]
