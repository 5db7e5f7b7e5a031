"""
ResumeCustomizer Pro - Role-Based Access Control (RBAC)

Permission control based on user roles.
Policies are defined in policies.yaml and enforced through route dependencies.

Security:
- Deny-by-default: every action requires an explicit grant
- Roles inherit their parent's grants (admin > marketing > standard)
- Unknown roles hold no permissions
"""

from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Set

import yaml

from resumepro.logging import get_logger

logger = get_logger(__name__)

DEFAULT_POLICY_PATH = Path(__file__).parent / "policies.yaml"


class Permission(str, Enum):
    """Granular permissions for system actions."""
    MANAGE_OWN_SESSIONS = "manage:own_sessions"
    EDIT_RESUMES = "edit:resumes"
    ACCESS_MARKETING = "access:marketing"
    SEND_EMAIL = "send:email"
    MANAGE_USERS = "manage:users"
    MANAGE_SESSIONS = "manage:sessions"
    READ_AUDIT = "read:audit"


class RBACPolicy:
    """
    Manages role-to-permission mappings loaded from policies.yaml.

    Singleton for the default policy file; pass `policy_path` to load
    another file (tests).
    """

    _instance: Optional["RBACPolicy"] = None

    def __new__(cls, policy_path: Optional[Path] = None):
        if policy_path is not None:
            instance = super().__new__(cls)
            instance._load_policies(policy_path)
            return instance
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load_policies(DEFAULT_POLICY_PATH)
        return cls._instance

    def _load_policies(self, policy_path: Path) -> None:
        """Load policies from YAML and flatten inheritance."""
        self._policies: Dict[str, Set[str]] = {}

        if not policy_path.exists():
            logger.warning("rbac_policy_missing", path=str(policy_path))
            return

        with open(policy_path, "r") as f:
            config = yaml.safe_load(f) or {}

        roles = config.get("roles", {})
        for role in roles:
            self._policies[role] = self._resolve(role, roles, set())

    def _resolve(self, role: str, roles: dict, seen: Set[str]) -> Set[str]:
        if role in seen or role not in roles:
            return set()
        seen.add(role)
        entry = roles[role] or {}
        perms = set(entry.get("permissions", []))
        parent = entry.get("inherits")
        if parent:
            perms |= self._resolve(parent, roles, seen)
        return perms

    def has_permission(self, role: str, permission: Permission) -> bool:
        """
        Check if a role has a specific permission.

        Returns:
            True if permitted, False otherwise (deny-by-default)
        """
        return permission.value in self._policies.get(role, set())

    def get_role_permissions(self, role: str) -> Set[str]:
        return set(self._policies.get(role, set()))
