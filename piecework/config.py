"""Configuration for the piecework ledger.

Settings are plain dataclass fields with defaults that match the legacy
behaviour of the job ledger. ``LedgerConfig.from_env()`` reads overrides
from ``PIECEWORK_*`` environment variables.
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Identity used by the original contract for "no address".
NULL_IDENTITY = "0x0000000000000000000000000000000000000000"

DEFAULT_DB_PATH = Path.home() / ".piecework" / "ledger.db"


class ReassignmentPolicy(str, Enum):
    """What happens when someone accepts a job that already has a freelancer."""

    STRICT = "strict"  # reject with AlreadyAccepted
    PERMISSIVE = "permissive"  # overwrite the freelancer (legacy)


class LinkPolicy(str, Enum):
    """Which submission's link is kept in ``Job.solution_link``."""

    FIRST_ONLY = "first_only"  # legacy: only the first submitted part
    ALWAYS_LATEST = "always_latest"


def is_null_identity(identity: Optional[str]) -> bool:
    """Check whether an identity is missing or the all-zero address."""
    if identity is None:
        return True
    if not isinstance(identity, str):
        return False
    value = identity.strip()
    return not value or value.lower() == NULL_IDENTITY


@dataclass
class LedgerConfig:
    """Behaviour switches for the job ledger."""

    reassignment_policy: ReassignmentPolicy = ReassignmentPolicy.STRICT
    link_policy: LinkPolicy = LinkPolicy.FIRST_ONLY
    db_path: Path = field(default_factory=lambda: DEFAULT_DB_PATH)

    def __post_init__(self):
        # Accept raw strings so config can come from env vars or JSON
        self.reassignment_policy = _parse_enum(
            ReassignmentPolicy, self.reassignment_policy, "reassignment_policy"
        )
        self.link_policy = _parse_enum(LinkPolicy, self.link_policy, "link_policy")
        self.db_path = Path(self.db_path).expanduser()

    @property
    def allows_reassignment(self) -> bool:
        return self.reassignment_policy == ReassignmentPolicy.PERMISSIVE

    @classmethod
    def from_env(cls, **overrides) -> "LedgerConfig":
        """Build a config from ``PIECEWORK_*`` environment variables.

        Explicit keyword overrides win over the environment.
        """
        values = {}
        reassignment = os.environ.get("PIECEWORK_REASSIGNMENT_POLICY")
        if reassignment:
            values["reassignment_policy"] = reassignment.strip().lower()
        link = os.environ.get("PIECEWORK_LINK_POLICY")
        if link:
            values["link_policy"] = link.strip().lower()
        db_path = os.environ.get("PIECEWORK_DB_PATH")
        if db_path:
            values["db_path"] = db_path

        values.update({k: v for k, v in overrides.items() if v is not None})
        config = cls(**values)
        logger.debug(
            f"Loaded ledger config: reassignment={config.reassignment_policy.value}, "
            f"link={config.link_policy.value}, db={config.db_path}"
        )
        return config


def _parse_enum(enum_cls, value, name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        valid = ", ".join(m.value for m in enum_cls)
        raise ValueError(f"Invalid {name}: {value!r}. Must be one of: {valid}")
