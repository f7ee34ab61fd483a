"""
Sync policy: the volume and rate limits applied to one sync pass.

A SyncPolicy is an immutable value object. Named presets are overlays on
the defaults, and every value is checked against an absolute platform
ceiling when the policy is constructed, so a runaway pull cannot be
configured regardless of preset or per-workspace override.

Configuration file format (config.yaml):

    sync_policy:
      preset: standard
      max_messages_per_conversation: 30

    workspaces:
      ws_acme:
        preset: minimal
        sync_days_back: 14

Notes:
    - Per-workspace sections overlay the global sync_policy section
    - A preset named in a workspace section replaces the global preset
    - Values above the ceiling raise PolicyViolation at load time
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from typing import Any

logger = logging.getLogger(__name__)


class SyncConfigError(Exception):
    """Raised when sync configuration loading or validation fails."""

    pass


class PolicyViolation(SyncConfigError):
    """Raised when a policy requests a value outside the platform limits."""

    pass


# Hard limits no preset or override may exceed
ABSOLUTE_CEILINGS: dict[str, int] = {
    "max_conversations": 2000,
    "max_messages_per_conversation": 100,
    "conversations_per_page": 100,
    "auto_sync_interval_minutes": 1440,
    "sync_days_back": 365,
    "max_pages": 50,
}

# Upstream rejects polling more often than this
MIN_AUTO_SYNC_INTERVAL_MINUTES = 15

# Fields that must be strictly positive
_POSITIVE_FIELDS = (
    "max_conversations",
    "max_messages_per_conversation",
    "conversations_per_page",
    "max_pages",
)

SYNC_PRESETS: dict[str, dict[str, Any]] = {
    "minimal": {
        "max_conversations": 100,
        "max_messages_per_conversation": 10,
        "sync_days_back": 7,
    },
    "standard": {
        "max_conversations": 500,
        "max_messages_per_conversation": 20,
        "sync_days_back": 30,
    },
    "comprehensive": {
        "max_conversations": 1000,
        "max_messages_per_conversation": 50,
        "sync_days_back": 90,
    },
}

DEFAULT_PRESET = "standard"


@dataclass(frozen=True)
class SyncPolicy:
    """
    Limits for one bounded sync pass.

    Attributes:
        max_conversations: Stop after this many conversations were seen
        max_messages_per_conversation: Most-recent messages fetched per thread
        conversations_per_page: Page size for conversation listing
        auto_sync_interval_minutes: Default background sync interval
        skip_unchanged: Skip message fetches when last_message_at is unchanged
        sync_days_back: Only sync conversations active in the last N days
                       (0 = no limit)
        max_pages: Safety ceiling on conversation pages per pass

    Usage:
        policy = SyncPolicy()
        policy = SyncPolicy.from_preset("minimal")
        policy = SyncPolicy.from_preset("standard", {"max_pages": 5})
        policy = SyncPolicy.from_dict({"preset": "comprehensive"})
    """

    max_conversations: int = 500
    max_messages_per_conversation: int = 20
    conversations_per_page: int = 50
    auto_sync_interval_minutes: int = 60
    skip_unchanged: bool = True
    sync_days_back: int = 30
    max_pages: int = 20

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "skip_unchanged":
                if not isinstance(value, bool):
                    raise PolicyViolation(
                        f"skip_unchanged must be a boolean, got {type(value).__name__}"
                    )
                continue
            # bool is an int subclass; reject it for count fields
            if isinstance(value, bool) or not isinstance(value, int):
                raise PolicyViolation(
                    f"{f.name} must be an integer, got {type(value).__name__}"
                )

        for name in _POSITIVE_FIELDS:
            if getattr(self, name) < 1:
                raise PolicyViolation(f"{name} must be >= 1, got {getattr(self, name)}")

        if self.sync_days_back < 0:
            raise PolicyViolation(
                f"sync_days_back must be >= 0, got {self.sync_days_back}"
            )

        if self.auto_sync_interval_minutes < MIN_AUTO_SYNC_INTERVAL_MINUTES:
            raise PolicyViolation(
                f"auto_sync_interval_minutes must be >= "
                f"{MIN_AUTO_SYNC_INTERVAL_MINUTES}, "
                f"got {self.auto_sync_interval_minutes}"
            )

        for name, ceiling in ABSOLUTE_CEILINGS.items():
            value = getattr(self, name)
            if value > ceiling:
                raise PolicyViolation(
                    f"{name}={value} exceeds the platform ceiling of {ceiling}"
                )

    @property
    def page_budget(self) -> int:
        """Pages needed to reach max_conversations, capped by max_pages."""
        needed = -(-self.max_conversations // self.conversations_per_page)
        return min(needed, self.max_pages)

    @classmethod
    def from_preset(
        cls, name: str, overrides: dict[str, Any] | None = None
    ) -> SyncPolicy:
        """
        Build a policy from a named preset plus optional field overrides.

        Raises:
            PolicyViolation: Unknown preset, unknown field, or a value outside
                            the platform limits
        """
        if name not in SYNC_PRESETS:
            raise PolicyViolation(
                f"Unknown sync preset '{name}'. "
                f"Must be one of: {', '.join(SYNC_PRESETS)}"
            )

        values: dict[str, Any] = dict(SYNC_PRESETS[name])
        if overrides:
            _check_field_names(overrides)
            values.update(overrides)

        return cls(**values)

    @classmethod
    def from_dict(
        cls, data: dict[str, Any] | None, base: SyncPolicy | None = None
    ) -> SyncPolicy:
        """
        Create a SyncPolicy from a configuration dictionary.

        The optional "preset" key selects the starting point; without it the
        starting point is ``base`` (or the defaults). Remaining keys override
        individual fields.

        Raises:
            PolicyViolation: If the structure or any value is invalid
        """
        if data is None:
            return base if base is not None else cls()

        if not isinstance(data, dict):
            raise PolicyViolation(
                f"sync_policy configuration must be a dictionary, "
                f"got {type(data).__name__}"
            )

        overrides = {k: v for k, v in data.items() if k != "preset"}
        _check_field_names(overrides)

        preset = data.get("preset")
        if preset is not None:
            if not isinstance(preset, str):
                raise PolicyViolation(
                    f"preset must be a string, got {type(preset).__name__}"
                )
            return cls.from_preset(preset, overrides)

        start = asdict(base) if base is not None else {}
        start.update(overrides)
        return cls(**start)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary format."""
        return asdict(self)


def _check_field_names(values: dict[str, Any]) -> None:
    known = {f.name for f in fields(SyncPolicy)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise PolicyViolation(f"Unknown sync policy field(s): {', '.join(unknown)}")


def policy_for_workspace(config: dict[str, Any], workspace_id: str) -> SyncPolicy:
    """
    Resolve the effective policy for a workspace.

    Applies the global ``sync_policy`` section, then the workspace's entry
    under ``workspaces`` (if any).

    Args:
        config: Loaded configuration dictionary
        workspace_id: Workspace to resolve the policy for

    Returns:
        The validated SyncPolicy
    """
    global_section = config.get("sync_policy")
    if global_section is None:
        global_section = {"preset": DEFAULT_PRESET}
    policy = SyncPolicy.from_dict(global_section)

    workspaces = config.get("workspaces") or {}
    if not isinstance(workspaces, dict):
        raise PolicyViolation(
            f"workspaces must be a dictionary, got {type(workspaces).__name__}"
        )

    workspace_section = workspaces.get(workspace_id)
    if workspace_section is not None:
        policy = SyncPolicy.from_dict(workspace_section, base=policy)
        logger.debug(f"Applied policy override for workspace {workspace_id}")

    return policy


# Presets must never exceed the ceilings; fail at import rather than at runtime
for _name in SYNC_PRESETS:
    SyncPolicy.from_preset(_name)
