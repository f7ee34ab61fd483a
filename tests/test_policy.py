"""Tests for the sync policy value object."""

import pytest

from outreach_sync.config.sync_policy import (
    ABSOLUTE_CEILINGS,
    SYNC_PRESETS,
    PolicyViolation,
    SyncPolicy,
    policy_for_workspace,
)


class TestSyncPolicyDefaults:
    """Tests for defaults and presets."""

    def test_defaults(self):
        policy = SyncPolicy()
        assert policy.max_conversations == 500
        assert policy.max_messages_per_conversation == 20
        assert policy.skip_unchanged is True

    @pytest.mark.parametrize("name", list(SYNC_PRESETS))
    def test_presets_within_ceilings(self, name):
        policy = SyncPolicy.from_preset(name)
        for field_name, ceiling in ABSOLUTE_CEILINGS.items():
            assert getattr(policy, field_name) <= ceiling

    def test_minimal_preset(self):
        policy = SyncPolicy.from_preset("minimal")
        assert policy.max_conversations == 100
        assert policy.sync_days_back == 7

    def test_unknown_preset(self):
        with pytest.raises(PolicyViolation, match="Unknown sync preset"):
            SyncPolicy.from_preset("everything")

    def test_page_budget(self):
        policy = SyncPolicy(max_conversations=120, conversations_per_page=50)
        assert policy.page_budget == 3
        assert SyncPolicy(max_pages=2).page_budget == 2


class TestSyncPolicyValidation:
    """Tests for ceilings and type checks."""

    @pytest.mark.parametrize("field_name", list(ABSOLUTE_CEILINGS))
    def test_values_above_ceiling_rejected(self, field_name):
        with pytest.raises(PolicyViolation, match="ceiling"):
            SyncPolicy(**{field_name: ABSOLUTE_CEILINGS[field_name] + 1})

    def test_override_above_ceiling_rejected(self):
        with pytest.raises(PolicyViolation):
            SyncPolicy.from_preset("comprehensive", {"max_messages_per_conversation": 500})

    def test_interval_floor(self):
        with pytest.raises(PolicyViolation, match="auto_sync_interval_minutes"):
            SyncPolicy(auto_sync_interval_minutes=5)

    def test_zero_page_size_rejected(self):
        with pytest.raises(PolicyViolation, match="conversations_per_page"):
            SyncPolicy(conversations_per_page=0)

    def test_negative_days_rejected(self):
        with pytest.raises(PolicyViolation):
            SyncPolicy(sync_days_back=-1)

    def test_zero_days_means_unbounded(self):
        assert SyncPolicy(sync_days_back=0).sync_days_back == 0

    def test_bool_is_not_a_count(self):
        with pytest.raises(PolicyViolation, match="integer"):
            SyncPolicy(max_pages=True)

    def test_skip_unchanged_must_be_bool(self):
        with pytest.raises(PolicyViolation, match="boolean"):
            SyncPolicy(skip_unchanged="yes")

    def test_unknown_field(self):
        with pytest.raises(PolicyViolation, match="Unknown sync policy field"):
            SyncPolicy.from_dict({"max_pagez": 3})

    def test_policy_is_immutable(self):
        policy = SyncPolicy()
        with pytest.raises(AttributeError):
            policy.max_pages = 3


class TestPolicyForWorkspace:
    """Tests for layered configuration."""

    def test_no_config_uses_standard(self):
        assert policy_for_workspace({}, "ws") == SyncPolicy.from_preset("standard")

    def test_workspace_overlays_global(self):
        config = {
            "sync_policy": {"preset": "standard", "max_pages": 5},
            "workspaces": {"ws_acme": {"sync_days_back": 14}},
        }
        policy = policy_for_workspace(config, "ws_acme")
        assert policy.max_pages == 5
        assert policy.sync_days_back == 14

        other = policy_for_workspace(config, "ws_other")
        assert other.sync_days_back == 30

    def test_workspace_preset_replaces_global_preset(self):
        config = {
            "sync_policy": {"preset": "comprehensive"},
            "workspaces": {"ws_small": {"preset": "minimal"}},
        }
        assert policy_for_workspace(config, "ws_small").max_conversations == 100

    def test_workspaces_must_be_mapping(self):
        with pytest.raises(PolicyViolation):
            policy_for_workspace({"workspaces": ["ws"]}, "ws")
