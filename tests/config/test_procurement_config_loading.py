"""
Tests for configuration loading, validation and runtime replacement.

Covers:
- The packaged defaults load and validate cleanly
- parse_policy / parse_priority / parse_snapshot field handling
- Receiving rules, transition permissions and audit settings sections
- validate_snapshot errors and warnings
- ConfigProvider.replace keeps the active snapshot on invalid input
- get_active_config emits the config trace log
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest
import yaml

from procurement_config import ConfigProvider, get_active_config, validate_snapshot
from procurement_config.loader import (
    compute_checksum,
    load_config,
    parse_policy,
    parse_priority,
    parse_snapshot,
)
from procurement_kernel.domain.approval import ConditionOperator
from procurement_kernel.domain.order_status import OrderStatus
from procurement_kernel.domain.receiving import DamagedItemHandling, ToleranceType
from procurement_kernel.exceptions import InvalidConfigurationError


def minimal_document(**overrides):
    document = {
        "config_id": "test-config",
        "version": 7,
        "approval_policies": [
            {
                "name": "everything",
                "min_amount": "0",
                "max_amount": None,
                "required_roles": ["finance_manager"],
            },
        ],
        "escalation": {
            "max_escalations": 1,
            "levels": [{"level": 1, "after_hours": 24, "roles": ["director"]}],
        },
    }
    document.update(overrides)
    return document


# =============================================================================
# Loading
# =============================================================================


class TestDefaults:
    """The packaged configuration is valid as shipped."""

    def test_defaults_validate_without_errors(self):
        snapshot = load_config()
        result = validate_snapshot(snapshot)

        assert result.is_valid, result.errors
        assert result.warnings == []

    def test_defaults_contents(self, config_snapshot):
        assert config_snapshot.config_id == "procurement-default"
        assert config_snapshot.policy("small_purchases").auto_approve
        assert config_snapshot.policy("large_purchases").required_approvers == 2
        assert config_snapshot.tolerance.over.block_threshold == Decimal("10")
        assert config_snapshot.tolerance.under.block_threshold is None
        assert [lvl.level for lvl in config_snapshot.escalation.levels] == [1, 2, 3]
        assert config_snapshot.integration.max_attempts == 3
        assert date(2024, 12, 25) in config_snapshot.holidays

    def test_receiving_and_permission_defaults(self, config_snapshot):
        receiving = config_snapshot.receiving
        assert receiving.partial.max_partial_receipts == 5
        assert receiving.quality.damaged_item_handling == DamagedItemHandling.PARTIAL_ACCEPT
        assert receiving.expiry.approval_roles == ("warehouse_manager", "procurement_manager")
        assert "Water Damage" in receiving.damage.damage_categories

        permissions = config_snapshot.transition_permissions
        assert permissions.enforced
        assert permissions.allows("pat", "procurement_manager", OrderStatus.CLOSED)
        assert not permissions.allows("bob", "clerk", OrderStatus.SENT_TO_SUPPLIER)
        assert not permissions.allows("ivan", "it_manager", OrderStatus.CANCELLED)
        assert config_snapshot.audit.background_writes

    def test_load_from_path(self, tmp_path):
        path = tmp_path / "procurement.yaml"
        path.write_text(yaml.safe_dump(minimal_document()))

        snapshot = load_config(path)

        assert snapshot.label == "test-config@v7"
        assert snapshot.policies[0].max_amount is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")


class TestParsing:
    @pytest.mark.parametrize(
        "raw, expected",
        [(None, 0), ("low", 1), ("Medium", 2), ("high", 3), ("urgent", 4), (7, 7), ("5", 5)],
    )
    def test_priority(self, raw, expected):
        assert parse_priority(raw) == expected

    def test_unknown_priority(self):
        with pytest.raises(ValueError):
            parse_priority("someday")

    def test_policy_fields(self):
        policy = parse_policy({
            "name": "it",
            "min_amount": "1000",
            "max_amount": "10000.50",
            "required_roles": ["it_manager"],
            "priority": "high",
            "conditions": [
                {"field": "product_category", "operator": "in", "value": ["software"]},
            ],
        })

        assert policy.max_amount == Decimal("10000.50")
        assert policy.priority == 3
        assert policy.conditions[0].operator == ConditionOperator.IN
        assert policy.conditions[0].value == ("software",)

    def test_tolerance_overrides_merge_with_defaults(self):
        snapshot = parse_snapshot(minimal_document(
            tolerance={"over": {"tolerance_type": "fixed", "tolerance_value": "3"}},
        ))

        assert snapshot.tolerance.over.tolerance_type == ToleranceType.FIXED
        assert snapshot.tolerance.over.tolerance_value == Decimal("3")
        assert snapshot.tolerance.over.warning_threshold == Decimal("2")

    def test_omitted_sections_keep_defaults(self):
        snapshot = parse_snapshot(minimal_document(
            receiving={"expiry_handling": {"warn_before_days": 14}},
        ))

        assert snapshot.receiving.expiry.warn_before_days == 14
        assert snapshot.receiving.expiry.near_expiry_threshold_days == 7
        assert snapshot.receiving.damage.require_damage_report
        assert not snapshot.transition_permissions.enforced
        assert snapshot.transition_permissions.allows("anyone", None, OrderStatus.CLOSED)

    def test_unknown_damage_handling(self):
        with pytest.raises(ValueError):
            parse_snapshot(minimal_document(
                receiving={"quality_checks": {"damaged_item_handling": "shred"}},
            ))

    def test_checksum_is_deterministic(self):
        a = compute_checksum({"b": 1, "a": [1, 2]})
        b = compute_checksum({"a": [1, 2], "b": 1})
        assert a == b
        assert a != compute_checksum({"a": [2, 1], "b": 1})


# =============================================================================
# Validation
# =============================================================================


class TestValidation:
    def test_overlapping_identical_policies_are_an_error(self):
        document = minimal_document()
        document["approval_policies"].append(dict(document["approval_policies"][0], name="twin"))
        result = validate_snapshot(parse_snapshot(document))

        assert not result.is_valid
        assert any("overlap" in e for e in result.errors)

    def test_duplicate_names(self):
        document = minimal_document()
        document["approval_policies"].append(
            dict(document["approval_policies"][0], priority="high"),
        )
        result = validate_snapshot(parse_snapshot(document))
        assert any("Duplicate" in e for e in result.errors)

    def test_inverted_range(self):
        document = minimal_document(approval_policies=[
            {"name": "bad", "min_amount": "100", "max_amount": "10", "required_roles": ["x"]},
        ])
        result = validate_snapshot(parse_snapshot(document))
        assert any("max_amount must exceed min_amount" in e for e in result.errors)

    def test_unknown_condition_field(self):
        document = minimal_document()
        document["approval_policies"][0]["conditions"] = [
            {"field": "colour", "operator": "equals", "value": "red"},
        ]
        result = validate_snapshot(parse_snapshot(document))
        assert any("colour" in e for e in result.errors)

    def test_tolerance_ordering(self):
        snapshot = parse_snapshot(minimal_document(
            tolerance={"over": {"tolerance_value": "5", "block_threshold": "3"}},
        ))
        result = validate_snapshot(snapshot)
        assert any("block_threshold is below" in e for e in result.errors)

    def test_escalation_level_gap(self):
        snapshot = parse_snapshot(minimal_document(escalation={
            "levels": [
                {"level": 1, "after_hours": 24, "roles": ["a"]},
                {"level": 3, "after_hours": 72, "roles": ["b"]},
            ],
        }))
        result = validate_snapshot(snapshot)
        assert any("without gaps" in e for e in result.errors)

    def test_unknown_permission_status(self):
        snapshot = parse_snapshot(minimal_document(
            transition_permissions={"roles": {"clerk": ["cancelled", "shipped"]}},
        ))
        result = validate_snapshot(snapshot)
        assert any("'shipped'" in e for e in result.errors)

    def test_required_quality_check_needs_roles(self):
        snapshot = parse_snapshot(minimal_document(
            receiving={"quality_checks": {"require_quality_check": True}},
        ))
        result = validate_snapshot(snapshot)
        assert any("quality_check_roles" in e for e in result.errors)

    def test_missing_coverage_is_a_warning(self):
        document = minimal_document(approval_policies=[
            {"name": "mid", "min_amount": "100", "max_amount": "200", "required_roles": ["x"]},
        ])
        result = validate_snapshot(parse_snapshot(document))

        assert result.is_valid
        assert any("starting at 0" in w for w in result.warnings)
        assert any("unbounded" in w for w in result.warnings)


# =============================================================================
# Runtime provider
# =============================================================================


class TestConfigProvider:
    def test_replace_returns_previous(self, config_snapshot):
        provider = ConfigProvider(config_snapshot)
        updated = replace(config_snapshot, version=2)

        assert provider.replace(updated) is config_snapshot
        assert provider.current() is updated

    def test_invalid_replacement_keeps_active_snapshot(self, config_snapshot):
        provider = ConfigProvider(config_snapshot)
        broken = replace(config_snapshot, bulk_parallelism=0)

        with pytest.raises(InvalidConfigurationError):
            provider.replace(broken)
        assert provider.current() is config_snapshot

    def test_invalid_initial_snapshot(self, config_snapshot):
        with pytest.raises(InvalidConfigurationError):
            ConfigProvider(replace(config_snapshot, bulk_parallelism=0))


class TestGetActiveConfig:
    def test_emits_trace(self, captured_logs):
        snapshot = get_active_config()

        traces = [r for r in captured_logs() if r["message"] == "PROCUREMENT_CONFIG_TRACE"]
        assert traces
        assert traces[-1]["checksum"] == snapshot.checksum

    def test_invalid_file_raises(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text(yaml.safe_dump(minimal_document(bulk_parallelism=0)))

        with pytest.raises(InvalidConfigurationError):
            get_active_config(path)
