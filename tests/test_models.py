"""
Tests for the data model: settings normalization, silo ordering and
record serialization.
"""
from __future__ import annotations

import pytest

from silo_linker.models import (
    HUB_TOKEN,
    LinkRecord,
    LinkSettings,
    LinkingMode,
    PatternRule,
    PlacementType,
    RunContext,
    Silo,
    SiloMember,
    SkipReason,
)


class TestLinkSettings:

    @pytest.mark.unit
    def test_defaults(self):
        settings = LinkSettings.from_raw(None)
        assert settings.linking_mode == LinkingMode.LINEAR
        assert settings.supports_to_hub is True
        assert settings.hub_to_supports is False
        assert settings.max_hub_links == 5
        assert settings.max_contextual_links == 3
        assert settings.max_cross_links_per_post == 5
        assert settings.placement_type == PlacementType.NATURAL
        assert settings.explicit == set()

    @pytest.mark.unit
    @pytest.mark.parametrize("raw,expected", [
        (True, True), (1, True), ("1", True), ("true", True), ("Yes", True),
        (False, False), (0, False), ("0", False), ("false", False), ("", False),
    ])
    def test_truthy_encodings(self, raw, expected):
        assert LinkSettings.from_raw({"hub_to_supports": raw}).hub_to_supports is expected

    @pytest.mark.unit
    def test_json_string_and_numeric_strings(self):
        settings = LinkSettings.from_raw('{"max_hub_links": "7", "max_cross_links_per_post": 2.0}')
        assert settings.max_hub_links == 7
        assert settings.max_cross_links_per_post == 2
        assert settings.explicit == {"max_hub_links", "max_cross_links_per_post"}

    @pytest.mark.unit
    def test_invalid_values_fall_back(self):
        settings = LinkSettings.from_raw({"max_hub_links": "lots"})
        assert settings.max_hub_links == 5
        assert LinkSettings.from_raw("{not json").max_hub_links == 5

    @pytest.mark.unit
    def test_legacy_aliases(self):
        settings = LinkSettings.from_raw({
            "pillar_to_supports": "true",
            "supports_to_pillar": "0",
            "max_pillar_links": 2,
            "use_ai_anchors": False,
            "auto_update": 1,
        })
        assert settings.hub_to_supports is True
        assert settings.supports_to_hub is False
        assert settings.max_hub_links == 2
        assert settings.use_suggester is False
        assert settings.auto_link is True
        assert "supports_to_hub" in settings.explicit

    @pytest.mark.unit
    def test_mode_argument_wins(self):
        settings = LinkSettings.from_raw({"linking_mode": "chained"}, "star-hub")
        assert settings.linking_mode == LinkingMode.STAR_HUB

    @pytest.mark.unit
    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError):
            LinkSettings.from_raw({}, "spiral")

    @pytest.mark.unit
    def test_custom_pattern_parsing(self):
        settings = LinkSettings.from_raw({
            "custom_pattern": [
                {"source": "hub", "target": "12"},
                {"from": 12, "to": "Pillar"},
                "garbage",
            ]
        })
        assert settings.custom_pattern == [
            PatternRule(HUB_TOKEN, 12),
            PatternRule(12, HUB_TOKEN),
        ]

    @pytest.mark.unit
    def test_round_trip_dict(self):
        raw = {"linking_mode": "custom", "custom_pattern": [{"source": "hub", "target": 3}]}
        settings = LinkSettings.from_raw(raw)
        again = LinkSettings.from_raw(settings.to_dict())
        assert again.custom_pattern == settings.custom_pattern
        assert again.linking_mode == LinkingMode.CUSTOM


class TestSilo:

    @pytest.mark.unit
    def test_support_order_and_hub_exclusion(self):
        silo = Silo(
            silo_id=1,
            name="Tarot",
            hub_id=5,
            members=[SiloMember(9, 2), SiloMember(5, 0), SiloMember(7, 1), SiloMember(7, 3)],
        )
        assert silo.support_ids == [7, 9]
        assert silo.all_node_ids == [5, 7, 9]
        assert silo.contains(5) and silo.contains(9)
        assert not silo.contains(99)

    @pytest.mark.unit
    def test_from_dict(self):
        silo = Silo.from_dict({
            "silo_id": "3",
            "name": "Herbs",
            "hub_id": 0,
            "members": [{"node_id": "4", "position": "1"}],
            "linking_mode": "hub_chain",
        })
        assert silo.silo_id == 3
        assert silo.hub_id is None
        assert silo.has_hub is False
        assert silo.linking_mode == LinkingMode.HUB_CHAIN
        assert silo.support_ids == [4]


class TestRecords:

    @pytest.mark.unit
    def test_link_record_round_trip(self):
        record = LinkRecord("abc123", 1, 2, 3, "moon water", insertion_offset=42)
        again = LinkRecord.from_dict({**record.to_dict(), "unknown": "ignored"})
        assert again == record
        assert again.is_active

    @pytest.mark.unit
    def test_run_context_anchor_tracking(self):
        silo = Silo(silo_id=1, name="Run")
        ctx = RunContext(silo=silo, settings=silo.link_settings())
        ctx.mark_anchor_used("  Moon Water ")
        assert ctx.is_anchor_used("moon water")
        record = ctx.record_skip(1, 2, SkipReason.NO_ANCHOR, "nothing usable")
        assert ctx.skipped == [record]
        assert record.to_dict()["reason"] == "no_anchor"
