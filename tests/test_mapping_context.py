from __future__ import annotations

import pytest

from retro_importer.core.exceptions import IncidentIoApiError
from retro_importer.integrations.incident_io.schemas import CatalogEntry, Severity
from retro_importer.mapping.context import CatalogIndex, MappingContext, build_mapping_context


def test_build_mapping_context_loads_every_entity_kind(fake_target) -> None:
    context = build_mapping_context(fake_target)

    assert set(context.severities) == {"sev-critical", "sev-major", "sev-minor"}
    assert set(context.statuses) == {"st-triage", "st-investigating", "st-closed"}
    assert context.types["type-security"].private_incidents_only is True
    assert context.timestamps_by_name["impact started"].id == "ts-impact"
    assert context.roles_by_name["reporter"].role_type == "reporter"
    assert context.users_by_email["ada@example.com"].id == "user-ada"
    assert context.users_by_slack_id["U111"].id == "user-ada"
    assert [option.value for option in context.custom_fields["cf-area"].options] == ["API", "Web"]
    assert context.catalog_indexes["cat-team"].lookup(name="payments") == "entry-payments"


def test_options_are_fetched_only_for_option_backed_select_fields(fake_target) -> None:
    fake_target.config["custom_fields"].append(
        {
            "id": "cf-region",
            "name": "Region",
            "field_type": "single_select",
            "options": [{"id": "opt-eu", "value": "EU"}],
        }
    )

    context = build_mapping_context(fake_target)

    assert fake_target.calls_to("list_custom_field_options") == ["cf-area"]
    assert [option.id for option in context.custom_fields["cf-region"].options] == ["opt-eu"]


def test_catalog_entries_are_fetched_once_per_catalog_type(fake_target) -> None:
    fake_target.config["custom_fields"].append(
        {"id": "cf-owner", "name": "Owning team", "field_type": "multi_select", "catalog_type_id": "cat-team"}
    )

    context = build_mapping_context(fake_target)

    assert fake_target.calls_to("list_catalog_entries") == ["cat-team"]
    assert list(context.catalog_indexes) == ["cat-team"]


def test_listing_failure_aborts_context_build(fake_target, monkeypatch) -> None:
    def broken() -> list:
        raise IncidentIoApiError(403, "Forbidden", method="GET", path="/v1/severities")

    monkeypatch.setattr(fake_target, "list_severities", broken)

    with pytest.raises(IncidentIoApiError):
        build_mapping_context(fake_target)


def test_name_index_keeps_first_entity_in_listing_order() -> None:
    context = MappingContext.from_entities(
        severities=[
            Severity(id="sev-b", name="Major ", rank=2),
            Severity(id="sev-a", name="major", rank=3),
        ]
    )

    assert context.severities_by_name["major"].id == "sev-b"


def test_catalog_collisions_prefer_smallest_entry_id() -> None:
    entries = [
        CatalogEntry(id="entry-9", name="Payments", external_id="pay"),
        CatalogEntry(id="entry-1", name="payments", aliases=["pay"]),
        CatalogEntry(id="entry-5", name="Billing", external_id="PAY"),
    ]

    forward = CatalogIndex.build("cat", entries)
    backward = CatalogIndex.build("cat", list(reversed(entries)))

    for index in (forward, backward):
        assert index.lookup(name="Payments") == "entry-1"
        assert index.lookup(external_id="pay") == "entry-5"
        assert index.lookup(name="unknown", aliases=["pay"]) == "entry-1"


def test_empty_context_has_no_entities() -> None:
    context = MappingContext.empty()

    assert context.severities == {}
    assert context.catalog_indexes == {}
