from __future__ import annotations

import pytest

from retro_importer.core.exceptions import MalformedRecordError
from retro_importer.integrations.incident_io.schemas import (
    Assignee,
    CustomField,
    CustomFieldOption,
    CustomFieldValue,
    IncidentRole,
    IncidentStatus,
    IncidentTimestamp,
    IncidentTypeRef,
    RoleAssignment,
    Severity,
    SeverityRef,
    StatusRef,
    TimestampValue,
)
from retro_importer.mapping.context import MappingContext
from retro_importer.mapping.resolvers import (
    check_custom_field_values,
    resolve_custom_field,
    resolve_incident_type,
    resolve_role_assignments,
    resolve_severity,
    resolve_status,
    resolve_timestamps,
    resolve_user,
)
from retro_importer.models.enums import CustomFieldKind


def _area_value(*labels: str) -> CustomFieldValue:
    return CustomFieldValue(
        custom_field_id="src-cf-area",
        custom_field=CustomField(id="src-cf-area", name="Affected Area", field_type="multi_select"),
        values=[{"value_option": {"id": f"src-{label}", "value": label}} for label in labels],
    )


def test_severity_exact_name_is_case_insensitive_without_warnings(target_context) -> None:
    result = resolve_severity(SeverityRef(name="  mAjOr ", rank=9), target_context)

    assert result.value == "sev-major"
    assert result.warnings == []


def test_severity_falls_back_to_closest_rank(target_context) -> None:
    result = resolve_severity(SeverityRef(name="P1", rank=1), target_context)

    assert result.value == "sev-critical"
    assert len(result.warnings) == 1
    assert "mapped to" in result.warnings[0]
    assert '"Critical"' in result.warnings[0]


def test_severity_rank_tie_resolves_to_lower_rank_every_time() -> None:
    target = MappingContext.from_entities(
        severities=[
            Severity(id="sev-high", name="High", rank=4),
            Severity(id="sev-low", name="Low", rank=2),
        ]
    )
    source = SeverityRef(name="Medium", rank=3)

    picks = {resolve_severity(source, target).value for _ in range(5)}

    assert picks == {"sev-low"}


def test_severity_without_target_severities_warns_and_emits_nothing() -> None:
    result = resolve_severity(SeverityRef(name="P1", rank=1), MappingContext.empty())

    assert result.value is None
    assert len(result.warnings) == 1


def test_status_exact_name_and_category(target_context) -> None:
    result = resolve_status(StatusRef(name="closed", category="closed"), target_context)

    assert result.value == "st-closed"
    assert result.warnings == []


def test_status_name_match_with_other_category_warns(target_context) -> None:
    result = resolve_status(StatusRef(name="Investigating", category="learning"), target_context)

    assert result.value == "st-investigating"
    assert result.warnings == [
        'Status "Investigating" found but category differs (source: learning, target: live)'
    ]


def test_status_unknown_name_falls_back_to_category(target_context) -> None:
    result = resolve_status(StatusRef(name="Unknown", category="live"), target_context)

    assert result.value == "st-investigating"
    assert len(result.warnings) == 1


def test_status_with_no_match_at_all_is_unmapped(target_context) -> None:
    result = resolve_status(StatusRef(name="Paused", category="paused"), target_context)

    assert result.value is None
    assert result.warnings == ['Status "Paused" (paused) could not be mapped']


def test_missing_status_defaults_to_closed_category(target_context) -> None:
    result = resolve_status(None, target_context)

    assert result.value == "st-closed"
    assert target_context.statuses[result.value].category == "closed"
    assert len(result.warnings) == 1
    assert "Closed" in result.warnings[0]


def test_missing_status_defaults_to_name_containing_closed() -> None:
    target = MappingContext.from_entities(
        statuses=[
            IncidentStatus(id="st-live", name="Fixing", category="live"),
            IncidentStatus(id="st-done", name="Closed (resolved)", category="post-incident"),
        ]
    )

    result = resolve_status(None, target)

    assert result.value == "st-done"
    assert len(result.warnings) == 1


def test_incident_type_miss_is_a_warning(target_context) -> None:
    assert resolve_incident_type(IncidentTypeRef(name="security"), target_context).value == "type-security"

    result = resolve_incident_type(IncidentTypeRef(name="Chaos drill"), target_context)
    assert result.value is None
    assert result.warnings == ['Incident type "Chaos drill" not found in target']


def test_user_resolves_by_email_then_slack_id(target_context) -> None:
    by_email = resolve_user(Assignee(id="u1", email="ADA@example.com"), target_context)
    by_slack = resolve_user(Assignee(id="u2", email="ada@old.example.com", slack_user_id="U111"), target_context)
    missing = resolve_user(Assignee(id="u3", email="bob@example.com"), target_context)

    assert (by_email.value, by_email.warnings) == ("user-ada", [])
    assert by_slack.value == "user-ada"
    assert "Slack ID" in by_slack.warnings[0]
    assert missing.value is None
    assert missing.warnings == ["User bob@example.com not found in target (may need to invite them)"]


def test_timestamps_map_by_definition_name(target_context) -> None:
    values = [
        TimestampValue(
            incident_timestamp_id="src-ts-1",
            incident_timestamp=IncidentTimestamp(id="src-ts-1", name="impact started"),
            value="2026-01-02T10:00:00Z",
        ),
        TimestampValue(
            incident_timestamp_id="src-ts-2",
            incident_timestamp=IncidentTimestamp(id="src-ts-2", name="Customer notified"),
            value="2026-01-02T11:00:00Z",
        ),
        TimestampValue(incident_timestamp_id="src-ts-unknown", value="2026-01-02T12:00:00Z"),
    ]

    result = resolve_timestamps(values, target_context)

    assert result.value == [{"incident_timestamp_id": "ts-impact", "value": "2026-01-02T10:00:00Z"}]
    assert result.warnings == ['Timestamp "Customer notified" not found in target']


def test_timestamp_definition_can_come_from_source_context(target_context) -> None:
    source = MappingContext.from_entities(timestamps=[IncidentTimestamp(id="src-ts-1", name="Impact started")])
    values = [TimestampValue(incident_timestamp_id="src-ts-1", value="2026-01-02T10:00:00Z")]

    result = resolve_timestamps(values, target_context, source)

    assert result.value == [{"incident_timestamp_id": "ts-impact", "value": "2026-01-02T10:00:00Z"}]


def test_role_assignments_carry_role_type_and_drop_unknown_roles(target_context) -> None:
    assignments = [
        RoleAssignment(
            incident_role_id="src-reporter",
            role=IncidentRole(id="src-reporter", name="Reporter", role_type="reporter"),
            assignee=Assignee(id="src-ada", email="ada@example.com"),
        ),
        RoleAssignment(
            incident_role_id="src-scribe",
            role=IncidentRole(id="src-scribe", name="Scribe"),
            assignee=Assignee(id="src-ada", email="ada@example.com"),
        ),
        RoleAssignment(incident_role_id="src-orphan"),
    ]

    result = resolve_role_assignments(assignments, target_context)

    assert [(item.incident_role_id, item.role_type, item.assignee_id) for item in result.value] == [
        ("role-reporter", "reporter", "user-ada")
    ]
    assert result.value[0].is_reporter
    assert result.warnings == [
        'Role "Scribe" not found in target',
        "Source role src-orphan definition not found",
    ]


def test_role_assignment_with_unknown_user_is_dropped(target_context) -> None:
    assignments = [
        RoleAssignment(
            incident_role_id="src-lead",
            role=IncidentRole(id="src-lead", name="Incident Lead", role_type="lead"),
            assignee=Assignee(id="src-bob", email="bob@example.com"),
        )
    ]

    result = resolve_role_assignments(assignments, target_context)

    assert result.value == []
    assert "may need to invite them" in result.warnings[0]


def test_option_values_map_by_label_and_report_missing_options(target_context) -> None:
    result = resolve_custom_field(_area_value("api", "Mobile"), target_context)

    assert result.value.custom_field_id == "cf-area"
    assert result.value.kind == CustomFieldKind.option
    assert result.value.to_payload() == {
        "custom_field_id": "cf-area",
        "values": [{"value_option_id": "opt-api"}],
    }
    assert result.warnings == ['Option "Mobile" in field "Affected Area" not found in target']


def test_field_with_no_resolvable_values_is_dropped(target_context) -> None:
    result = resolve_custom_field(_area_value("Mobile"), target_context)

    assert result.value is None
    assert len(result.warnings) == 1


def test_catalog_values_match_external_id_then_name_then_alias(target_context) -> None:
    source_field = CustomField(id="src-cf-team", name="Team", field_type="single_select", catalog_type_id="src-cat")

    def resolve(entry: dict) -> str | None:
        value = CustomFieldValue(
            custom_field_id="src-cf-team",
            custom_field=source_field,
            values=[{"value_catalog_entry": entry}],
        )
        resolved = resolve_custom_field(value, target_context).value
        return resolved.values[0] if resolved else None

    assert resolve({"id": "x1", "name": "Renamed", "external_id": "PAYMENTS"}) == "entry-payments"
    assert resolve({"id": "x2", "name": "payments"}) == "entry-payments"
    assert resolve({"id": "x3", "name": "Billing"}) == "entry-payments"
    assert resolve({"id": "x4", "name": "Growth"}) is None


def test_single_select_keeps_only_first_value(target_context) -> None:
    value = CustomFieldValue(
        custom_field_id="src-cf-team",
        custom_field=CustomField(id="src-cf-team", name="team", field_type="single_select", catalog_type_id="c"),
        values=[
            {"value_catalog_entry": {"id": "a", "name": "Payments"}},
            {"value_catalog_entry": {"id": "b", "name": "Billing"}},
        ],
    )

    result = resolve_custom_field(value, target_context)

    assert result.value.kind == CustomFieldKind.catalog
    assert result.value.to_payload() == {
        "custom_field_id": "cf-team",
        "values": [{"value_catalog_entry_id": "entry-payments"}],
    }


def test_single_select_reports_dropped_values() -> None:
    target = MappingContext.from_entities(
        custom_fields=[
            CustomField(
                id="cf-region",
                name="Region",
                field_type="single_select",
                options=[
                    CustomFieldOption(id="opt-eu", value="EU"),
                    CustomFieldOption(id="opt-us", value="US"),
                    CustomFieldOption(id="opt-apac", value="APAC"),
                ],
            )
        ]
    )
    value = CustomFieldValue(
        custom_field_id="src-cf-region",
        custom_field=CustomField(id="src-cf-region", name="Region", field_type="multi_select"),
        values=[
            {"value_option": {"id": "src-eu", "value": "EU"}},
            {"value_option": {"id": "src-us", "value": "US"}},
            {"value_option": {"id": "src-apac", "value": "apac"}},
        ],
    )

    result = resolve_custom_field(value, target)

    assert result.value.to_payload() == {"custom_field_id": "cf-region", "values": [{"value_option_id": "opt-eu"}]}
    assert result.warnings == ['Field "Region" accepts one value, dropped: "US", "apac"']


def test_text_values_pass_through(target_context) -> None:
    value = CustomFieldValue(
        custom_field_id="src-cf-notes",
        custom_field=CustomField(id="src-cf-notes", name="Notes", field_type="text"),
        values=[{"value_text": "Rolled back deploy 42"}],
    )

    result = resolve_custom_field(value, target_context)

    assert result.value.to_payload() == {"custom_field_id": "cf-notes", "values": [{"value_text": "Rolled back deploy 42"}]}
    assert result.warnings == []


def test_unknown_custom_field_is_dropped_with_warning(target_context) -> None:
    value = CustomFieldValue(
        custom_field_id="src-cf-x",
        custom_field=CustomField(id="src-cf-x", name=" Customer Tier ", field_type="text"),
        values=[{"value_text": "gold"}],
    )

    result = resolve_custom_field(value, target_context)

    assert result.value is None
    assert result.warnings == ['Custom field "Customer Tier" not found in target']


def test_malformed_select_value_raises(target_context) -> None:
    value = CustomFieldValue(
        custom_field_id="src-cf-area",
        custom_field=CustomField(id="src-cf-area", name="Affected Area", field_type="multi_select"),
        values=[["not", "an", "object"]],
    )

    with pytest.raises(MalformedRecordError):
        resolve_custom_field(value, target_context)


def test_value_shapes_are_checked_against_the_source_field_type() -> None:
    area = CustomField(id="src-cf-area", name="Affected Area", field_type="multi_select")
    notes = CustomField(id="src-cf-notes", name="Notes", field_type="numeric")

    check_custom_field_values(
        [
            CustomFieldValue(custom_field_id="src-cf-area", custom_field=area, values=["src-opt-api", {"value_option_id": "x"}]),
            CustomFieldValue(custom_field_id="src-cf-notes", custom_field=notes, values=[42, 1.5]),
        ]
    )
    with pytest.raises(MalformedRecordError, match="Affected Area"):
        check_custom_field_values([CustomFieldValue(custom_field_id="src-cf-area", custom_field=area, values=[42])])
    with pytest.raises(MalformedRecordError):
        check_custom_field_values([CustomFieldValue(custom_field_id="src-cf-notes", custom_field=notes, values=[None])])
