"""
Unit tests for the payload building steps

Tests:
- FieldBuilder: record fields, record_id and ref: tokens, blank skipping
- PayloadBuilder: custom values, NoData, module settings defaults
- LookupResolver: lookup-typed fields, ID passthrough, helpdesk name lookups
"""

import pytest

from crmsync.api.lookup import LookupResolver
from crmsync.api.targets import FieldMeta
from crmsync.builder.field_builder import FieldBuilder, is_blank
from crmsync.builder.payload_builder import PayloadBuilder
from crmsync.context import SyncContext
from crmsync.errors import NoDataError
from crmsync.schema.models import MappingSpec, Record, SyncResult, TargetRef


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def record():
    """Sample form submission"""
    return Record("1", {
        "email": "a@b.com",
        "name": "Jo",
        "company": "Acme",
        "phone": "",
        "amount": "200",
    })


@pytest.fixture
def builder(registry):
    return PayloadBuilder(LookupResolver(registry))


def lead_spec(**overrides):
    data = {
        "key": "lead",
        "target": {"system": "crm", "module": "Leads"},
        "fields": [["email", "Email"], ["name", "Name"]],
    }
    data.update(overrides)
    return MappingSpec.from_dict(data)


# ============================================================================
# FIELD BUILDER
# ============================================================================


class TestFieldBuilder:

    def test_maps_fields_in_order(self, record):
        fields = FieldBuilder().build_fields([("email", "Email"), ("name", "Name")], record, {})
        assert fields == {"Email": "a@b.com", "Name": "Jo"}
        assert list(fields) == ["Email", "Name"]

    def test_blank_values_are_skipped(self, record):
        fields = FieldBuilder().build_fields([("phone", "Phone"), ("missing", "Other")], record, {})
        assert fields == {}

    def test_record_id_token(self, record):
        fields = FieldBuilder().build_fields([("record_id", "Form_Entry_ID")], record, {})
        assert fields == {"Form_Entry_ID": "1"}

    def test_ref_token_uses_prior_result(self, record):
        prior = {"account": SyncResult("account", True, target_record_id="9001")}
        fields = FieldBuilder().build_fields([("ref:account", "Account_Name"), ("name", "Name")], record, prior)
        assert fields == {"Account_Name": "9001", "Name": "Jo"}

    def test_ref_to_failed_mapping_is_skipped(self, record):
        prior = {"account": SyncResult("account", False, "boom")}
        fields = FieldBuilder().build_fields([("ref:account", "Account_Name"), ("name", "Name")], record, prior)
        assert fields == {"Name": "Jo"}

    def test_ref_to_unknown_mapping_is_skipped(self, record):
        fields = FieldBuilder().build_fields([("ref:nothing", "Account_Name")], record, {})
        assert fields == {}

    def test_is_blank(self):
        assert is_blank(None)
        assert is_blank("  ")
        assert is_blank([])
        assert not is_blank(0)
        assert not is_blank("0")


# ============================================================================
# PAYLOAD BUILDER
# ============================================================================


class TestPayloadBuilder:

    def test_basic_payload(self, builder, record, ctx):
        assert builder.build(record, lead_spec(), {}, ctx) == {"Email": "a@b.com", "Name": "Jo"}

    def test_custom_values_override_mapped_fields(self, builder, record, ctx):
        spec = lead_spec(custom_values={
            "Name": "{name} ({company})",
            "Description": "Entry {record_id} of form {source_id}",
            "Commission": "[calculate]{amount}*0.1[/calculate]",
        })
        payload = builder.build(record, spec, {}, ctx)

        assert payload["Name"] == "Jo (Acme)"
        assert payload["Description"] == "Entry 1 of form 7"
        assert payload["Commission"] == "20"

    def test_failed_custom_value_is_omitted(self, builder, record, ctx):
        spec = lead_spec(custom_values={"Commission": "[calculate]{amount}/0[/calculate]", "Empty": "{phone}"})
        payload = builder.build(record, spec, {}, ctx)

        assert "Commission" not in payload
        assert "Empty" not in payload

    def test_empty_payload_raises_no_data(self, builder, ctx):
        spec = lead_spec(module_settings={"Lead_Status": "New"})
        with pytest.raises(NoDataError):
            builder.build(Record("1", {"email": "", "name": None}), spec, {}, ctx)

    def test_module_settings_fill_unset_keys(self, builder, record, ctx):
        spec = lead_spec(module_settings={"Lead_Status": "New", "Email": "ignored@x.com"})
        payload = builder.build(record, spec, {}, ctx)

        assert payload["Lead_Status"] == "New"
        assert payload["Email"] == "a@b.com"

    def test_legacy_desk_settings(self, builder, ctx):
        spec = MappingSpec.from_dict({
            "target": {"system": "desk", "module": "tickets"},
            "fields": {"subject": "subject"},
            "desk_settings": {"department_id": "777", "priority": "High"},
        })
        payload = builder.build(Record("1", {"subject": "Help"}), spec, {}, ctx)
        assert payload == {"subject": "Help", "departmentId": "777", "priority": "High"}


# ============================================================================
# LOOKUPS
# ============================================================================


class TestLookupResolver:

    @pytest.fixture
    def crm_lookups(self, crm_client):
        crm_client.metadata["Deals"] = {
            "Account_Name": FieldMeta("Account_Name", data_type="lookup", lookup_module="Accounts"),
            "Deal_Name": FieldMeta("Deal_Name"),
        }
        crm_client.records[("Accounts", "5001")] = {"id": "5001", "Account_Name": "Acme"}
        return crm_client

    def deal_spec(self):
        return MappingSpec.from_dict({
            "key": "deal",
            "target": {"system": "crm", "module": "Deals"},
            "fields": [["name", "Deal_Name"], ["company", "Account_Name"]],
        })

    def test_name_resolved_to_id(self, builder, record, ctx, crm_lookups):
        payload = builder.build(record, self.deal_spec(), {}, ctx)
        assert payload == {"Deal_Name": "Jo", "Account_Name": "5001"}
        assert ("search", "Accounts", "Account_Name", "Acme") in crm_lookups.calls

    def test_unresolved_lookup_is_dropped(self, builder, ctx, crm_lookups):
        payload = builder.build(Record("1", {"name": "Jo", "company": "Nobody"}), self.deal_spec(), {}, ctx)
        assert payload == {"Deal_Name": "Jo"}

    def test_id_shaped_value_skips_search(self, builder, ctx, crm_lookups):
        payload = builder.build(Record("1", {"name": "Jo", "company": "123456"}), self.deal_spec(), {}, ctx)
        assert payload["Account_Name"] == "123456"
        assert not [c for c in crm_lookups.calls if c[0] == "search"]

    def test_search_failure_drops_field(self, builder, record, ctx, crm_lookups):
        crm_lookups.fail_on.add(("search", "Accounts"))
        payload = builder.build(record, self.deal_spec(), {}, ctx)
        assert payload == {"Deal_Name": "Jo"}

    def test_metadata_fetched_once_per_pass(self, builder, record, crm_lookups):
        ctx = SyncContext.for_record("7", "1")
        builder.build(record, self.deal_spec(), {}, ctx)
        builder.build(record, self.deal_spec(), {}, ctx)
        assert crm_lookups.calls.count(("metadata", "Deals")) == 1

        builder.build(record, self.deal_spec(), {}, SyncContext.for_record("7", "2"))
        assert crm_lookups.calls.count(("metadata", "Deals")) == 2

    def test_resolve_id_direct(self, registry, crm_lookups):
        resolver = LookupResolver(registry)
        target = TargetRef.crm("Deals")
        assert resolver.resolve_id(target, "Accounts", "Account_Name", "Acme") == "5001"
        assert resolver.resolve_id(target, "Accounts", "Account_Name", "987") == "987"
        assert resolver.resolve_id(target, "Accounts", "Account_Name", "") is None


class TestDeskLookups:

    @pytest.fixture
    def resolver(self, registry, desk_client):
        desk_client.records[("contacts", "300")] = {"id": "300", "email": "known@b.com"}
        desk_client.lists["departments"] = [{"id": "11", "name": "Support"}, {"id": "12", "name": "Sales"}]
        desk_client.lists["agents"] = [{"id": "21", "emailId": "agent@b.com", "name": "Ana"}]
        return LookupResolver(registry)

    def test_known_contact_and_department(self, resolver, ctx):
        payload = resolver.process_desk_lookup_fields(
            TargetRef.desk("tickets"),
            {"subject": "Help", "email": "known@b.com", "department": "support", "assignee": "agent@b.com"},
            ctx,
        )
        assert payload["contactId"] == "300"
        assert payload["departmentId"] == "11"
        assert payload["assigneeId"] == "21"
        assert "department" not in payload
        assert "contact" not in payload

    def test_unknown_contact_is_attached_for_creation(self, resolver, ctx):
        payload = resolver.process_desk_lookup_fields(
            TargetRef.desk("tickets"),
            {"subject": "Help", "email": "new@b.com", "phone": "555"},
            ctx,
        )
        assert "contactId" not in payload
        assert payload["contact"]["email"] == "new@b.com"
        assert payload["contact"]["phone"] == "555"

    def test_unknown_department_keeps_name_only(self, resolver, ctx):
        payload = resolver.process_desk_lookup_fields(
            TargetRef.desk("tickets"), {"subject": "Help", "department": "Billing"}, ctx
        )
        assert "departmentId" not in payload
        assert payload["department"] == "Billing"

    def test_department_list_cached_per_pass(self, resolver, ctx, desk_client):
        target = TargetRef.desk("tickets")
        resolver.process_desk_lookup_fields(target, {"department": "Sales"}, ctx)
        resolver.process_desk_lookup_fields(target, {"department": "Support"}, ctx)
        assert desk_client.calls.count(("list", "departments")) == 1
