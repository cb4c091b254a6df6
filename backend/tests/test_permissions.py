"""
UGC Portal - Role presets & capability checks
"""

from services.permissions import (
    ALL_CAPABILITY_KEYS,
    ROLE_PRESETS,
    VALID_ROLES,
    can_perform,
    capabilities_for,
    user_has_capability,
)


class TestRolePresets:
    def test_fifteen_roles(self):
        assert len(VALID_ROLES) == 15

    def test_presets_only_use_known_keys(self):
        for role, caps in ROLE_PRESETS.items():
            assert caps <= set(ALL_CAPABILITY_KEYS), role

    def test_director_has_everything(self):
        assert capabilities_for("Director") == sorted(ALL_CAPABILITY_KEYS)

    def test_producer_cannot_request(self):
        assert can_perform("VSDO", "design.produce")
        assert not can_perform("VSDO", "design.request")

    def test_requesters_cannot_produce(self):
        for role in ("Marcomm", "DGO", "MACX", "Marketing Manager"):
            assert can_perform(role, "design.request"), role
            assert not can_perform(role, "design.produce"), role

    def test_only_manager_level_approves_content(self):
        approvers = [r for r in VALID_ROLES if can_perform(r, "content.approve")]
        assert sorted(approvers) == sorted(["Director", "super admin", "Marketing Manager"])

    def test_ops_roles(self):
        for role in ("EXIM Ops", "domestics Ops", "Import DTD Ops", "traffic & warehous"):
            assert can_perform(role, "tickets.transition")
            assert not can_perform(role, "marketing.access")


class TestFailClosed:
    def test_unknown_role(self):
        assert not can_perform("intern", "marketing.access")
        assert capabilities_for("intern") == []

    def test_unknown_capability(self):
        assert not can_perform("Director", "nuclear.launch")

    def test_user_without_role(self):
        assert not user_has_capability({"id": "u1"}, "marketing.access")

    def test_role_names_are_case_sensitive(self):
        assert not can_perform("director", "users.manage")
