"""Tests for the PostgreSQL row-level security statements and request context."""

import re

import pytest

import gearguard.core.dependencies as dependencies
from gearguard.core import authenticate, create_access_token
from gearguard.core.policies import _POLICIES, POSTGRES_POLICIES


def _policies_on(table: str) -> list[str]:
    return [s for s in POSTGRES_POLICIES if s.startswith("CREATE POLICY") and f" ON {table} " in s]


class TestPolicyStatements:
    @pytest.mark.parametrize("table", sorted(_POLICIES))
    def test_every_table_forces_rls(self, table):
        assert f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY" in POSTGRES_POLICIES
        assert f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY" in POSTGRES_POLICIES

    @pytest.mark.parametrize("table", sorted(_POLICIES))
    def test_every_table_has_service_policy(self, table):
        assert (
            f"CREATE POLICY {table}_service ON {table} FOR ALL USING (gearguard_is_service())"
            in POSTGRES_POLICIES
        )

    def test_role_lookup_cannot_recurse(self):
        # gearguard_has_role selects from user_roles; a SELECT-visible policy
        # calling it would re-enter itself
        for statement in _policies_on("user_roles"):
            command = re.search(r" FOR (\w+) ", statement).group(1)
            if command in ("SELECT", "ALL"):
                assert "gearguard_has_role" not in statement, statement

    def test_user_sees_own_role_before_tenant_is_known(self):
        (roles_select,) = [s for s in _policies_on("user_roles") if "roles_select" in s]
        assert "user_id = gearguard_current_user()" in roles_select

    def test_retired_policies_are_dropped(self):
        assert "DROP POLICY IF EXISTS roles_admin ON user_roles" in POSTGRES_POLICIES
        assert "DROP POLICY IF EXISTS org_service ON organizations" in POSTGRES_POLICIES

    def test_scrap_trigger_can_retire_equipment(self):
        (retire,) = [s for s in _policies_on("equipment") if "equipment_retire" in s]
        assert "FOR UPDATE" in retire
        assert "WITH CHECK (status = 'Scrapped')" in retire


class TestAuthenticateContext:
    async def test_user_context_precedes_first_read(self, session, world, monkeypatch):
        calls = []
        execute = session.execute

        async def set_user_context(s, user_id):
            calls.append(("user", user_id))

        async def recording_execute(*args, **kwargs):
            calls.append(("query", None))
            return await execute(*args, **kwargs)

        monkeypatch.setattr(dependencies, "set_user_context", set_user_context)
        monkeypatch.setattr(session, "execute", recording_execute)

        token = create_access_token(user_id=world.technician.id, email=world.technician.email)
        current_user = await authenticate(session, token)

        assert current_user.id == world.technician.id
        assert calls[0] == ("user", world.technician.id)
        assert ("query", None) in calls[1:]
