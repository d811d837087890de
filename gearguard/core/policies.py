"""Row-level security policies and triggers for PostgreSQL.

These are the second line of defense behind the application checks: the same
role rules the transition validator applies are enforced on every row the
API reads or writes. Each entry is a single statement so it can be executed
through the asyncpg driver, and every statement is safe to re-run.

Request context is carried in transaction-local settings written by
``set_user_context``, ``set_tenant_context`` and ``set_service_context``.
RLS is forced, so the table owner the application connects as is filtered
too; a transaction with no context sees no rows.
"""

_HELPERS = [
    """
    CREATE OR REPLACE FUNCTION gearguard_current_org() RETURNS uuid
    LANGUAGE sql STABLE AS $$
        SELECT NULLIF(current_setting('app.current_organization_id', true), '')::uuid
    $$
    """,
    """
    CREATE OR REPLACE FUNCTION gearguard_current_user() RETURNS uuid
    LANGUAGE sql STABLE AS $$
        SELECT NULLIF(current_setting('app.current_user_id', true), '')::uuid
    $$
    """,
    """
    CREATE OR REPLACE FUNCTION gearguard_is_service() RETURNS boolean
    LANGUAGE sql STABLE AS $$
        SELECT coalesce(current_setting('app.service_role', true), '') = 'on'
    $$
    """,
    """
    CREATE OR REPLACE FUNCTION gearguard_has_role(roles text[]) RETURNS boolean
    LANGUAGE sql STABLE SECURITY DEFINER AS $$
        SELECT EXISTS (
            SELECT 1 FROM user_roles
            WHERE user_id = gearguard_current_user()
              AND organization_id = gearguard_current_org()
              AND role::text = ANY(roles)
        )
    $$
    """,
]

# table -> list of (policy name, command, USING / WITH CHECK clause)
_POLICIES: dict[str, list[tuple[str, str, str]]] = {
    "organizations": [
        ("org_select", "SELECT", "USING (id = gearguard_current_org() OR gearguard_is_service())"),
        # signed-in users search organizations to request access
        ("org_directory", "SELECT", "USING (gearguard_current_user() IS NOT NULL)"),
        ("org_update", "UPDATE", "USING (id = gearguard_current_org() AND gearguard_has_role(ARRAY['admin']))"),
    ],
    "profiles": [
        (
            "profile_select",
            "SELECT",
            "USING (id = gearguard_current_user() OR organization_id = gearguard_current_org() OR gearguard_is_service())",
        ),
        ("profile_update_self", "UPDATE", "USING (id = gearguard_current_user() OR gearguard_is_service())"),
    ],
    "user_roles": [
        (
            "roles_select",
            "SELECT",
            "USING (organization_id = gearguard_current_org() OR user_id = gearguard_current_user() OR gearguard_is_service())",
        ),
        # gearguard_has_role reads this table: no policy here that applies to
        # SELECT may call it
        (
            "roles_admin_insert",
            "INSERT",
            "WITH CHECK (organization_id = gearguard_current_org() AND gearguard_has_role(ARRAY['admin']))",
        ),
        (
            "roles_admin_update",
            "UPDATE",
            "USING (organization_id = gearguard_current_org() AND gearguard_has_role(ARRAY['admin']))",
        ),
        (
            "roles_admin_delete",
            "DELETE",
            "USING (organization_id = gearguard_current_org() AND gearguard_has_role(ARRAY['admin']))",
        ),
    ],
    "equipment_categories": [
        ("categories_select", "SELECT", "USING (organization_id = gearguard_current_org())"),
        (
            "categories_manage",
            "ALL",
            "USING (organization_id = gearguard_current_org() AND gearguard_has_role(ARRAY['admin', 'manager']))",
        ),
    ],
    "equipment": [
        ("equipment_select", "SELECT", "USING (organization_id = gearguard_current_org())"),
        (
            "equipment_manage",
            "ALL",
            "USING (organization_id = gearguard_current_org() AND gearguard_has_role(ARRAY['admin', 'manager']))",
        ),
        # the technician scrapping a request retires its equipment
        (
            "equipment_retire",
            "UPDATE",
            """USING (
                organization_id = gearguard_current_org()
                AND EXISTS (
                    SELECT 1 FROM maintenance_requests r
                    WHERE r.equipment_id = equipment.id
                      AND r.assigned_technician_id = gearguard_current_user()
                )
            ) WITH CHECK (status = 'Scrapped')""",
        ),
    ],
    "teams": [
        ("teams_select", "SELECT", "USING (organization_id = gearguard_current_org())"),
        (
            "teams_manage",
            "ALL",
            "USING (organization_id = gearguard_current_org() AND gearguard_has_role(ARRAY['admin', 'manager']))",
        ),
    ],
    "maintenance_requests": [
        ("requests_select", "SELECT", "USING (organization_id = gearguard_current_org())"),
        (
            "requests_insert",
            "INSERT",
            "WITH CHECK (organization_id = gearguard_current_org() AND created_by = gearguard_current_user())",
        ),
        (
            "requests_update",
            "UPDATE",
            """USING (
                organization_id = gearguard_current_org() AND (
                    gearguard_has_role(ARRAY['admin', 'manager'])
                    OR assigned_technician_id = gearguard_current_user()
                    OR (
                        assigned_technician_id IS NULL
                        AND status = 'New'
                        AND gearguard_has_role(ARRAY['technician'])
                    )
                    OR (created_by = gearguard_current_user() AND status = 'New')
                )
            )""",
        ),
    ],
    "request_logs": [
        ("logs_select", "SELECT", "USING (organization_id = gearguard_current_org())"),
        (
            "logs_insert",
            "INSERT",
            "WITH CHECK (organization_id = gearguard_current_org() AND user_id = gearguard_current_user())",
        ),
    ],
    "organization_join_requests": [
        (
            "join_select",
            "SELECT",
            """USING (
                user_id = gearguard_current_user()
                OR (organization_id = gearguard_current_org() AND gearguard_has_role(ARRAY['admin']))
                OR gearguard_is_service()
            )""",
        ),
        ("join_insert_self", "INSERT", "WITH CHECK (user_id = gearguard_current_user())"),
        (
            "join_admin",
            "UPDATE",
            "USING ((organization_id = gearguard_current_org() AND gearguard_has_role(ARRAY['admin'])) OR gearguard_is_service())",
        ),
    ],
    "team_invites": [
        (
            "invites_admin",
            "ALL",
            "USING ((organization_id = gearguard_current_org() AND gearguard_has_role(ARRAY['admin'])) OR gearguard_is_service())",
        ),
    ],
}

_SCRAP_TRIGGER = [
    """
    CREATE OR REPLACE FUNCTION handle_scrap_equipment() RETURNS trigger
    LANGUAGE plpgsql SECURITY DEFINER AS $$
    BEGIN
        IF NEW.status = 'Scrap' AND OLD.status <> 'Scrap' THEN
            UPDATE equipment SET status = 'Scrapped', updated_at = now()
            WHERE id = NEW.equipment_id;
        END IF;
        RETURN NEW;
    END;
    $$
    """,
    "DROP TRIGGER IF EXISTS on_maintenance_scrap ON maintenance_requests",
    """
    CREATE TRIGGER on_maintenance_scrap
    AFTER UPDATE ON maintenance_requests
    FOR EACH ROW EXECUTE FUNCTION handle_scrap_equipment()
    """,
]


# Dropped on re-run; roles_admin was an ALL policy that recursed under FORCE
_RETIRED_POLICIES = [("organizations", "org_service"), ("user_roles", "roles_admin")]


def _policy_statements() -> list[str]:
    statements = [f"DROP POLICY IF EXISTS {name} ON {table}" for table, name in _RETIRED_POLICIES]
    for table, policies in _POLICIES.items():
        statements.append(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        statements.append(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY")
        policies = [*policies, (f"{table}_service", "ALL", "USING (gearguard_is_service())")]
        for name, command, clause in policies:
            statements.append(f"DROP POLICY IF EXISTS {name} ON {table}")
            statements.append(f"CREATE POLICY {name} ON {table} FOR {command} {clause}")
    return statements


POSTGRES_POLICIES: list[str] = [*_HELPERS, *_policy_statements(), *_SCRAP_TRIGGER]
