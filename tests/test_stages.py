"""End-to-end stage tests against the fake source and target platforms."""

import csv
import json

import pytest
from fakes import (
    CHECK_PATH,
    ExpiringCredentials,
    FakeSource,
    FakeTarget,
    document,
    make_config,
    no_sleep,
    rel,
    rels,
    resource,
)

from cms_migration.client.exceptions import AuthExhaustedError, ServerError
from cms_migration.migration.coordinator import MigrationCoordinator, resolve_stage_names
from cms_migration.migration.models import SourceRecord
from cms_migration.migration.stage import StageContext
from cms_migration.migration.stages.companies import CompaniesStage, transform_company
from cms_migration.migration.stages.projects import ProjectsStage, junction_name
from cms_migration.migration.stages.roles import RolesStage
from cms_migration.migration.stages.taxonomy import (
    PROJECT_STATUSES,
    PROJECT_TYPES,
    VOCABULARIES,
    ProjectStatusStage,
    ProjectTypeStage,
    TaxonomyStage,
    machine_name,
)
from cms_migration.migration.stages.users import UsersStage, primary_role
from cms_migration.reporting.report import RunReporter

COMPANY_PATH = "/jsonapi/node/company"


def company(id_: str, title: str, nid: int, **attributes) -> dict:
    relationships = attributes.pop("relationships", None)
    return resource(
        "node--company",
        id_,
        {"title": title, "drupal_internal__nid": nid, "status": True, **attributes},
        relationships=relationships,
    )


def write_map(config, entity: str, mapping: dict) -> None:
    path = config.paths.csv_path / f"{entity}_mapping.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(mapping))


def read_map(config, entity: str) -> dict:
    return json.loads((config.paths.csv_path / f"{entity}_mapping.json").read_text())


def read_ledger(config, label: str) -> list[dict]:
    path = config.paths.csv_path / f"{label}_migration_backup.csv"
    with open(path, newline="") as f:
        return list(csv.DictReader(f))


async def run_stage(ctx: StageContext, stage_cls, *args) -> RunReporter:
    async with ctx:
        await stage_cls(ctx, *args).run()
    return ctx.reporter


class TestCompanyScenario:
    @pytest.mark.asyncio
    async def test_company_without_logo(self, stage_context_factory, source, target, config):
        source.documents[COMPANY_PATH] = document([company("abc-1", "Acme", 1)])

        reporter = await run_stage(stage_context_factory(), CompaniesStage)

        creates = target.creates("companies")
        assert len(creates) == 1
        body = json.loads(creates[0].content)
        assert body["drupal_uuid"] == "abc-1"
        assert body["id"] == "abc-1"
        assert body["name"] == "Acme"
        assert body["logo"] is None
        lookup = target.requests[0]
        assert json.loads(lookup.url.params["filter"]) == {"drupal_uuid": {"_eq": "abc-1"}}
        assert reporter.stage("companies").created == 1
        assert read_map(config, "company") == {"abc-1": "abc-1"}
        assert read_ledger(config, "companies")[0]["migration_status"] == "success"

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, stage_context_factory, source, target, config):
        source.documents[COMPANY_PATH] = document(
            [company("abc-1", "Acme", 1), company("abc-2", "Beta", 2)]
        )

        await run_stage(stage_context_factory(), CompaniesStage)
        second = await run_stage(stage_context_factory(), CompaniesStage)

        assert len(target.creates("companies")) == 2
        stats = second.stage("companies")
        assert (stats.created, stats.skipped, stats.failed) == (0, 2, 0)
        assert read_map(config, "company") == {"abc-1": "abc-1", "abc-2": "abc-2"}
        assert {row["migration_status"] for row in read_ledger(config, "companies")} == {
            "skipped"
        }

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_stage(
        self, stage_context_factory, source, target, config
    ):
        source.documents[COMPANY_PATH] = document(
            [company("c1", "One", 1), company("c2", "Two", 2), company("c3", "Three", 3)]
        )
        target.fail_when["companies"] = lambda body: body["drupal_uuid"] == "c2"

        reporter = await run_stage(stage_context_factory(), CompaniesStage)

        stats = reporter.stage("companies")
        assert (stats.created, stats.skipped, stats.failed) == (2, 0, 1)
        assert [item["id"] for item in target.items["companies"]] == ["c1", "c3"]
        assert read_map(config, "company") == {"c1": "c1", "c3": "c3"}
        statuses = [row["migration_status"] for row in read_ledger(config, "companies")]
        assert statuses == ["success", "failed", "success"]
        assert "companies:c2 - upsert failed" in reporter.error_log.path.read_text()
        assert not reporter.has_systemic_failure

    @pytest.mark.asyncio
    async def test_duplicate_primary_processed_once(self, stage_context_factory, source, target):
        source.documents[COMPANY_PATH] = document(
            [company("abc-1", "Acme", 1), company("abc-1", "Acme", 1)]
        )

        reporter = await run_stage(stage_context_factory(), CompaniesStage)

        assert len(target.creates("companies")) == 1
        assert reporter.stage("companies").processed == 1


class TestCompanySecondaryRecords:
    @pytest.fixture
    def rich_company(self, source: FakeSource, config):
        source.documents[COMPANY_PATH] = document(
            [
                company(
                    "abc-1",
                    "Acme",
                    1,
                    field_country="NG",
                    field_sector=["energy", "unmapped"],
                    relationships={
                        "field_logo": rel("file--file", "logo-file"),
                        "field_key_contacts_companies": rels(("paragraph--teams", "p1")),
                    },
                )
            ]
        )
        source.add_file("logo-file", "logo.png")
        source.documents["/jsonapi/paragraph/teams/p1"] = document(
            resource(
                "paragraph--teams",
                "p1",
                {"drupal_internal__id": 5, "field_name": "Ada", "field_role": "CEO"},
            )
        )
        write_map(config, "countries", {"NG": "country-ng"})
        write_map(config, "sectors", {"energy": "sector-energy"})

    @pytest.mark.asyncio
    async def test_created_company_gets_logo_contacts_and_junctions(
        self, rich_company, stage_context_factory, target: FakeTarget
    ):
        reporter = await run_stage(stage_context_factory(), CompaniesStage)

        company_body = json.loads(target.creates("companies")[0].content)
        assert company_body["logo"] == "file-1"

        contact = json.loads(target.creates("contacts")[0].content)
        assert contact["name"] == "Ada"
        assert contact["company"] == "abc-1"

        junctions = {
            collection: [json.loads(r.content) for r in target.creates(collection)]
            for collection in ("companies_countries", "companies_sectors")
        }
        assert junctions["companies_countries"] == [
            {"companies_id": "abc-1", "countries_id": "country-ng"}
        ]
        assert junctions["companies_sectors"] == [
            {"companies_id": "abc-1", "sectors_id": "sector-energy"}
        ]

        secondary = reporter.stage("companies").secondary
        assert secondary["contacts"] == 1
        assert secondary["junction_rows"] == 2

    @pytest.mark.asyncio
    async def test_skipped_company_creates_no_secondary_records(
        self, rich_company, stage_context_factory, target: FakeTarget
    ):
        await run_stage(stage_context_factory(), CompaniesStage)
        before = len(target.creates())

        reporter = await run_stage(stage_context_factory(), CompaniesStage)

        assert len(target.creates()) == before
        assert reporter.stage("companies").secondary_total == 0
        # logo came from the cache: no second upload
        assert len(target.uploads) == 1


class TestTaxonomyStages:
    @pytest.mark.asyncio
    async def test_vocabulary_mapping_keys(self, stage_context_factory, source, target, config):
        source.documents["/jsonapi/taxonomy_term/country"] = document(
            [
                resource(
                    "taxonomy_term--country",
                    "term-ng",
                    {
                        "name": "Nigeria",
                        "drupal_internal__tid": 12,
                        "field_country_code": "NG",
                    },
                )
            ]
        )
        countries = next(v for v in VOCABULARIES if v.name == "countries")

        reporter = await run_stage(stage_context_factory(), TaxonomyStage, countries)

        body = json.loads(target.creates("countries")[0].content)
        assert body["drupal_id"] == 12
        assert body["drupal_key"] == "nigeria"
        mapping = read_map(config, "countries")
        assert mapping["term-ng"] == mapping["NG"] == mapping["nigeria"] == body["id"]
        assert reporter.stage("countries").created == 1

    @pytest.mark.asyncio
    async def test_project_types_from_fixed_list(self, stage_context_factory, source, target):
        await run_stage(stage_context_factory(), ProjectTypeStage)
        reporter = await run_stage(stage_context_factory(), ProjectTypeStage)

        assert len(target.creates("project_types")) == len(PROJECT_TYPES)
        assert reporter.stage("project_types").skipped == len(PROJECT_TYPES)
        assert not any("/taxonomy_term" in path for path in source.paths())

    @pytest.mark.asyncio
    async def test_project_statuses_from_fixed_list(self, stage_context_factory, target, config):
        reporter = await run_stage(stage_context_factory(), ProjectStatusStage)

        bodies = [json.loads(r.content) for r in target.creates("project_status")]
        assert len(bodies) == len(PROJECT_STATUSES)
        assert bodies[0] == {"drupal_key": "conceptplanning", "name": "Concept / Planning"}
        assert reporter.stage("project_status").created == len(PROJECT_STATUSES)
        assert read_map(config, "project_status")["onhold"] == "project_status-8"

    def test_machine_name(self):
        assert machine_name("Sub-Saharan Africa") == "sub_saharan_africa"
        assert machine_name(None) == ""


class TestRolesStage:
    @pytest.fixture
    def roles_source(self, source: FakeSource):
        source.documents["/jsonapi/user_role/user_role"] = document(
            [
                resource("user_role--user_role", "r-premium", {"drupal_internal__id": "premium"}),
                resource(
                    "user_role--user_role", "r-corporate", {"drupal_internal__id": "paid_corporate"}
                ),
                resource(
                    "user_role--user_role",
                    "r-admin",
                    {"drupal_internal__id": "administrator", "is_admin": True},
                ),
                resource("user_role--user_role", "r-custom", {"drupal_internal__id": "custom"}),
            ]
        )

    @pytest.mark.asyncio
    async def test_one_target_role_per_mapped_name(
        self, roles_source, stage_context_factory, target, config
    ):
        reporter = await run_stage(stage_context_factory(), RolesStage)

        creates = target.creates("directus_roles")
        assert [r.url.path for r in creates] == ["/roles", "/roles"]
        subscriber, admin = (json.loads(r.content) for r in creates)
        assert (subscriber["id"], subscriber["name"]) == ("r-premium", "Subscriber")
        assert subscriber["admin_access"] is False
        assert (admin["id"], admin["name"], admin["admin_access"]) == (
            "r-admin",
            "Administrator",
            True,
        )
        assert reporter.stage("roles").created == 2

        mapping = read_map(config, "roles")
        assert mapping["Subscriber"] == mapping["r-corporate"] == mapping["paid_corporate"]
        assert mapping["r-premium"] == "r-premium"
        assert mapping["administrator"] == "r-admin"
        assert "r-custom" not in mapping

    @pytest.mark.asyncio
    async def test_rerun_skips_by_name(self, roles_source, stage_context_factory, target):
        await run_stage(stage_context_factory(), RolesStage)
        reporter = await run_stage(stage_context_factory(), RolesStage)

        assert len(target.creates("directus_roles")) == 2
        assert reporter.stage("roles").skipped == 2


class TestUsersStage:
    @pytest.fixture
    def users_source(self, source: FakeSource):
        role = resource("user_role--user_role", "role-editor", {"drupal_internal__id": "editor"})
        source.documents["/jsonapi/user/user"] = document(
            [
                resource("user--user", "anon", {"drupal_internal__uid": 0}),
                resource(
                    "user--user",
                    "u1",
                    {"drupal_internal__uid": 5, "mail": "ada@example.org", "status": True},
                    relationships={"roles": rels(("user_role--user_role", "role-editor"))},
                ),
            ],
            included=[role],
        )

    @pytest.mark.asyncio
    async def test_users_keep_source_uuid(
        self, users_source, stage_context_factory, target, config
    ):
        reporter = await run_stage(stage_context_factory(), UsersStage)

        creates = target.creates("directus_users")
        assert len(creates) == 1
        assert creates[0].url.path == "/users"
        body = json.loads(creates[0].content)
        assert body["id"] == "u1"
        assert body["role"] == "role-editor"
        assert body["status"] == "active"
        assert read_map(config, "users") == {"u1": "u1", "5": "u1"}
        assert reporter.stage("users").processed == 1

    @pytest.mark.asyncio
    async def test_migrated_role_is_used(self, users_source, stage_context_factory, target, config):
        write_map(config, "roles", {"Editor": "role-editor-target"})

        await run_stage(stage_context_factory(), UsersStage)

        body = json.loads(target.creates("directus_users")[0].content)
        assert body["role"] == "role-editor-target"

    @pytest.mark.asyncio
    async def test_configured_role_ids(self, users_source, tmp_path, source, target):
        config = make_config(tmp_path, role_ids={"Editor": "target-editor-role"})
        ctx = StageContext.from_config(
            config,
            source_transport=source.transport(),
            target_transport=target.transport(),
            sleep=no_sleep,
        )

        await run_stage(ctx, UsersStage)

        body = json.loads(target.creates("directus_users")[0].content)
        assert body["role"] == "target-editor-role"

    @pytest.mark.asyncio
    async def test_fetch_requests_roles_and_picture(
        self, users_source, stage_context_factory, source
    ):
        await run_stage(stage_context_factory(), UsersStage)
        first = next(r for r in source.requests if r.url.path == "/jsonapi/user/user")
        assert first.url.params["include"] == "roles,user_picture"

    def test_primary_role_prefers_highest_priority(self):
        roles = [
            SourceRecord("user_role--user_role", "a", {"drupal_internal__id": "free"}),
            SourceRecord("user_role--user_role", "b", {"drupal_internal__id": "premium"}),
        ]
        mapping, record = primary_role(roles)
        assert mapping.target_role == "Subscriber"
        assert mapping.subscription_type == "premium"
        assert record.id == "b"

    def test_primary_role_defaults_to_authenticated(self):
        mapping, record = primary_role([])
        assert mapping.target_role == "Authenticated"
        assert record is None


class TestProjectsStage:
    @pytest.mark.asyncio
    async def test_company_junctions_use_company_map(
        self, stage_context_factory, source, target, config
    ):
        write_map(config, "company", {"comp-1": "comp-1"})
        source.documents["/jsonapi/node/projects"] = document(
            [
                resource(
                    "node--projects",
                    "proj-1",
                    {"title": "Bridge", "drupal_internal__nid": 77, "field_free_projects": True},
                    relationships={
                        "field_main_contractor": rel("node--company", "comp-1"),
                        "field_client_owner": rel("node--company", "not-migrated"),
                    },
                )
            ]
        )

        reporter = await run_stage(stage_context_factory(), ProjectsStage)

        project = json.loads(target.creates("projects")[0].content)
        assert project["id"] == "proj-1"
        assert project["drupal_id"] == 77
        assert project["is_free_project"] is True
        assert project["featured_image"] is None
        rows = [json.loads(r.content) for r in target.creates("projects_main_contractor")]
        assert rows == [{"projects_id": "proj-1", "companies_id": "comp-1"}]
        assert target.creates("projects_client_owner") == []
        assert reporter.stage("projects").secondary["junction_rows"] == 1
        assert read_map(config, "project") == {"proj-1": "proj-1"}

        first = next(r for r in source.requests if r.url.path == "/jsonapi/node/projects")
        assert first.url.params["sort"] == "-created"

    @pytest.mark.asyncio
    async def test_project_without_node_id_fails(
        self, stage_context_factory, source, target, config
    ):
        source.documents["/jsonapi/node/projects"] = document(
            [resource("node--projects", "proj-2", {"title": "No nid"})]
        )

        reporter = await run_stage(stage_context_factory(), ProjectsStage)

        assert reporter.stage("projects").failed == 1
        assert target.creates("projects") == []
        row = read_ledger(config, "projects")[0]
        assert (row["drupal_uuid"], row["migration_action"]) == ("proj-2", "exception")
        assert "Payload has no drupal_id" in reporter.error_log.path.read_text()

    def test_junction_name(self):
        assert junction_name("field_main_contractor") == "projects_main_contractor"


class TestCoordinator:
    def test_resolve_stage_names(self):
        enabled = {"taxonomies": True, "users": False, "companies": True, "projects": True}
        assert resolve_stage_names(None, enabled) == [
            "taxonomies",
            "roles",
            "companies",
            "projects",
        ]
        assert resolve_stage_names(["users", "roles"], enabled) == ["roles", "users"]
        assert resolve_stage_names(["projects", "users"], enabled) == ["users", "projects"]
        with pytest.raises(ValueError, match="nodes"):
            resolve_stage_names(["nodes"], enabled)

    @pytest.mark.asyncio
    async def test_failed_collection_fetch_aborts_run(self, stage_context_factory, source):
        source.statuses[COMPANY_PATH] = 500
        ctx = stage_context_factory()

        async with ctx:
            reporter = await MigrationCoordinator(ctx).run(["companies", "projects"])

        assert isinstance(reporter.systemic_exception, ServerError)
        assert reporter.stage("companies").systemic_error
        assert "projects" not in reporter.stages
        assert "/jsonapi/node/projects" not in source.paths()
        log = reporter.error_log.path.read_text()
        assert "=== COMPANIES MIGRATION FAILED ===" in log
        assert "fetch failed on page 1" in log

    @pytest.mark.asyncio
    async def test_auth_exhaustion_is_systemic(self, stage_context_factory, source):
        source.statuses[CHECK_PATH] = 401
        source.statuses["/user/login"] = 401
        ctx = stage_context_factory()

        async with ctx:
            reporter = await MigrationCoordinator(ctx).run(["users", "companies"])

        assert isinstance(reporter.systemic_exception, AuthExhaustedError)
        assert list(reporter.stages) == ["users"]

    @pytest.mark.asyncio
    async def test_runs_stages_in_order(self, stage_context_factory, source, target):
        source.documents["/jsonapi/user/user"] = document([])
        source.documents[COMPANY_PATH] = document([company("abc-1", "Acme", 1)])
        ctx = stage_context_factory()

        async with ctx:
            reporter = await MigrationCoordinator(ctx).run(["users", "companies"])

        assert reporter.systemic_exception is None
        assert list(reporter.stages) == ["users", "companies"]
        assert reporter.stage("companies").created == 1


class TestCredentialLossMidRun:
    @pytest.mark.asyncio
    async def test_failed_reauthentication_aborts_run(
        self, stage_context_factory, source, target, config
    ):
        credentials = ExpiringCredentials(source)
        source.statuses["/jsonapi/file/file/f1"] = 401
        source.documents[COMPANY_PATH] = document(
            [
                company("c1", "One", 1, relationships={"field_logo": rel("file--file", "f1")}),
                company("c2", "Two", 2, relationships={"field_logo": rel("file--file", "f2")}),
            ]
        )
        ctx = stage_context_factory()

        async with ctx:
            reporter = await MigrationCoordinator(ctx).run(["companies", "projects"])

        assert isinstance(reporter.systemic_exception, AuthExhaustedError)
        assert len(credentials.checks) == 2
        # c1 lost its logo to the 401; c2 never reached the target
        assert [item["id"] for item in target.items["companies"]] == ["c1"]
        assert "projects" not in reporter.stages
        assert "=== COMPANIES MIGRATION FAILED ===" in reporter.error_log.path.read_text()
        assert read_map(config, "company") == {"c1": "c1"}


def test_transform_company_reads_author():
    record = SourceRecord.from_dict(
        company("abc-1", "Acme", 1, relationships={"uid": rel("user--user", "u1")})
    )
    payload = transform_company(record)
    assert payload["user_created"] == "u1"
    assert payload["status"] == "published"
    assert payload["logo"] is None
