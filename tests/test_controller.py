"""Unit tests for controller.py - Manifest convergence."""

import pytest

from config import ControllerConfig
from controller import ApplyReport, ChangeAction, Controller, PlannedChange
from diagnostics import PartialApplyError, ValidationError
from manifest import ManifestError, ResourceSpec
from state import StateStore

LOGIN_LOOKUP = "type_desc"
DATABASE_LOOKUP = "collation_name"


def login(name="app", address=None, **spec):
    spec = {"name": name, "type": "sql", "password": "s3cret", **spec}
    return ResourceSpec(kind="login", name=address or name, spec=spec)


def database(name="sales", address=None, **spec):
    return ResourceSpec(kind="database", name=address or name, spec={"name": name, **spec})


class TestPlannedChange:
    """Tests for PlannedChange and ApplyReport."""

    def test_identifier_prefers_state(self):
        change = PlannedChange(
            address="login.app",
            kind="login",
            action=ChangeAction.UPDATE,
            desired={"name": "app2"},
            state={"name": "app"},
        )
        assert change.identifier == "app"

    def test_identifier_unknown(self):
        change = PlannedChange(address="user.x", kind="user", action=ChangeAction.CREATE,
                               desired={"name": "x"})
        assert change.identifier is None

    def test_empty_report_is_successful(self):
        report = ApplyReport()
        assert report.success is True
        assert report.count(ChangeAction.CREATE) == 0


@pytest.mark.asyncio
class TestController:
    """Tests for Controller."""

    @pytest.fixture
    def state(self, tmp_path):
        return StateStore(tmp_path / "state.json").load()

    @pytest.fixture
    def controller(self, server, state, registry):
        return Controller(
            server,
            state,
            registry=registry,
            config=ControllerConfig(refresh_before_plan=False),
        )

    # ==================== Plan ====================

    async def test_plan_creates_untracked_resources(self, controller, server):
        changes = await controller.plan([database(), login()])

        assert [(c.address, c.action) for c in changes] == [
            ("database.sales", ChangeAction.CREATE),
            ("login.app", ChangeAction.CREATE),
        ]
        assert "password" in changes[1].attributes
        assert server.executed == []

    async def test_plan_no_changes(self, controller, state, login_state):
        state.put("login.app", "login", login_state)
        [change] = await controller.plan([login()])
        assert change.action is ChangeAction.NOOP

    async def test_plan_in_place_update(self, controller, state, login_state):
        state.put("login.app", "login", login_state)
        [change] = await controller.plan([login(password="n3w")])
        assert change.action is ChangeAction.UPDATE
        assert change.attributes == ["password"]

    async def test_plan_rename_is_update(self, controller, state, login_state):
        state.put("login.app", "login", login_state)
        [change] = await controller.plan([login(name="app2", address="app")])
        assert change.action is ChangeAction.UPDATE
        assert change.attributes == ["name"]

    async def test_plan_replace(self, controller, state, database_state):
        state.put("database.sales", "database", database_state)
        [change] = await controller.plan([database(collation="Latin1_General_CI_AS")])
        assert change.action is ChangeAction.REPLACE
        assert change.attributes == ["collation"]

    async def test_plan_deletes_in_reverse_tracking_order(self, controller, state):
        state.put("database.sales", "database", {"name": "sales"})
        state.put("login.app", "login", {"name": "app"})
        state.put("role.reader", "role", {"name": "reader", "database": "sales"})

        changes = await controller.plan([])
        assert [(c.address, c.action) for c in changes] == [
            ("role.reader", ChangeAction.DELETE),
            ("login.app", ChangeAction.DELETE),
            ("database.sales", ChangeAction.DELETE),
        ]

    async def test_plan_invalid_spec(self, controller):
        [change] = await controller.plan([ResourceSpec(kind="login", name="app",
                                                       spec={"name": "app", "type": "sql"})])
        assert change.diagnostics.has_blocking_error()
        [error] = change.diagnostics.errors
        assert error.summary == ValidationError.summary
        assert error.kind == "login"

    async def test_plan_refreshes_first(self, server, state, registry, login_state):
        state.put("login.app", "login", login_state)
        controller = Controller(server, state, registry=registry,
                                config=ControllerConfig(refresh_before_plan=True))

        [change] = await controller.plan([login()])

        # The login is gone from the server, so it is created again
        assert change.action is ChangeAction.CREATE
        assert server.queries

    # ==================== Refresh ====================

    async def test_refresh_removes_drifted_resources(self, controller, server, state,
                                                     login_state, database_state, caplog):
        caplog.set_level("INFO")
        state.put("login.app", "login", login_state)
        state.put("database.sales", "database", database_state)
        server.on_query(DATABASE_LOOKUP, ("sales", "SQL_Latin1_General_CP1_CI_AS", 150, "sa"))

        diagnostics = await controller.refresh()

        assert len(diagnostics) == 0
        assert state.addresses() == ["database.sales"]
        assert "login.app was removed outside the operator" in caplog.text
        assert StateStore(state.path).load().addresses() == ["database.sales"]

    async def test_refresh_updates_observed_values(self, controller, server, state, login_state):
        state.put("login.app", "login", login_state)
        server.on_query(LOGIN_LOOKUP, ("app", "SQL_LOGIN", "sales"))

        await controller.refresh()

        assert state.get("login.app")["state"]["default_database"] == "sales"

    async def test_refresh_failure_keeps_resource(self, controller, server, state, login_state):
        state.put("login.app", "login", login_state)
        server.fail_on(LOGIN_LOOKUP, "Connection reset")

        diagnostics = await controller.refresh()

        assert diagnostics.has_blocking_error()
        assert state.get("login.app")["state"] == login_state

    async def test_plan_blocks_resources_whose_refresh_failed(self, server, state, registry,
                                                              login_state):
        state.put("login.app", "login", login_state)
        server.fail_on(LOGIN_LOOKUP, "Login timeout expired")
        controller = Controller(server, state, registry=registry,
                                config=ControllerConfig(refresh_before_plan=True))

        [change] = await controller.plan([login(password="n3w")])

        assert change.diagnostics.has_blocking_error()
        assert change.diagnostics.errors[0].detail == "Login timeout expired"

    async def test_apply_fails_when_refresh_fails(self, server, state, registry, login_state):
        state.put("login.app", "login", login_state)
        server.fail_on(LOGIN_LOOKUP, "Login timeout expired")
        controller = Controller(server, state, registry=registry,
                                config=ControllerConfig(refresh_before_plan=True))

        report = await controller.apply([login()])

        assert report.success is False
        assert report.diagnostics.errors[0].detail == "Login timeout expired"
        assert server.executed == []
        assert state.get("login.app")["state"] == login_state

    # ==================== Apply ====================

    async def test_apply_creates_and_tracks(self, controller, server, state):
        report = await controller.apply([database(), login()])

        assert report.success is True
        assert report.count(ChangeAction.CREATE) == 2
        assert state.addresses() == ["database.sales", "login.app"]
        assert state.get("login.app")["state"]["id"] == "app"
        assert StateStore(state.path).load().addresses() == ["database.sales", "login.app"]

    async def test_apply_is_idempotent(self, controller, server):
        await controller.apply([login()])
        executed = len(server.executed)

        report = await controller.apply([login()])

        assert report.changes[0].action is ChangeAction.NOOP
        assert len(server.executed) == executed

    async def test_apply_continues_past_failures(self, controller, server, state):
        server.fail_on("CREATE LOGIN [a]", "Login already exists.")

        report = await controller.apply([login("a"), login("b")])

        assert report.success is False
        assert report.count(ChangeAction.CREATE) == 1
        assert state.addresses() == ["login.b"]
        assert report.diagnostics.errors[0].detail == "Login already exists."

    async def test_apply_replace_deletes_then_creates(self, controller, server, state,
                                                      database_state):
        state.put("database.sales", "database", database_state)

        report = await controller.apply([database(collation="Latin1_General_CI_AS")])

        assert report.count(ChangeAction.REPLACE) == 1
        assert server.statements[0] == "USE [master];\nDROP DATABASE [sales]"
        assert server.statements[1].endswith("CREATE DATABASE [sales] COLLATE Latin1_General_CI_AS")
        assert state.get("database.sales")["state"]["collation"] == "Latin1_General_CI_AS"

    async def test_apply_replace_stops_when_delete_fails(self, controller, server, state,
                                                         database_state):
        state.put("database.sales", "database", database_state)
        server.fail_on("DROP DATABASE", "Database is in use.")

        report = await controller.apply([database(collation="Latin1_General_CI_AS")])

        assert report.success is False
        assert len(server.executed) == 1
        assert state.get("database.sales")["state"] == database_state

    async def test_apply_update_tracks_rename(self, controller, server, state, login_state):
        state.put("login.app", "login", login_state)

        await controller.apply([login(name="app2", address="app")])

        assert server.statements == ["ALTER LOGIN [app] WITH NAME = [app2]"]
        assert state.get("login.app")["state"]["id"] == "app2"

    async def test_apply_tracks_partial_create(self, controller, server, state):
        server.fail_on("COMPATIBILITY_LEVEL", "Invalid compatibility level.")

        report = await controller.apply([database(compatibility_level=160)])

        assert report.success is False
        assert report.results["database.sales"].partial is True
        assert report.diagnostics.errors[0].summary == PartialApplyError.summary
        assert state.get("database.sales")["state"]["compatibility_level"] is None

    async def test_apply_completes_partial_create(self, controller, server, state):
        server.fail_on("COMPATIBILITY_LEVEL", "Invalid compatibility level.")
        await controller.apply([database(compatibility_level=160)])
        server.failures.clear()
        server.executed.clear()

        report = await controller.apply([database(compatibility_level=160)])

        assert report.success is True
        assert report.changes[0].action is ChangeAction.UPDATE
        assert server.statements == [
            "USE [master];\nALTER DATABASE [sales] SET COMPATIBILITY_LEVEL = 160"
        ]
        assert state.get("database.sales")["state"]["compatibility_level"] == 160

    async def test_apply_skips_invalid_resources(self, controller, server, state):
        invalid = ResourceSpec(kind="database", name="bad", spec={"name": "bad", "colour": "red"})

        report = await controller.apply([invalid, login()])

        assert report.success is False
        assert "database.bad" not in report.results
        assert state.addresses() == ["login.app"]

    async def test_destroy(self, controller, server, state, login_state, database_state):
        state.put("database.sales", "database", database_state)
        state.put("login.app", "login", login_state)

        report = await controller.destroy()

        assert report.success is True
        assert report.count(ChangeAction.DELETE) == 2
        assert server.statements == ["DROP LOGIN [app]", "USE [master];\nDROP DATABASE [sales]"]
        assert len(state) == 0

    async def test_destroy_keeps_failed_deletes(self, controller, server, state, login_state):
        state.put("login.app", "login", login_state)
        server.fail_on("DROP LOGIN", "Login is in use.")

        report = await controller.destroy()

        assert report.success is False
        assert "login.app" in state

    # ==================== Import ====================

    async def test_import(self, controller, server, state):
        server.on_query(LOGIN_LOOKUP, ("app", "SQL_LOGIN", "master"))

        result = await controller.import_resource("login.app_login", "app")

        assert result.success is True
        assert state.get("login.app_login")["kind"] == "login"
        assert StateStore(state.path).load().get("login.app_login")["state"]["id"] == "app"

    async def test_import_missing_object(self, controller, state):
        result = await controller.import_resource("login.app", "ghost")

        assert result.success is False
        assert "login.app" not in state

    async def test_import_invalid_address(self, controller):
        with pytest.raises(ManifestError):
            await controller.import_resource("server_info.x", "mssql_server")
