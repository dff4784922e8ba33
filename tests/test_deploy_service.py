import pytest

from app.models.deployments import DeployOptions
from app.services.deploy_service import RATE_LIMITED_MESSAGE, deploy_template

RATE_LIMIT_BODY = {"err": "Rate limit reached", "ECODE": "APP_002"}


async def _deploy(template, clickup_client, governor, **options):
    return await deploy_template(
        template,
        "pk_test",
        DeployOptions(delay_between_calls=0, **options),
        client=clickup_client,
        governor=governor,
    )


class TestDeploymentPreconditions:
    @pytest.mark.asyncio
    async def test_empty_phases_fail_without_remote_calls(self, make_template, clickup_client, fake_clickup, governor):
        result = await _deploy(make_template(phases=[]), clickup_client, governor)

        assert result.success is False
        assert result.errors == ["Template has no phases to deploy"]
        assert fake_clickup.calls == []

    @pytest.mark.asyncio
    async def test_missing_destination_fails_without_creating_tasks(
        self, make_template, clickup_client, fake_clickup, governor
    ):
        result = await _deploy(make_template(destination={}), clickup_client, governor)

        assert result.success is False
        assert result.errors == ["No list_id, folder_id, or space_id provided in template"]
        assert fake_clickup.calls_to("POST", r"/list/.*/task") == []

    @pytest.mark.asyncio
    async def test_space_without_list_requires_new_list_option(
        self, make_template, clickup_client, fake_clickup, governor
    ):
        result = await _deploy(make_template(destination={"space_id": "space-1"}), clickup_client, governor)

        assert result.success is False
        assert result.errors == ["No list_id provided and create_new_list_if_needed is false"]
        assert fake_clickup.calls_to("POST", r"/space/.*/list") == []

    @pytest.mark.asyncio
    async def test_connection_failure_is_reported(self, make_template, clickup_client, fake_clickup, governor):
        fake_clickup.fail("GET", r"/user", 401, {"err": "Token invalid", "ECODE": "OAUTH_025"})

        result = await _deploy(make_template(), clickup_client, governor)

        assert result.success is False
        assert result.message == "Could not connect to ClickUp: Token invalid"
        assert result.state == "failed"

    @pytest.mark.asyncio
    async def test_unknown_destination_name_lists_alternatives(
        self, make_template, clickup_client, fake_clickup, governor
    ):
        result = await _deploy(make_template(destination={"space_name": "Sales"}), clickup_client, governor)

        assert result.success is False
        assert 'Space "Sales" not found in workspace. Available spaces: Operations' in result.errors

    @pytest.mark.asyncio
    async def test_stop_on_missing_fields_creates_nothing(
        self, make_template, clickup_client, fake_clickup, governor
    ):
        template = make_template(defaults={"custom_fields": {"Budget": 100}})

        result = await _deploy(template, clickup_client, governor, stop_on_missing_fields=True)

        assert result.success is False
        assert result.missing_fields == ["Budget"]
        assert result.errors[0] == "Missing fields: Budget"
        assert result.message.startswith("STOPPED: Missing custom fields detected")
        assert fake_clickup.calls_to("POST", r"/list/.*/task") == []

    @pytest.mark.asyncio
    async def test_missing_fields_warn_when_not_stopping(
        self, make_template, clickup_client, fake_clickup, governor
    ):
        template = make_template(defaults={"custom_fields": {"Budget": 100}})

        result = await _deploy(template, clickup_client, governor)

        assert result.success is True
        assert "Continuing without fields: Budget" in result.warnings


class TestDeployingIntoExistingList:
    @pytest.mark.asyncio
    async def test_phase_actions_and_checklist_are_created(
        self, make_template, clickup_client, fake_clickup, governor
    ):
        result = await _deploy(make_template(), clickup_client, governor)

        assert result.success is True
        assert result.mode == "existing_list"
        assert result.list_id == "list-1"
        assert [phase.name for phase in result.phases] == ["Discovery"]
        assert [action.name for action in result.actions] == ["Kickoff", "Interviews"]
        assert {action.parent for action in result.actions} == {result.phases[0].id}
        assert result.message == (
            "Successfully deployed 1 phases, 2 actions, 1 checklists to existing list"
        )

        checklist = result.checklists[0]
        assert checklist.name == "Steps"
        assert checklist.task_id == result.actions[0].id
        assert [item.name for item in checklist.items] == ["Invite team", "Book room"]
        assert fake_clickup.tasks[result.actions[0].id]["watchers"] == [101]

    @pytest.mark.asyncio
    async def test_assignees_follow_roles_map(self, make_template, clickup_client, fake_clickup, governor):
        result = await _deploy(make_template(), clickup_client, governor)

        assert result.phases[0].assignees == ["101"]
        assert result.actions[0].assignees == ["102"]

    @pytest.mark.asyncio
    async def test_sub_actions_are_parented_to_their_action(
        self, make_template, clickup_client, fake_clickup, governor
    ):
        template = make_template(
            phases=[
                {
                    "key": "build",
                    "name": "Build",
                    "actions": [
                        {
                            "name": "Backend",
                            "actions": [{"name": "API"}, {"name": "Schema"}],
                        }
                    ],
                }
            ]
        )

        result = await _deploy(template, clickup_client, governor)

        backend, api, schema = result.actions
        assert backend.parent == result.phases[0].id
        assert api.parent == backend.id
        assert schema.parent == backend.id

    @pytest.mark.asyncio
    async def test_actions_nested_too_deep_are_skipped(
        self, make_template, clickup_client, fake_clickup, governor
    ):
        nested = {"name": "L4"}
        for name in ("L3", "L2", "L1"):
            nested = {"name": name, "actions": [nested]}
        template = make_template(phases=[{"key": "deep", "name": "Deep", "actions": [nested]}])

        result = await _deploy(template, clickup_client, governor)

        assert [action.name for action in result.actions] == ["L1", "L2", "L3"]
        assert 'Skipped nested subtask "L4": nesting deeper than 3 levels' in result.errors

    @pytest.mark.asyncio
    async def test_consecutive_runs_create_disjoint_tasks(
        self, make_template, clickup_client, fake_clickup, governor
    ):
        first = await _deploy(make_template(), clickup_client, governor)
        second = await _deploy(make_template(), clickup_client, governor)

        first_ids = {task.id for task in first.phases + first.actions}
        second_ids = {task.id for task in second.phases + second.actions}
        assert len(first_ids) == len(second_ids) == 3
        assert first_ids.isdisjoint(second_ids)


class TestItemFailures:
    @pytest.mark.asyncio
    async def test_rate_limited_action_is_skipped_and_deployment_continues(
        self, make_template, clickup_client, fake_clickup, governor, sleeps
    ):
        # phase, Kickoff, then Interviews is the third task create
        fake_clickup.fail("POST", r"/list/list-1/task", 429, RATE_LIMIT_BODY, on_call=3)

        result = await _deploy(make_template(), clickup_client, governor)

        assert result.success is True
        assert [action.name for action in result.actions] == ["Kickoff"]
        assert f'Failed to create action "Interviews": {RATE_LIMITED_MESSAGE}' in result.errors
        assert 5.0 in sleeps.calls
        assert "Rate limited - waiting 5 seconds before continuing..." in result.logs
        assert result.rolled_back_count == 0

    @pytest.mark.asyncio
    async def test_rollback_deletes_created_tasks_in_reverse_order(
        self, make_template, clickup_client, fake_clickup, governor
    ):
        fake_clickup.fail("POST", r"/list/list-1/task", 429, RATE_LIMIT_BODY, on_call=3)

        result = await _deploy(make_template(), clickup_client, governor, enable_rollback=True)

        assert result.success is False
        assert result.rolled_back_count == 2
        assert result.message == (
            f"Deployment aborted: {RATE_LIMITED_MESSAGE}. Rolled back 2 created tasks"
        )
        # the action was created after its phase, so it is deleted first
        assert fake_clickup.deleted == [result.actions[0].id, result.phases[0].id]
        assert fake_clickup.tasks == {}

    @pytest.mark.asyncio
    async def test_failed_phase_skips_its_actions(
        self, make_template, clickup_client, fake_clickup, governor
    ):
        fake_clickup.fail("POST", r"/list/list-1/task", 500, {"err": "Server error", "ECODE": "X"})

        result = await _deploy(make_template(), clickup_client, governor)

        assert result.success is False
        assert result.errors == ['Failed to create phase "Discovery": Server error']
        assert result.message == "Deployment failed - check errors"
        assert len(fake_clickup.calls_to("POST", r"/list/list-1/task")) == 1

    @pytest.mark.asyncio
    async def test_failed_checklist_keeps_its_task(
        self, make_template, clickup_client, fake_clickup, governor
    ):
        fake_clickup.fail("POST", r"/task/.*/checklist", 500, {"err": "Checklist error", "ECODE": "X"})

        result = await _deploy(make_template(), clickup_client, governor)

        assert result.success is True
        assert len(result.actions) == 2
        assert result.checklists == []
        assert 'Failed to create checklist for "Kickoff": Checklist error' in result.errors


class TestDeployingIntoNewList:
    @pytest.mark.asyncio
    async def test_new_list_is_created_with_statuses(
        self, make_template, clickup_client, fake_clickup, governor
    ):
        template = make_template(destination={"space_id": "space-1"})

        result = await _deploy(template, clickup_client, governor, create_new_list_if_needed=True)

        assert result.success is True
        assert result.mode == "new_list"
        assert result.message.endswith("to NEW list")
        assert "New list created. Custom fields must be added manually in ClickUp UI." in result.warnings
        created = fake_clickup.lists["space-1"][-1]
        assert created["id"] == result.list_id
        assert created["name"].startswith("launch_")
        assert [status["status"] for status in fake_clickup.statuses[result.list_id]] == [
            "to do",
            "in progress",
            "complete",
        ]

    @pytest.mark.asyncio
    async def test_statuses_are_added_one_by_one_when_rejected_inline(
        self, make_template, clickup_client, fake_clickup, governor
    ):
        fake_clickup.fail("POST", r"/space/space-1/list", 400, {"err": "Bad statuses", "ECODE": "SUBCAT_020"})
        template = make_template(destination={"space_id": "space-1"})

        result = await _deploy(template, clickup_client, governor, create_new_list_if_needed=True)

        assert result.success is True
        status_calls = fake_clickup.calls_to("POST", rf"/list/{result.list_id}/status")
        assert [call["status"] for call in status_calls] == ["to do", "in progress", "complete"]

    @pytest.mark.asyncio
    async def test_space_requiring_folder_gets_one(
        self, make_template, clickup_client, fake_clickup, governor
    ):
        fake_clickup.fail(
            "POST",
            r"/space/space-1/list",
            400,
            {"err": "Lists must be in a folder", "ECODE": "SUBCAT_114"},
        )
        template = make_template(destination={"space_id": "space-1"})

        result = await _deploy(template, clickup_client, governor, create_new_list_if_needed=True)

        assert result.success is True
        new_folder = fake_clickup.folders["space-1"][-1]
        assert new_folder["name"].startswith("launch_folder_")
        assert fake_clickup.lists[new_folder["id"]][0]["id"] == result.list_id
