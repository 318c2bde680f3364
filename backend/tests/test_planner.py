"""Tests for engine/planner.py, engine/prompts.py and engine/capabilities.py."""

import pytest

from engine.capabilities import AGENT_CAPABILITIES, render_capability_catalogue
from engine.planner import (
    PlanningClient,
    PlanningError,
    assign_output_dir,
    derive_plan_label,
    find_forward_references,
    parse_plan,
)
from engine.prompts import build_planner_messages
from engine.utils import MockLLMClient
from tests.conftest import make_llm_response, make_plan, make_task, plan_json

# =========================================================================
# parse_plan
# =========================================================================


class TestParsePlan:
    """Planner output validation."""

    def test_valid_plan(self) -> None:
        plan = parse_plan(plan_json(
            [
                {"id": "1", "agent": "browser", "action": "browser.search",
                 "params": {"query": "AI news"}, "depends_on": []},
                {"id": "2", "agent": "gmail", "action": "gmail.send_email",
                 "params": {"to": "a@b.com", "body": "{{1}}"}, "depends_on": ["1"]},
            ],
            folder_name="ai_news",
        ))

        assert plan.label == "ai_news"
        assert [t.id for t in plan.tasks] == ["1", "2"]
        assert plan.tasks[1].agent_name == "gmail"
        assert plan.tasks[1].depends_on == ["1"]

    def test_numeric_ids_coerced_to_strings(self) -> None:
        plan = parse_plan(
            '{"tasks": [{"id": 1, "agent": "os", "action": "os.list_directory"},'
            ' {"id": 2, "agent": "os", "action": "os.read_file", "depends_on": [1]}]}'
        )
        assert plan.tasks[0].id == "1"
        assert plan.tasks[1].depends_on == ["1"]

    def test_camel_case_depends_on_accepted(self) -> None:
        plan = parse_plan(
            '{"tasks": [{"id": "a", "agent": "os", "action": "os.read_file", '
            '"dependsOn": ["z"]}]}'
        )
        assert plan.tasks[0].depends_on == ["z"]

    def test_plan_inside_code_fence(self) -> None:
        content = "Here you go:\n```json\n" + plan_json(
            [{"id": "1", "agent": "os", "action": "os.open_app", "params": {"app_name": "x"}}]
        ) + "\n```"
        assert len(parse_plan(content).tasks) == 1

    def test_non_json_raises(self) -> None:
        with pytest.raises(PlanningError, match="not a JSON object"):
            parse_plan("I cannot help with that.")

    def test_empty_tasks_raises(self) -> None:
        with pytest.raises(PlanningError, match="no tasks"):
            parse_plan('{"folder_name": "x", "tasks": []}')

    def test_missing_tasks_raises(self) -> None:
        with pytest.raises(PlanningError, match="no tasks"):
            parse_plan('{"folder_name": "x"}')

    def test_task_without_agent_raises(self) -> None:
        with pytest.raises(PlanningError, match="not a valid plan"):
            parse_plan('{"tasks": [{"id": "1", "action": "os.read_file"}]}')

    def test_duplicate_ids_raise(self) -> None:
        with pytest.raises(PlanningError, match="Duplicate task id"):
            parse_plan(
                '{"tasks": [{"id": "1", "agent": "os", "action": "a"},'
                ' {"id": "1", "agent": "os", "action": "b"}]}'
            )


# =========================================================================
# Plan helpers
# =========================================================================


class TestForwardReferences:
    """Dependencies that do not point backwards."""

    def test_backward_references_are_fine(self) -> None:
        plan = make_plan(make_task("1"), make_task("2", depends_on=["1"]))
        assert find_forward_references(plan) == []

    def test_forward_and_unknown_references_reported(self) -> None:
        plan = make_plan(
            make_task("1", depends_on=["2"]),
            make_task("2"),
            make_task("3", depends_on=["ghost"]),
        )
        assert find_forward_references(plan) == [("1", "2"), ("3", "ghost")]

    def test_known_ids_count_as_earlier(self) -> None:
        plan = make_plan(make_task("f1", depends_on=["1"]))
        assert find_forward_references(plan, known_ids=["1"]) == []


class TestPlanLabel:
    """Folder label selection."""

    def test_uses_plan_label(self) -> None:
        assert derive_plan_label(make_plan(label=" ai_news "), "whatever") == "ai_news"

    def test_slug_of_input(self) -> None:
        label = derive_plan_label(make_plan(label=""), "Find AI news & email it!")
        assert label == "Find_AI_news___email_it_"

    def test_slug_truncated_to_fifty_chars(self) -> None:
        label = derive_plan_label(make_plan(label=""), "x" * 80)
        assert label == "x" * 50

    def test_default_label(self) -> None:
        assert derive_plan_label(make_plan(label=""), "") == "default_task"


class TestAssignOutputDir:
    """Output directory routing hints."""

    def test_non_exempt_agents_get_output_dir(self) -> None:
        plan = make_plan(
            make_task("1", agent="browser"),
            make_task("2", agent="codegen"),
            make_task("3", agent="os"),
            make_task("4", agent="gmail"),
            label="todo_app",
        )

        output_dir = assign_output_dir(
            plan, output_root="Documents/Harbinger", exempt_agents=["os", "calendar", "browser"]
        )

        assert output_dir == "Documents/Harbinger/todo_app"
        assert "output_dir" not in plan.tasks[0].metadata
        assert plan.tasks[1].metadata["output_dir"] == "Documents/Harbinger/todo_app"
        assert "output_dir" not in plan.tasks[2].metadata
        assert plan.tasks[3].metadata["output_dir"] == "Documents/Harbinger/todo_app"

    def test_trailing_slash_on_root(self) -> None:
        plan = make_plan(make_task("1", agent="codegen"), label="p")
        assert assign_output_dir(plan, output_root="out/", exempt_agents=[]) == "out/p"


# =========================================================================
# Capabilities and prompts
# =========================================================================


class TestCapabilityCatalogue:
    """Rendering of the worker catalogue."""

    def test_full_catalogue_lists_every_agent(self) -> None:
        catalogue = render_capability_catalogue()
        for name in AGENT_CAPABILITIES:
            assert f"- {name}:" in catalogue

    def test_restricted_catalogue(self) -> None:
        catalogue = render_capability_catalogue(["os", "gmail"])
        assert "os.create_file(path: string, content: string)" in catalogue
        assert "gmail.send_email" in catalogue
        assert "browser.search" not in catalogue

    def test_unknown_agent_listed_bare(self) -> None:
        assert render_capability_catalogue(["weather"]) == "- weather"


class TestPlannerMessages:
    """Planner prompt assembly."""

    def test_messages_shape(self) -> None:
        messages = build_planner_messages("do things", "- os: files")
        assert [m["role"] for m in messages] == ["system", "user"]
        assert messages[1]["content"] == "do things"
        assert "- os: files" in messages[0]["content"]
        assert "Current Time:" in messages[0]["content"]
        assert "{{task_id}}" in messages[0]["content"]


# =========================================================================
# PlanningClient
# =========================================================================


class TestPlanningClient:
    """LLM-backed planning."""

    async def test_generate_plan(self) -> None:
        llm = MockLLMClient(responses=[make_llm_response(plan_json(
            [{"id": "1", "agent": "browser", "action": "browser.search",
              "params": {"query": "x"}}],
            folder_name="news",
        ))])
        client = PlanningClient(llm, agent_names=["browser"], model="groq/test-model")

        plan = await client.generate_plan("latest news", run_id="run_1")

        assert plan.label == "news"
        call = llm.call_history[0]
        assert call["model"] == "groq/test-model"
        assert call["run_id"] == "run_1"
        assert "browser.search(query: string)" in call["messages"][0]["content"]
        assert "gmail.send_email" not in call["messages"][0]["content"]

    async def test_llm_failure_becomes_planning_error(self) -> None:
        client = PlanningClient(MockLLMClient(responses=[]))
        with pytest.raises(PlanningError, match="Planner call failed"):
            await client.generate_plan("anything")

    async def test_malformed_plan_raises(self) -> None:
        client = PlanningClient(MockLLMClient(responses=[make_llm_response("{}")]))
        with pytest.raises(PlanningError):
            await client.generate_plan("anything")
