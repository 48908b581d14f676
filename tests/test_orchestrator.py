# FILE: tests/test_orchestrator.py
"""
Tests for atelier/llm/orchestrator.py
State machine, fallback chain, cancellation and side effects of a submission.
"""

import sys
import asyncio
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest
from unittest.mock import Mock

HTML_REPLY = "```html\n<!DOCTYPE html><html><body>Hi</body></html>\n```"
ERROR_BOX = (
    "<!-- Error Generating Code -->\n"
    '<div class="text-red-500 bg-red-900/20 p-4">OpenRouter Credits Insufficient</div>'
)


def _err(kind, message=""):
    from atelier.llm.gateway import ProviderError
    return ProviderError(kind, message)


@pytest.fixture
def memory(fixed_clock):
    from atelier.memory.conversation import ConversationMemory
    return ConversationMemory(clock=fixed_clock)


@pytest.fixture
def make_orchestrator(memory):
    from atelier.llm.orchestrator import GenerationOrchestrator, OrchestratorConfig

    def _make(gateway, **kwargs):
        config = kwargs.pop("config", OrchestratorConfig(provider_id="grok", fallback_provider_id="groq"))
        kwargs.setdefault("memory", memory)
        return GenerationOrchestrator(gateway, config, **kwargs)

    return _make


class TestStateMachine:
    """Pure transition function."""

    def test_happy_path(self):
        from atelier.llm.orchestrator import OrchestratorEvent as E, OrchestratorState as S, next_state

        state = S.IDLE
        for event in (E.SUBMIT, E.RESOLVED, E.RAW_RECEIVED, E.DECODED, E.RESET):
            state = next_state(state, event)
        assert state == S.IDLE

    def test_escalation_edges(self):
        from atelier.llm.orchestrator import OrchestratorEvent as E, OrchestratorState as S, next_state

        assert next_state(S.REQUESTING, E.PROMPT_TOO_LARGE) == S.RETRY_TRUNCATED
        assert next_state(S.REQUESTING, E.QUOTA_EXCEEDED) == S.FALLBACK_PROVIDER
        assert next_state(S.RETRY_TRUNCATED, E.PROMPT_TOO_LARGE) == S.FALLBACK_PROVIDER
        assert next_state(S.FALLBACK_PROVIDER, E.PROVIDER_FAILED) == S.FAILED
        assert next_state(S.CLASSIFYING, E.NO_REQUEST) == S.SUCCESS

    def test_cancel_only_before_response(self):
        from atelier.llm.orchestrator import (
            InvalidTransitionError,
            OrchestratorEvent as E,
            OrchestratorState as S,
            next_state,
        )

        assert next_state(S.EXPLORING, E.CANCEL) == S.CANCELLED
        assert next_state(S.FALLBACK_PROVIDER, E.CANCEL) == S.CANCELLED
        with pytest.raises(InvalidTransitionError):
            next_state(S.DECODING, E.CANCEL)

    def test_illegal_transitions_raise(self):
        from atelier.llm.orchestrator import (
            InvalidTransitionError,
            OrchestratorEvent as E,
            OrchestratorState as S,
            next_state,
        )

        with pytest.raises(InvalidTransitionError):
            next_state(S.IDLE, E.DECODED)
        with pytest.raises(InvalidTransitionError):
            next_state(S.FALLBACK_PROVIDER, E.QUOTA_EXCEEDED)
        with pytest.raises(InvalidTransitionError):
            next_state(S.SUCCESS, E.SUBMIT)


class TestTutorFlow:
    """Conversational submissions."""

    @pytest.mark.asyncio
    async def test_text_answer_and_memory(self, make_orchestrator, memory):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.orchestrator import OrchestratorState
        from atelier.llm.schemas import Mode, Role, TextResult

        gateway = ScriptedGateway(["Recursion is a function calling itself."])
        orch = make_orchestrator(gateway)
        result = await orch.submit("explain how recursion works")

        assert isinstance(result, TextResult)
        assert result.provider_id == "grok"
        assert orch.state == OrchestratorState.IDLE
        assert orch.last_outcome.mode == Mode.TUTOR
        assert orch.last_outcome.final_state == OrchestratorState.SUCCESS
        assert [m.role for m in memory.snapshot()] == [Role.USER, Role.ASSISTANT]
        assert gateway.requests[0].mode == Mode.TUTOR

    @pytest.mark.asyncio
    async def test_history_excludes_current_turn(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway

        gateway = ScriptedGateway(["first answer", "second answer"])
        orch = make_orchestrator(gateway)
        await orch.submit("what is html?")
        await orch.submit("and css?")

        assert len(gateway.requests[0].history) == 0
        second = gateway.requests[1]
        assert [m.content for m in second.history] == ["what is html?", "first answer"]
        assert second.prompt == "and css?"

    @pytest.mark.asyncio
    async def test_bare_canvas_trigger_skips_backend(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.orchestrator import CANVAS_READY_MESSAGE, OrchestratorState
        from atelier.llm.schemas import Mode, TextResult

        gateway = ScriptedGateway([])
        orch = make_orchestrator(gateway)
        result = await orch.submit("gambar")

        assert isinstance(result, TextResult)
        assert result.content == CANVAS_READY_MESSAGE
        assert gateway.requests == []
        assert orch.last_outcome.mode == Mode.CANVAS
        assert orch.last_outcome.final_state == OrchestratorState.SUCCESS

    @pytest.mark.asyncio
    async def test_image_generation_flagged(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway

        orch = make_orchestrator(ScriptedGateway(["here is a description of a cat"]))
        await orch.submit("buatkan gambar kucing")
        assert orch.last_outcome.image_generation_request is True

    @pytest.mark.asyncio
    async def test_listener_receives_events(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway

        listener = Mock()
        orch = make_orchestrator(ScriptedGateway(["ok"]), listener=listener)
        await orch.submit("hello there")
        kinds = [call.args[0].kind for call in listener.call_args_list]
        assert "classified" in kinds
        assert "truncation" in kinds
        assert kinds.count("state") >= 4


class TestFallbackChain:
    """Provider failures and escalation."""

    @pytest.mark.asyncio
    async def test_quota_falls_back_to_groq(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.schemas import ErrorKind, TextResult

        gateway = ScriptedGateway({
            "grok": [_err(ErrorKind.QUOTA_EXCEEDED, "OpenRouter Credits Insufficient")],
            "groq": ["Recursion is ..."],
        })
        orch = make_orchestrator(gateway)
        result = await orch.submit("explain how recursion works")

        assert isinstance(result, TextResult)
        assert result.provider_id == "groq"
        assert orch.last_outcome.requested_provider == "grok"
        assert orch.last_outcome.provider_id != orch.last_outcome.requested_provider
        assert gateway.providers_called == ["grok", "groq"]
        states = [e.detail["current"] for e in orch.last_outcome.events if e.kind == "state"]
        assert states == ["classifying", "requesting", "fallback_provider", "decoding", "success", "idle"]

    @pytest.mark.asyncio
    async def test_too_large_retries_with_smaller_history(self, make_orchestrator, memory, make_message):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.schemas import ErrorKind

        for _ in range(20):
            memory.append(make_message("h" * 1600))

        gateway = ScriptedGateway([_err(ErrorKind.PROMPT_TOO_LARGE), "fits now"])
        orch = make_orchestrator(gateway)
        result = await orch.submit("explain closures")

        assert result.content == "fits now"
        assert result.provider_id == "grok"
        assert gateway.providers_called == ["grok", "grok"]
        first, retry = gateway.requests
        assert len(first.history) == 20
        assert 0 < len(retry.history) < len(first.history)
        assert retry.history[-1] == first.history[-1]

    @pytest.mark.asyncio
    async def test_unavailable_fails_without_fallback(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.orchestrator import OrchestratorState
        from atelier.llm.schemas import ErrorKind, ErrorResult, Role

        gateway = ScriptedGateway([_err(ErrorKind.UNAVAILABLE, "down")])
        orch = make_orchestrator(gateway)
        result = await orch.submit("explain recursion")

        assert isinstance(result, ErrorResult)
        assert result.error_kind == ErrorKind.UNAVAILABLE
        assert result.message.startswith("Sorry, I couldn't finish that answer.")
        assert "What you can try:" in result.message
        assert gateway.providers_called == ["grok"]
        assert orch.last_outcome.final_state == OrchestratorState.FAILED
        assert orch.state == OrchestratorState.IDLE
        assert [m.role for m in orch.memory.snapshot()] == [Role.USER]

    @pytest.mark.asyncio
    async def test_fallback_also_exhausted(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.schemas import ErrorKind

        gateway = ScriptedGateway({
            "grok": [_err(ErrorKind.QUOTA_EXCEEDED)],
            "groq": [_err(ErrorKind.QUOTA_EXCEEDED)],
        })
        result = await make_orchestrator(gateway).submit("explain recursion")
        assert result.error_kind == ErrorKind.QUOTA_EXCEEDED
        assert result.provider_id == "groq"

    @pytest.mark.asyncio
    async def test_no_separate_fallback_when_primary_is_fallback(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.orchestrator import OrchestratorConfig
        from atelier.llm.schemas import ErrorKind

        gateway = ScriptedGateway([_err(ErrorKind.QUOTA_EXCEEDED)])
        orch = make_orchestrator(gateway, config=OrchestratorConfig(provider_id="groq", fallback_provider_id="groq"))
        result = await orch.submit("explain recursion")
        assert result.error_kind == ErrorKind.QUOTA_EXCEEDED
        assert gateway.providers_called == ["groq"]


class TestDecoding:
    """Backend output that decodes to an error."""

    @pytest.mark.asyncio
    async def test_error_box_is_failed_generation(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.orchestrator import OrchestratorState
        from atelier.llm.schemas import ErrorKind

        orch = make_orchestrator(ScriptedGateway([ERROR_BOX]))
        result = await orch.submit("explain recursion")

        assert result.error_kind == ErrorKind.PROVIDER_ERROR
        assert "OpenRouter Credits Insufficient" in result.message
        assert orch.last_outcome.final_state == OrchestratorState.FAILED

    @pytest.mark.asyncio
    async def test_empty_answer(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.schemas import ErrorKind

        result = await make_orchestrator(ScriptedGateway(["   "])).submit("explain recursion")
        assert result.error_kind == ErrorKind.EMPTY_OUTPUT


class TestBuilderFlow:
    """Builder results land in the project."""

    @pytest.mark.asyncio
    async def test_single_file_applied_and_versioned(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.orchestrator import BUILD_COMPLETE_LINE
        from atelier.llm.schemas import Mode, Role, SingleFileResult

        orch = make_orchestrator(ScriptedGateway([HTML_REPLY]))
        result = await orch.submit("buat landing page SaaS modern")

        assert isinstance(result, SingleFileResult)
        assert result.content == "<!DOCTYPE html><html><body>Hi</body></html>"
        assert orch.last_outcome.mode == Mode.BUILDER
        assert orch.file_manager.get_entry() == "index.html"
        assert orch.file_manager.get_file("index.html").content == result.content
        assert len(orch.version_store) == 1
        assert orch.last_outcome.version_id == 1
        assert orch.build_log[-1] == BUILD_COMPLETE_LINE
        assistant = orch.memory.snapshot()[-1]
        assert assistant.role == Role.ASSISTANT
        assert assistant.code == result.content

    @pytest.mark.asyncio
    async def test_multi_file_project(self, make_orchestrator):
        import json
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.schemas import MultiFileResult

        project = json.dumps({
            "files": [
                {"path": "index.html", "content": "<div id=root></div>", "type": "page"},
                {"path": "src/App.jsx", "content": "export default () => null", "type": "component"},
            ],
            "entry": "index.html",
        })
        orch = make_orchestrator(ScriptedGateway([project]))
        result = await orch.submit("build a react dashboard app")

        assert isinstance(result, MultiFileResult)
        assert len(orch.file_manager) == 2
        assert orch.file_manager.detect_framework() == "react"

    @pytest.mark.asyncio
    async def test_edit_explores_existing_project(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.orchestrator import EXISTING_PROJECT_HEADER
        from atelier.llm.schemas import Mode

        gateway = ScriptedGateway([HTML_REPLY, HTML_REPLY.replace("Hi", "Blue")])
        orch = make_orchestrator(gateway)
        await orch.submit("buat landing page SaaS modern")
        await orch.submit("change the color to blue")

        edit = gateway.requests[1]
        assert edit.mode == Mode.BUILDER
        assert EXISTING_PROJECT_HEADER in edit.prompt
        assert "index.html" in edit.prompt
        assert edit.framework_hint == "html"
        assert orch.last_outcome.exploration.degraded is False
        assert len(orch.version_store) == 2

    @pytest.mark.asyncio
    async def test_slow_exploration_degrades(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.orchestrator import OrchestratorConfig

        async def slow_explorer(fm):
            await asyncio.sleep(1)
            return "never"

        gateway = ScriptedGateway([HTML_REPLY, HTML_REPLY])
        config = OrchestratorConfig(provider_id="grok", exploration_timeout_s=0.01)
        orch = make_orchestrator(gateway, config=config, explorer=slow_explorer)
        await orch.submit("buat landing page SaaS modern")
        await orch.submit("tambahkan tombol login")

        assert orch.last_outcome.exploration.timed_out is True
        assert "index.html" in gateway.requests[1].prompt

    @pytest.mark.asyncio
    async def test_builder_failure_is_technical(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.schemas import ErrorKind

        orch = make_orchestrator(ScriptedGateway([_err(ErrorKind.UNAVAILABLE, "down")]))
        result = await orch.submit("buat landing page SaaS modern")

        assert result.message.startswith("Generation failed [unavailable]")
        assert orch.build_log[-1] == "> Error: unavailable: down"
        assert len(orch.file_manager) == 0
        assert len(orch.version_store) == 0


class TestConcurrency:
    """One generation in flight; cancel before the response resolves."""

    @pytest.mark.asyncio
    async def test_second_submit_is_busy(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.schemas import ErrorKind, TextResult

        gateway = ScriptedGateway(["first", "second"], delay_s=0.05)
        orch = make_orchestrator(gateway)
        first = asyncio.create_task(orch.submit("explain recursion"))
        await asyncio.sleep(0.01)

        busy = await orch.submit("explain closures")
        assert busy.error_kind == ErrorKind.BUSY
        assert isinstance(await first, TextResult)
        assert len(gateway.requests) == 1

    @pytest.mark.asyncio
    async def test_cancel_in_flight(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.orchestrator import OrchestratorState
        from atelier.llm.schemas import ErrorKind

        orch = make_orchestrator(ScriptedGateway([HTML_REPLY], delay_s=1.0))
        task = asyncio.create_task(orch.submit("buat landing page SaaS modern"))
        await asyncio.sleep(0.01)

        assert orch.cancel() is True
        result = await asyncio.wait_for(task, timeout=1)
        assert result.error_kind == ErrorKind.CANCELLED
        assert orch.last_outcome.final_state == OrchestratorState.CANCELLED
        assert orch.state == OrchestratorState.IDLE
        assert len(orch.file_manager) == 0
        assert orch.in_flight is False

    def test_cancel_when_idle(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway

        assert make_orchestrator(ScriptedGateway([])).cancel() is False

    @pytest.mark.asyncio
    async def test_can_submit_again_after_cancel(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.schemas import TextResult

        orch = make_orchestrator(ScriptedGateway(["slow", "fast"], delay_s=0.2))
        task = asyncio.create_task(orch.submit("explain recursion"))
        await asyncio.sleep(0.01)
        orch.cancel()
        await task
        orch.gateway.delay_s = 0
        assert isinstance(await orch.submit("explain closures"), TextResult)


class TestInputAndRouting:
    """Input validation and provider routing."""

    @pytest.mark.asyncio
    async def test_empty_input_rejected(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.orchestrator import OrchestratorState
        from atelier.llm.schemas import ErrorKind

        gateway = ScriptedGateway(["unused"])
        orch = make_orchestrator(gateway)
        result = await orch.submit("   ")
        assert result.error_kind == ErrorKind.USER_INPUT
        assert gateway.requests == []
        assert orch.state == OrchestratorState.IDLE

    @pytest.mark.asyncio
    async def test_attachment_only_accepted(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.schemas import Attachment, TextResult

        gateway = ScriptedGateway(["summary of notes"])
        orch = make_orchestrator(gateway)
        notes = Attachment(kind="document", name="notes.txt", content="photosynthesis basics")
        result = await orch.submit("", [notes])
        assert isinstance(result, TextResult)
        assert "[Attachment: notes.txt (document)]" in gateway.requests[0].prompt
        assert "photosynthesis basics" in gateway.requests[0].prompt

    @pytest.mark.asyncio
    async def test_images_route_to_vision_provider(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway

        gateway = ScriptedGateway({"openai": ["I see a cat"]})
        orch = make_orchestrator(gateway)
        result = await orch.submit("what is in this picture?", ["data:image/png;base64,AAAA"])
        assert result.provider_id == "openai"
        assert gateway.requests[0].images == ("data:image/png;base64,AAAA",)

    @pytest.mark.asyncio
    async def test_exhausted_allowance_routes_to_fallback(self, make_orchestrator, fixed_clock):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.sessions.store import InMemoryUsageTracker

        usage = InMemoryUsageTracker(clock=fixed_clock)
        usage.record_usage(None, "grok", 200)
        gateway = ScriptedGateway({"groq": ["cheap answer"]})
        orch = make_orchestrator(gateway, usage=usage)
        result = await orch.submit("explain recursion")

        assert result.provider_id == "groq"
        assert gateway.providers_called == ["groq"]
        assert orch.last_outcome.requested_provider == "grok"

    @pytest.mark.asyncio
    async def test_mode_override(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.schemas import Mode

        gateway = ScriptedGateway(["an answer"])
        orch = make_orchestrator(gateway)
        await orch.submit("buat landing page", mode_override=Mode.TUTOR)
        assert gateway.requests[0].mode == Mode.TUTOR


class TestSideEffects:
    """Usage, quota gate and persistence."""

    @pytest.mark.asyncio
    async def test_usage_recorded_and_quota_gate(self, make_orchestrator, fixed_clock):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.sessions.store import InMemoryUsageTracker

        usage = InMemoryUsageTracker(daily_limit=5, clock=fixed_clock)
        orch = make_orchestrator(ScriptedGateway(["a long enough answer to pass the limit"]), usage=usage)
        await orch.submit("explain recursion")

        assert usage.units_today("grok") > 0
        assert orch.memory.tokens_available is False
        assert len(orch.memory) == 0

    @pytest.mark.asyncio
    async def test_messages_persisted(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.sessions.store import InMemorySessionStore

        store = InMemorySessionStore()
        orch = make_orchestrator(ScriptedGateway(["answer one", "answer two"]), store=store)
        await orch.submit("explain how recursion works in python")
        await orch.submit("and iteration?")

        assert orch.session_id == 1
        assert store.sessions[1]["title"] == "explain how recursion works in..."
        assert [m.content for m in store.get_session_messages(1)] == [
            "explain how recursion works in python", "answer one", "and iteration?", "answer two",
        ]

    @pytest.mark.asyncio
    async def test_persistence_failure_is_not_fatal(self, make_orchestrator):
        from atelier.llm.gateway import ScriptedGateway
        from atelier.llm.schemas import TextResult

        store = Mock()
        store.create_session.side_effect = RuntimeError("database is locked")
        orch = make_orchestrator(ScriptedGateway(["still fine"]), store=store)
        result = await orch.submit("explain recursion")

        assert isinstance(result, TextResult)
        errors = [e for e in orch.last_outcome.events if e.kind == "persistence"]
        assert errors and "database is locked" in errors[0].detail["error"]


class TestConfigAndMessages:
    """Configuration and user-facing text."""

    def test_config_from_env(self, monkeypatch):
        from atelier.llm.orchestrator import OrchestratorConfig

        monkeypatch.setenv("ATELIER_PROVIDER", "deepseek")
        monkeypatch.setenv("ATELIER_EXPLORATION_ENABLED", "0")
        config = OrchestratorConfig.from_env()
        assert config.provider_id == "deepseek"
        assert config.exploration_enabled is False
        assert config.with_provider("openai").provider_id == "openai"

    def test_friendly_message_shape(self):
        from atelier.llm.orchestrator import friendly_failure_message
        from atelier.llm.schemas import ErrorKind

        message = friendly_failure_message(ErrorKind.PROVIDER_ERROR, "Credits Insufficient")
        lines = message.splitlines()
        assert lines[0] == "Sorry, I couldn't finish that answer."
        assert any(line.startswith("What happened:") for line in lines)
        assert "Details: Credits Insufficient" in lines
        assert sum(1 for line in lines if line.startswith("- ")) == 3

    def test_split_inputs(self):
        from atelier.llm.orchestrator import split_inputs
        from atelier.llm.schemas import Attachment

        doc = Attachment(kind="document", name="a.txt", content="x")
        images, attachments = split_inputs(["img1", doc, "", "img2"])
        assert images == ("img1", "img2")
        assert attachments == (doc,)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
