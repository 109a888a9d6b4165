"""Tests for the pipeline engine"""

import asyncio

import pytest

from voice_commands.core.config import Settings
from voice_commands.schemas import AppContext
from voice_commands.services.pipeline.base import CommandDefinition, CustomCommandStore
from voice_commands.services.pipeline.context_analyzer import ContextAnalyzer
from voice_commands.services.pipeline.orchestrator import PipelineEngine
from voice_commands.services.pipeline.response_composer import RECOVERY_SUGGESTIONS


def settings_with(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestPipelineScenarios:
    """End-to-end scenarios"""

    @pytest.mark.asyncio
    async def test_order_on_menu_page(self, engine, menu_context, add_to_cart_handler):
        result = await engine.process_command("Ich möchte zwei Pizza", menu_context)

        assert result.success
        assert result.intent == "add_item"
        assert result.action == "add_to_cart"
        assert result.confidence >= 0.7
        assert result.data == {"product": "pizza", "quantity": 2}
        assert result.message == "Ich habe 2 pizza zum Warenkorb hinzugefügt."
        assert [a.label for a in result.next_actions] == ["Zur Kasse", "Weiter einkaufen"]
        assert len(add_to_cart_handler.calls) == 1

    @pytest.mark.asyncio
    async def test_dialect_order(self, engine, menu_context):
        result = await engine.process_command("Ich wött zwöi Pizza", menu_context)
        assert result.success
        assert result.data["quantity"] == 2

    @pytest.mark.asyncio
    async def test_gibberish(self, engine, menu_context, add_to_cart_handler):
        result = await engine.process_command("xzy qqq", menu_context)

        assert not result.success
        assert result.confidence < 0.3
        assert result.error_code == "no_command"
        assert result.suggestions == list(RECOVERY_SUGGESTIONS)
        assert add_to_cart_handler.calls == []

    @pytest.mark.asyncio
    async def test_transaction_without_user_is_blocked(self, engine, add_to_cart_handler):
        result = await engine.process_command("Ich möchte zwei Pizza", {"current_page": "/menu"})

        assert not result.success
        assert result.error_code == "blocked"
        assert "authentication required" in result.message
        assert result.suggestions
        assert add_to_cart_handler.calls == []

    @pytest.mark.asyncio
    async def test_untrusted_user_id_is_blocked(self, engine, add_to_cart_handler):
        result = await engine.process_command(
            "Ich möchte zwei Pizza", {"user_id": "u1", "authenticated": False}
        )
        assert not result.success
        assert add_to_cart_handler.calls == []

    @pytest.mark.asyncio
    async def test_follow_up_resolves_product_from_history(self, engine, menu_context):
        first = await engine.process_command("Ich möchte eine Pizza", menu_context)
        assert first.success

        result = await engine.process_command("gross", menu_context)

        assert result.success
        assert result.intent == "modify_item"
        assert result.action == "update_item"
        product = next(e for e in result.entities if e["type"] == "product")
        assert product["value"] == "pizza"
        assert product["resolved_from_context"] is True
        assert "Resolved product from conversation context: pizza" in result.warnings
        assert result.message == "pizza ist jetzt gross."

    @pytest.mark.asyncio
    async def test_missing_entity_still_executes(self, engine):
        result = await engine.process_command("Was kostet das", {"session_id": "s-price"})

        assert result.success
        assert result.action == "show_price"
        assert "Missing required entities: product" in result.warnings
        assert result.message == "Hier ist der Preis für."

    @pytest.mark.asyncio
    async def test_table_status(self, engine):
        result = await engine.process_command("Tisch 5 ist frei", {"current_page": "/tables"})

        assert result.success
        assert result.data == {"table": 5, "status": "free"}
        assert result.message == "Tisch 5 ist jetzt free."

    @pytest.mark.asyncio
    async def test_empty_input(self, engine):
        result = await engine.process_command("  ?! ")
        assert not result.success
        assert result.error_code == "invalid_input"
        assert result.suggestions

    @pytest.mark.asyncio
    async def test_invalid_context(self, engine):
        result = await engine.process_command("hilfe", {"cart_item_count": -1})
        assert not result.success
        assert result.error_code == "invalid_input"
        assert result.errors[0]["stage"] == "preprocessing"

    @pytest.mark.asyncio
    async def test_app_context_model_accepted(self, engine):
        result = await engine.process_command("hilfe", AppContext(session_id="s-model"))
        assert result.success
        assert result.action == "show_help"


class TestConfidence:
    """Confidence handling"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("transcript", [
        "Ich möchte zwei Pizza",
        "xzy qqq",
        "hilfe",
        "",
        "zeig mir den warenkorb",
        "bezahlen",
    ])
    async def test_confidence_bounded(self, engine, transcript):
        result = await engine.process_command(
            transcript, {"current_page": "/cart", "authenticated_user_id": "u1"}
        )
        assert 0.0 <= result.confidence <= 1.0

    @pytest.mark.asyncio
    async def test_recognition_confidence_scales_result(self, engine):
        result = await engine.process_command(
            "hilfe", {"session_id": "s-rc"}, recognition_confidence=0.5
        )
        assert result.success
        assert result.confidence == pytest.approx(0.45)

    @pytest.mark.asyncio
    async def test_context_boost_clamped(self, engine, menu_context):
        result = await engine.process_command("Ich möchte zwei Pizza", menu_context)
        assert result.confidence == 1.0

    @pytest.mark.asyncio
    async def test_low_confidence_alternatives_warned(self, engine):
        result = await engine.process_command("zeig mir alles", {"session_id": "s-alt"})
        assert any("Low confidence alternative intent" in w for w in result.warnings)


class TestCaching:
    """Result cache behaviour"""

    @pytest.mark.asyncio
    async def test_repeat_is_served_from_cache(self, engine, menu_context, add_to_cart_handler):
        first = await engine.process_command("Ich möchte zwei Pizza", menu_context)
        second = await engine.process_command("ich möchte zwei pizza!", menu_context)

        assert not first.cached
        assert second.cached
        assert second.action == first.action
        assert second.data == first.data
        assert second.message == first.message
        assert second.processing_time_ms < 50
        assert len(add_to_cart_handler.calls) == 1

    @pytest.mark.asyncio
    async def test_cache_hit_skips_history(self, engine, menu_context):
        await engine.process_command("Ich möchte zwei Pizza", menu_context)
        await engine.process_command("Ich möchte zwei Pizza", menu_context)
        assert len(engine.get_history("session-1")) == 1

    @pytest.mark.asyncio
    async def test_cached_transaction_not_served_to_untrusted_caller(
        self, engine, add_to_cart_handler
    ):
        trusted = await engine.process_command(
            "Ich möchte zwei Pizza", {"authenticated_user_id": "u1", "session_id": "s-trust"}
        )
        untrusted = await engine.process_command(
            "Ich möchte zwei Pizza", {"user_id": "u1", "authenticated": False}
        )

        assert trusted.success
        assert not untrusted.success
        assert not untrusted.cached
        assert untrusted.error_code == "blocked"
        assert len(add_to_cart_handler.calls) == 1

    @pytest.mark.asyncio
    async def test_failures_not_cached(self, engine, menu_context):
        await engine.process_command("xzy qqq", menu_context)
        result = await engine.process_command("xzy qqq", menu_context)
        assert not result.cached

    @pytest.mark.asyncio
    async def test_caching_disabled(self, add_to_cart_handler, menu_context):
        engine = PipelineEngine(
            settings=settings_with(enable_caching=False),
            handlers={"add_to_cart": add_to_cart_handler},
        )
        await engine.process_command("Ich möchte zwei Pizza", menu_context)
        result = await engine.process_command("Ich möchte zwei Pizza", menu_context)

        assert not result.cached
        assert len(add_to_cart_handler.calls) == 2

    @pytest.mark.asyncio
    async def test_cache_metrics(self, engine, menu_context):
        await engine.process_command("hilfe", menu_context)
        await engine.process_command("hilfe", menu_context)

        metrics = engine.get_performance_metrics()
        assert metrics["cache_hits"] == 1
        assert metrics["cache_misses"] == 1
        assert metrics["total_commands"] == 2


class TestHistory:
    """Conversation history"""

    @pytest.mark.asyncio
    async def test_history_bounded(self):
        engine = PipelineEngine(settings=settings_with(history_capacity=3))
        for transcript in ["hilfe", "bitte hilfe", "hilfe jetzt", "help", "help me"]:
            result = await engine.process_command(transcript, {"session_id": "s1"})
            assert result.success

        history = engine.get_history("s1")
        assert len(history) == 3
        assert [turn.input for turn in history] == ["hilfe jetzt", "help", "help me"]

    @pytest.mark.asyncio
    async def test_sessions_have_separate_histories(self, engine):
        await engine.process_command("hilfe", {"session_id": "a"})
        await engine.process_command("stopp", {"session_id": "b"})

        assert [t.intent for t in engine.get_history("a")] == ["help"]
        assert [t.intent for t in engine.get_history("b")] == ["cancel"]
        assert engine.get_history("missing") == []

    @pytest.mark.asyncio
    async def test_user_id_is_session_fallback(self, engine):
        await engine.process_command("hilfe", {"user_id": "u7"})
        assert len(engine.get_history("u7")) == 1

    @pytest.mark.asyncio
    async def test_least_recent_idle_session_evicted(self):
        engine = PipelineEngine(settings=settings_with(max_sessions=2, enable_caching=False))
        await engine.process_command("hilfe", {"session_id": "a"})
        await engine.process_command("stopp", {"session_id": "b"})
        await engine.process_command("hilfe", {"session_id": "a"})
        await engine.process_command("help", {"session_id": "c"})

        assert engine.get_history("b") == []
        assert len(engine.get_history("a")) == 2
        assert len(engine.get_history("c")) == 1

    @pytest.mark.asyncio
    async def test_clear(self, engine, menu_context):
        await engine.process_command("Ich möchte zwei Pizza", menu_context)
        engine.clear()

        assert engine.get_history("session-1") == []
        result = await engine.process_command("Ich möchte zwei Pizza", menu_context)
        assert not result.cached


class TestDeadlineAndErrors:
    """Timeouts and unexpected failures"""

    @pytest.mark.asyncio
    async def test_slow_callback_times_out(self):
        async def slow(parameters):
            await asyncio.sleep(1)
            return {"action": "slow"}

        engine = PipelineEngine(
            settings=settings_with(max_processing_time_ms=50),
            handlers={"help": slow},
        )
        result = await engine.process_command("hilfe", {"session_id": "s-slow"})

        assert not result.success
        assert result.error_code == "timeout"
        assert result.errors[-1]["stage"] == "result_formatting"
        assert result.errors[-1]["message"].startswith("timeout")
        assert result.suggestions
        assert engine.get_history("s-slow") == []

    @pytest.mark.asyncio
    async def test_callback_failure(self):
        def broken(parameters):
            raise RuntimeError("kitchen closed")

        engine = PipelineEngine(settings=settings_with(), handlers={"help": broken})
        result = await engine.process_command("hilfe")

        assert not result.success
        assert result.error_code == "execution_failed"
        assert "kitchen closed" in result.message
        assert result.suggestions == list(RECOVERY_SUGGESTIONS)

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_internal_failure(self):
        class BrokenAnalyzer(ContextAnalyzer):
            def analyze(self, *args, **kwargs):
                raise KeyError("boom")

        engine = PipelineEngine(settings=settings_with(), context_analyzer=BrokenAnalyzer())
        result = await engine.process_command("hilfe")

        assert not result.success
        assert result.error_code == "internal"
        assert result.errors[-1]["stage"] == "internal"


class TestConcurrency:
    """Per-session serialization"""

    @pytest.mark.asyncio
    async def test_same_session_is_serialized(self):
        active = 0
        peak = 0

        async def tracked(parameters):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.02)
            active -= 1
            return {"action": "show_help"}

        engine = PipelineEngine(
            settings=settings_with(enable_caching=False),
            handlers={"help": tracked},
        )
        results = await asyncio.gather(*[
            engine.process_command(text, {"session_id": "same"})
            for text in ["hilfe", "hilfe bitte", "bitte hilfe"]
        ])

        assert all(r.success for r in results)
        assert peak == 1
        assert len(engine.get_history("same")) == 3

    @pytest.mark.asyncio
    async def test_different_sessions_run_concurrently(self):
        active = 0
        peak = 0

        async def tracked(parameters):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.02)
            active -= 1
            return {"action": "show_help"}

        engine = PipelineEngine(
            settings=settings_with(enable_caching=False),
            handlers={"help": tracked},
        )
        await asyncio.gather(*[
            engine.process_command("hilfe", {"session_id": f"s{i}"}) for i in range(3)
        ])

        assert peak > 1


class InMemoryStore(CustomCommandStore):
    def __init__(self, commands=None, error=None):
        self.commands = commands or {}
        self.error = error
        self.loads = []

    async def load(self, user_id):
        self.loads.append(user_id)
        if self.error is not None:
            raise self.error
        return self.commands.get(user_id, [])


class TestCustomCommands:
    """Per-user commands"""

    @pytest.mark.asyncio
    async def test_custom_command_only_for_its_user(self, engine, make_handler):
        handler = make_handler("repeat_last_order")
        engine.register_custom_command("u1", CommandDefinition(
            name="usual",
            patterns=(r"\bdas übliche\b",),
            intent="usual_order",
            confidence=0.95,
            execution=handler,
            response_template="Wie immer.",
        ))

        mine = await engine.process_command("Das Übliche bitte", {"user_id": "u1"})
        other = await engine.process_command("Das Übliche bitte", {"user_id": "u2"})

        assert mine.success
        assert mine.action == "repeat_last_order"
        assert mine.message == "Wie immer."
        assert not other.success
        assert len(handler.calls) == 1

    @pytest.mark.asyncio
    async def test_custom_command_overrides_builtin_intent(self, engine, make_handler):
        handler = make_handler("personal_help")
        engine.register_custom_command("u1", CommandDefinition(
            name="my_help",
            patterns=(r"\bhilfe\b",),
            intent="help",
            confidence=0.9,
            execution=handler,
        ))

        result = await engine.process_command("hilfe", {"user_id": "u1"})
        assert result.action == "personal_help"

    @pytest.mark.asyncio
    async def test_store_loaded_once_per_user(self, test_settings, make_handler):
        handler = make_handler("repeat_last_order")
        store = InMemoryStore({"u1": [CommandDefinition(
            name="usual",
            patterns=(r"\bdas übliche\b",),
            intent="usual_order",
            execution=handler,
        )]})
        engine = PipelineEngine(settings=test_settings, custom_command_store=store)

        first = await engine.process_command("das übliche", {"user_id": "u1"})
        second = await engine.process_command("hilfe", {"user_id": "u1"})

        assert first.success
        assert first.action == "repeat_last_order"
        assert second.success
        assert store.loads == ["u1"]

    @pytest.mark.asyncio
    async def test_store_failure_is_a_warning(self, test_settings):
        store = InMemoryStore(error=ConnectionError("store offline"))
        engine = PipelineEngine(settings=test_settings, custom_command_store=store)

        result = await engine.process_command("hilfe", {"user_id": "u1"})

        assert result.success
        assert any("store offline" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_register_command(self, engine, make_handler):
        engine.register_command(CommandDefinition(
            name="call_waiter",
            patterns=(r"\bkellner\b",),
            intent="call_waiter",
            confidence=0.9,
            execution=make_handler("call_waiter"),
            response_template="Der Kellner kommt.",
        ))

        result = await engine.process_command("Kellner bitte")
        assert result.success
        assert result.action == "call_waiter"
        assert result.message == "Der Kellner kommt."
