"""Pipeline orchestrator - coordinates all pipeline components"""

import asyncio
import inspect
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Union

from pydantic import ValidationError

from voice_commands.core.config import Settings, settings as default_settings
from voice_commands.core.logging import get_logger
from voice_commands.schemas import AppContext, CommandResult
from voice_commands.services.cache import ResultCache
from voice_commands.services.commands import register_default_commands
from voice_commands.services.dialect import SwissGermanNormalizer
from voice_commands.services.history import ConversationHistory
from voice_commands.services.monitoring import PipelineMetrics
from voice_commands.services.pipeline.base import (
    UNKNOWN_INTENT,
    BaseEntityExtractor,
    BaseIntentClassifier,
    CommandCallback,
    CommandDefinition,
    ConversationTurn,
    CustomCommandStore,
    ProcessingContext,
    ProcessingStage,
    clamp_confidence,
)
from voice_commands.services.pipeline.context_analyzer import ContextAnalyzer
from voice_commands.services.pipeline.entity_extractor import EntityExtractor
from voice_commands.services.pipeline.executor import Executor
from voice_commands.services.pipeline.intent_classifier import IntentClassifier
from voice_commands.services.pipeline.planner import Planner
from voice_commands.services.pipeline.preprocessor import DialectNormalizer, Preprocessor
from voice_commands.services.pipeline.response_composer import ErrorCode, ResponseComposer
from voice_commands.services.pipeline.validator import CommandValidator, ValidationFailure
from voice_commands.services.registry import CommandRegistry

logger = get_logger(__name__)

TIMEOUT_MESSAGE = "Die Verarbeitung hat zu lange gedauert."

# Failure code reported when a stage error ends the run early
_EARLY_EXIT_CODES = {
    ProcessingStage.PREPROCESSING.value: ErrorCode.INVALID_INPUT,
    ProcessingStage.COMMAND_VALIDATION.value: ErrorCode.NO_COMMAND,
    ProcessingStage.EXECUTION_PLANNING.value: ErrorCode.BLOCKED,
}


class PipelineTimeout(Exception):
    """Deadline of one invocation expired"""

    def __init__(self, stage: ProcessingStage):
        super().__init__(f"Deadline expired during {stage.value}")
        self.stage = stage


class _EarlyExit(Exception):
    """Stop the run and return a failure result"""

    def __init__(self, error_code: str):
        super().__init__(error_code)
        self.error_code = error_code


class PipelineEngine:
    """
    Interprets transcribed utterances and executes the matching command.

    Pipeline flow:
    1. Preprocessor: normalize text and dialect
    2. IntentClassifier: pick the registered intent
    3. EntityExtractor: collect typed values
    4. ContextAnalyzer: boost confidence from the host page
    5. CommandValidator: match a command, fill entities from history
    6. Planner: strategy, parameters and preconditions
    7. Executor and ResponseComposer: run the callback, format the result

    The engine owns the command registry, the result cache and the
    per-session histories. Invocations of the same session are
    serialized; different sessions run concurrently.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[CommandRegistry] = None,
        handlers: Optional[Mapping[str, CommandCallback]] = None,
        classifier_delegate: Optional[BaseIntentClassifier] = None,
        extractor_delegate: Optional[BaseEntityExtractor] = None,
        dialect_normalizer: Optional[DialectNormalizer] = None,
        custom_command_store: Optional[CustomCommandStore] = None,
        context_analyzer: Optional[ContextAnalyzer] = None,
        products: Optional[Mapping[str, str]] = None,
        register_defaults: bool = True,
        metrics: Optional[PipelineMetrics] = None,
    ):
        self.settings = settings or default_settings
        self.registry = registry if registry is not None else CommandRegistry()
        if register_defaults and len(self.registry) == 0:
            register_default_commands(self.registry, handlers)

        self.preprocessor = Preprocessor(dialect_normalizer or SwissGermanNormalizer())
        self.classifier = IntentClassifier(self.registry, delegate=classifier_delegate)
        self.extractor = EntityExtractor(delegate=extractor_delegate, products=products)
        self.context_analyzer = context_analyzer or ContextAnalyzer()
        self.validator = CommandValidator(
            self.registry,
            history_window=self.settings.context_history_window,
        )
        self.planner = Planner()
        self.executor = Executor()
        self.composer = ResponseComposer()

        self.cache = ResultCache(
            ttl_seconds=self.settings.cache_ttl_seconds,
            max_size=self.settings.cache_max_size,
        )
        self.metrics = metrics or PipelineMetrics()
        self.custom_command_store = custom_command_store

        self._histories: Dict[str, ConversationHistory] = {}
        self._session_locks: "OrderedDict[str, asyncio.Lock]" = OrderedDict()
        self._loaded_users: Set[str] = set()

    # Command management

    def register_command(self, definition: CommandDefinition) -> CommandDefinition:
        stored = self.registry.register(definition)
        self.cache.clear()
        return stored

    def register_custom_command(self, user_id: str, definition: CommandDefinition) -> CommandDefinition:
        stored = self.registry.register_custom(user_id, definition)
        self.cache.clear()
        return stored

    async def load_custom_commands(self, user_id: str) -> List[CommandDefinition]:
        """
        Load a user's commands from the custom command store

        Each user is loaded at most once; a failed load is retried on the
        next call.

        Args:
            user_id: User identifier

        Returns:
            Newly registered definitions
        """
        if self.custom_command_store is None or not user_id or user_id in self._loaded_users:
            return []

        definitions = await self.custom_command_store.load(user_id)
        registered = [self.registry.register_custom(user_id, d) for d in definitions]
        self._loaded_users.add(user_id)

        if registered:
            self.cache.clear()

        logger.info("Custom commands loaded", user_id=user_id, count=len(registered))
        return registered

    # Introspection

    def get_history(self, session_id: str) -> List[ConversationTurn]:
        history = self._histories.get(session_id)
        return history.snapshot() if history is not None else []

    def get_performance_metrics(self) -> Dict[str, Any]:
        return self.metrics.snapshot()

    def clear(self) -> None:
        """Drop cached results and conversation histories"""
        self.cache.clear()
        self._histories.clear()
        for key in [k for k, lock in self._session_locks.items() if not lock.locked()]:
            del self._session_locks[key]
        logger.info("Pipeline state cleared")

    # Processing

    async def process_command(
        self,
        transcript: str,
        context: Optional[Union[AppContext, Mapping[str, Any]]] = None,
        *,
        recognition_confidence: Optional[float] = None,
    ) -> CommandResult:
        """
        Process one utterance through the complete pipeline

        Args:
            transcript: Text from speech recognition
            context: Host application context (AppContext or plain dict)
            recognition_confidence: Optional speech recognition confidence,
                multiplied into the reported confidence

        Returns:
            Command result; exceptions never escape
        """
        started = time.perf_counter()
        transcript = transcript if isinstance(transcript, str) else ""

        try:
            app_context = self._coerce_context(context)
        except ValidationError as e:
            ctx = ProcessingContext(raw_input=transcript, language=self.settings.language)
            ctx.add_error(
                ProcessingStage.PREPROCESSING,
                f"Invalid application context: {e.error_count()} errors",
            )
            result = self.composer.compose_failure(ctx, error_code=ErrorCode.INVALID_INPUT)
            return self._finish(ctx, result, started, recognition_confidence)

        language = app_context.locale or self.settings.language
        user_id = app_context.effective_user_id

        cache_key = None
        if self.settings.enable_caching:
            cache_key = self.cache.make_key(
                self.preprocessor.basic_normalize(transcript),
                user_id,
                language,
                authenticated=app_context.is_authenticated,
            )
            cached = self.cache.get(cache_key)
            self.metrics.track_cache(cached is not None)
            if cached is not None:
                duration_ms = (time.perf_counter() - started) * 1000
                self.metrics.track_command(cached.intent, cached.success, duration_ms, cached.confidence)
                logger.info("Cache hit", intent=cached.intent, user_id=user_id)
                return cached.model_copy(update={"cached": True, "processing_time_ms": duration_ms})

        session_key = app_context.session_key
        async with self._lock_for(session_key):
            ctx = ProcessingContext(
                raw_input=transcript,
                language=language,
                user_id=user_id,
                session_id=app_context.session_id,
                authenticated=app_context.is_authenticated,
                app_context=app_context.model_dump(exclude_unset=True),
            )
            history = self._history_for(session_key)

            logger.info(
                "Pipeline processing started",
                user_id=user_id,
                session=session_key,
                command=transcript[:50],
            )

            try:
                result = await self._run(ctx, history)
            except PipelineTimeout as e:
                logger.warning("Pipeline deadline exceeded", stage=e.stage.value, user_id=user_id)
                ctx.add_error(e.stage, f"timeout after {self.settings.max_processing_time_ms} ms")
                result = self.composer.compose_failure(
                    ctx, message=TIMEOUT_MESSAGE, error_code=ErrorCode.TIMEOUT
                )
            except _EarlyExit as e:
                result = self.composer.compose_failure(ctx, error_code=e.error_code)
            except Exception as e:
                logger.error(
                    "Pipeline processing failed",
                    stage=ctx.stage.value if ctx.stage else None,
                    user_id=user_id,
                    error=str(e),
                )
                ctx.add_error(ProcessingStage.INTERNAL, f"Internal error: {e}")
                result = self.composer.compose_failure(ctx, error_code=ErrorCode.INTERNAL)

            result = self._finish(ctx, result, started, recognition_confidence)

            if result.success:
                history.append(ConversationTurn(
                    timestamp=ctx.timestamp,
                    input=ctx.raw_input,
                    intent=ctx.intent,
                    entities=tuple(ctx.entities),
                    confidence=result.confidence,
                    success=True,
                    action=result.action,
                    message=result.message,
                ))
                if cache_key is not None:
                    self.cache.set(cache_key, result)

        return result

    async def _run(self, ctx: ProcessingContext, history: ConversationHistory) -> CommandResult:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.max_processing_time_seconds

        # Step 1: Normalize
        await self._load_custom_commands_for(ctx, deadline)
        ctx.normalized_input, warnings = await self._stage(
            ctx, ProcessingStage.PREPROCESSING, deadline,
            self.preprocessor.normalize, ctx.raw_input, ctx.language,
        )
        ctx.warnings.extend(warnings)
        if not ctx.normalized_input:
            ctx.add_error(ProcessingStage.PREPROCESSING, "Empty input")
        self._check_early_exit(ctx)

        # Step 2: Classify intent
        intent_result = await self._stage(
            ctx, ProcessingStage.INTENT_RECOGNITION, deadline,
            self.classifier.classify, ctx.normalized_input, ctx.user_id,
        )
        ctx.intent = intent_result.intent
        ctx.alternatives = list(intent_result.alternatives)
        ctx.raise_confidence(intent_result.confidence)
        for intent, confidence in self.classifier.low_confidence_alternatives(intent_result):
            ctx.add_warning(f"Low confidence alternative intent: {intent} ({confidence:.2f})")

        logger.info(
            "Intent analyzed",
            user_id=ctx.user_id,
            intent=ctx.intent,
            confidence=ctx.confidence,
        )
        self._check_early_exit(ctx)

        # Step 3: Extract entities
        ctx.entities = await self._stage(
            ctx, ProcessingStage.ENTITY_EXTRACTION, deadline,
            self.extractor.extract, ctx.normalized_input,
        )
        self._check_early_exit(ctx)

        # Step 4: Analyze context
        if self.settings.enable_context_awareness:
            analysis = await self._stage(
                ctx, ProcessingStage.CONTEXT_ANALYSIS, deadline,
                self.context_analyzer.analyze,
                ctx.normalized_input, ctx.intent, ctx.app_context,
                history.recent(self.settings.context_history_window),
            )
            ctx.context_analysis = analysis
            if analysis.boost and ctx.intent != UNKNOWN_INTENT:
                ctx.boost_confidence(analysis.boost)
            self._check_early_exit(ctx)

        # Step 5: Validate command
        validated = await self._stage(
            ctx, ProcessingStage.COMMAND_VALIDATION, deadline,
            self.validator.validate, ctx.intent, ctx.entities, ctx.user_id, history.snapshot(),
        )
        if isinstance(validated, ValidationFailure):
            ctx.add_error(ProcessingStage.COMMAND_VALIDATION, validated.message)
            raise _EarlyExit(ErrorCode.NO_COMMAND)

        ctx.command = validated.command
        ctx.entities.extend(validated.resolved_entities)
        ctx.warnings.extend(validated.warnings)
        self._check_early_exit(ctx)

        # Step 6: Plan
        plan = await self._stage(
            ctx, ProcessingStage.EXECUTION_PLANNING, deadline,
            self.planner.plan, ctx,
        )
        ctx.execution_plan = plan
        for blocker in plan.blockers:
            ctx.add_error(ProcessingStage.EXECUTION_PLANNING, blocker.message)
        self._check_early_exit(ctx)

        # Step 7: Execute and compose
        execution = await self._stage(
            ctx, ProcessingStage.RESULT_FORMATTING, deadline,
            self.executor.execute, plan,
        )
        ctx.execution_result = execution
        if not execution.success and plan.can_execute:
            ctx.add_error(ProcessingStage.RESULT_FORMATTING, execution.error or "Command failed")

        return self.composer.compose(ctx, execution)

    async def _stage(
        self,
        ctx: ProcessingContext,
        stage: ProcessingStage,
        deadline: float,
        func: Callable[..., Any],
        *args: Any,
    ) -> Any:
        """Run one stage, bounding awaits by the remaining deadline"""
        ctx.stage = stage
        loop = asyncio.get_running_loop()
        if loop.time() >= deadline:
            raise PipelineTimeout(stage)

        started = time.perf_counter()
        try:
            outcome = func(*args)
            if inspect.isawaitable(outcome):
                outcome = await asyncio.wait_for(outcome, timeout=max(deadline - loop.time(), 0))
        except asyncio.TimeoutError:
            raise PipelineTimeout(stage)
        finally:
            self.metrics.track_step(stage.value, time.perf_counter() - started)

        if loop.time() > deadline:
            raise PipelineTimeout(stage)
        return outcome

    async def _load_custom_commands_for(self, ctx: ProcessingContext, deadline: float) -> None:
        if self.custom_command_store is None or not ctx.user_id or ctx.user_id in self._loaded_users:
            return
        try:
            await self._stage(
                ctx, ProcessingStage.PREPROCESSING, deadline,
                self.load_custom_commands, ctx.user_id,
            )
        except PipelineTimeout:
            raise
        except Exception as e:
            logger.warning("Custom command store failed", user_id=ctx.user_id, error=str(e))
            ctx.add_warning(f"Custom commands could not be loaded: {e}")

    def _check_early_exit(self, ctx: ProcessingContext) -> None:
        if ctx.errors and ctx.confidence < self.settings.confidence_threshold:
            code = _EARLY_EXIT_CODES.get(ctx.errors[-1].stage, ErrorCode.LOW_CONFIDENCE)
            logger.info(
                "Pipeline stopped early",
                stage=ctx.stage.value if ctx.stage else None,
                confidence=ctx.confidence,
                error_code=code,
            )
            raise _EarlyExit(code)

    def _finish(
        self,
        ctx: ProcessingContext,
        result: CommandResult,
        started: float,
        recognition_confidence: Optional[float],
    ) -> CommandResult:
        confidence = result.confidence
        if recognition_confidence is not None:
            confidence = clamp_confidence(confidence * clamp_confidence(recognition_confidence))

        duration_ms = (time.perf_counter() - started) * 1000
        result = result.model_copy(update={"confidence": confidence, "processing_time_ms": duration_ms})

        self.metrics.track_command(result.intent, result.success, duration_ms, confidence)
        logger.info(
            "Pipeline processing completed",
            user_id=ctx.user_id,
            intent=result.intent,
            success=result.success,
            confidence=round(confidence, 3),
            duration_ms=round(duration_ms, 1),
        )
        return result

    @staticmethod
    def _coerce_context(context: Optional[Union[AppContext, Mapping[str, Any]]]) -> AppContext:
        if context is None:
            return AppContext()
        if isinstance(context, AppContext):
            return context
        return AppContext.model_validate(dict(context) if isinstance(context, Mapping) else context)

    def _lock_for(self, session_key: str) -> asyncio.Lock:
        lock = self._session_locks.get(session_key)
        if lock is None:
            lock = self._session_locks[session_key] = asyncio.Lock()
            self._evict_idle_sessions()
        else:
            self._session_locks.move_to_end(session_key)
        return lock

    def _evict_idle_sessions(self) -> None:
        """Drop least recently used sessions over max_sessions, never one in use"""
        excess = len(self._session_locks) - self.settings.max_sessions
        # The newest entry is about to be acquired
        for key in list(self._session_locks)[:-1]:
            if excess <= 0:
                break
            if self._session_locks[key].locked():
                continue
            del self._session_locks[key]
            self._histories.pop(key, None)
            excess -= 1
            logger.debug("Idle session evicted", session=key)

    def _history_for(self, session_key: str) -> ConversationHistory:
        history = self._histories.get(session_key)
        if history is None:
            history = self._histories[session_key] = ConversationHistory(self.settings.history_capacity)
        return history
