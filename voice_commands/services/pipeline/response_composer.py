"""Response composer - formats pipeline output for the host"""

import re
from typing import Iterable, List, Optional

from voice_commands.core.logging import get_logger
from voice_commands.schemas import CommandResult, NextAction
from voice_commands.services.pipeline.base import (
    Entity,
    ExecutionResult,
    IntentCategory,
    ProcessingContext,
)

logger = get_logger(__name__)

DEFAULT_MESSAGE = "Befehl wurde ausgeführt."
DEFAULT_FAILURE_MESSAGE = "Der Befehl konnte nicht ausgeführt werden."

RECOVERY_SUGGESTIONS = (
    "Versuchen Sie es mit anderen Worten.",
    "Sagen Sie \"Hilfe\" für verfügbare Befehle.",
    "Sprechen Sie deutlicher und wiederholen Sie den Befehl.",
)

CATEGORY_SUGGESTIONS = {
    IntentCategory.NAVIGATION.value: ("Was möchten Sie als nächstes tun?",),
    IntentCategory.TRANSACTION.value: ("Möchten Sie noch etwas bestellen?",),
    IntentCategory.INFORMATION.value: ("Möchten Sie mehr erfahren?",),
}

_PLACEHOLDER = re.compile(r"\{(\w+)\}")
_SPACES = re.compile(r"\s{2,}")
_SPACE_BEFORE_PUNCT = re.compile(r"\s+([.,!?:;])")


class ErrorCode:
    """Failure codes reported in CommandResult.error_code"""
    TIMEOUT = "timeout"
    NO_COMMAND = "no_command"
    LOW_CONFIDENCE = "low_confidence"
    BLOCKED = "blocked"
    EXECUTION_FAILED = "execution_failed"
    INVALID_INPUT = "invalid_input"
    INTERNAL = "internal"


def render_template(template: str, entities: Iterable[Entity]) -> str:
    """
    Substitute {entity_type} placeholders with entity values

    The first entity of each type wins. Placeholders without a value are
    dropped.
    """
    values = {}
    for entity in entities:
        values.setdefault(entity.type, entity.value)

    rendered = _PLACEHOLDER.sub(
        lambda m: str(values[m.group(1)]) if m.group(1) in values else "",
        template,
    )
    rendered = _SPACES.sub(" ", rendered)
    return _SPACE_BEFORE_PUNCT.sub(r"\1", rendered).strip()


class ResponseComposer:
    """
    Composes the final result of an invocation.

    Responsibilities:
    - Render the command's response template
    - Attach follow-up suggestions and next actions
    - Build failure results that always carry recovery suggestions
    """

    def __init__(self, recovery_suggestions: Optional[Iterable[str]] = None):
        self.recovery_suggestions: List[str] = list(recovery_suggestions or RECOVERY_SUGGESTIONS)

    def compose(self, context: ProcessingContext, execution: ExecutionResult) -> CommandResult:
        """
        Compose result after execution

        Args:
            context: Processing context
            execution: Result of the command callback

        Returns:
            Final command result
        """
        if not execution.success:
            code = ErrorCode.EXECUTION_FAILED
            if context.execution_plan is not None and not context.execution_plan.can_execute:
                code = ErrorCode.BLOCKED
            return self.compose_failure(
                context,
                message=execution.error or DEFAULT_FAILURE_MESSAGE,
                error_code=code,
                action=execution.action,
            )

        command = context.command
        template = command.response_template if command and command.response_template else None
        message = render_template(template, context.entities) if template else DEFAULT_MESSAGE

        return CommandResult(
            success=True,
            action=execution.action,
            data=execution.data,
            message=message,
            confidence=context.confidence,
            intent=context.intent,
            entities=[entity.to_dict() for entity in context.entities],
            warnings=list(context.warnings),
            errors=[error.to_dict() for error in context.errors],
            suggestions=self.suggestions_for(context),
            next_actions=[NextAction(**action) for action in (command.next_actions if command else ())],
        )

    def compose_failure(
        self,
        context: ProcessingContext,
        message: Optional[str] = None,
        error_code: str = ErrorCode.INTERNAL,
        action: Optional[str] = None,
    ) -> CommandResult:
        """Failure result with recovery suggestions"""
        if message is None:
            message = context.errors[-1].message if context.errors else DEFAULT_FAILURE_MESSAGE

        logger.info(
            "Composing failure result",
            intent=context.intent,
            error_code=error_code,
            errors=len(context.errors),
        )

        return CommandResult(
            success=False,
            action=action,
            message=message,
            confidence=context.confidence,
            intent=context.intent,
            entities=[entity.to_dict() for entity in context.entities],
            warnings=list(context.warnings),
            errors=[error.to_dict() for error in context.errors],
            error_code=error_code,
            suggestions=list(self.recovery_suggestions),
        )

    def suggestions_for(self, context: ProcessingContext) -> List[str]:
        command = context.command
        if command is None:
            return []
        suggestions = command.suggestions or CATEGORY_SUGGESTIONS.get(command.category, ())
        return [render_template(text, context.entities) for text in suggestions]
