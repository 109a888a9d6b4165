"""Planner - builds execution plans for matched commands"""

from typing import Any, Dict, List

from voice_commands.core.logging import get_logger
from voice_commands.services.pipeline.base import (
    ExecutionPlan,
    ExecutionStrategy,
    IntentCategory,
    Precondition,
    ProcessingContext,
)

logger = get_logger(__name__)

AUTHENTICATION_REQUIRED = "User authentication required for transactions"


class Planner:
    """
    Generates execution plans.

    Responsibilities:
    - Pick an execution strategy from the command category
    - Map collected entities to named parameters
    - Evaluate preconditions synchronously
    - List informational dependencies

    The planner never touches external state.
    """

    def plan(self, context: ProcessingContext) -> ExecutionPlan:
        """
        Generate execution plan

        Args:
            context: Processing context with a matched command

        Returns:
            Execution plan
        """
        command = context.command
        if command is None:
            raise ValueError("No valid command for execution planning")

        plan = ExecutionPlan(
            command=command,
            strategy=self.determine_strategy(command.category),
            parameters=self.prepare_parameters(context),
            preconditions=self.check_preconditions(context),
            dependencies=list(command.dependencies),
        )

        logger.info(
            "Plan generated",
            command=command.name,
            strategy=plan.strategy.value,
            can_execute=plan.can_execute,
        )

        return plan

    @staticmethod
    def determine_strategy(category: str) -> ExecutionStrategy:
        if category == IntentCategory.TRANSACTION.value:
            return ExecutionStrategy.CONFIRMED
        if category == IntentCategory.NAVIGATION.value:
            return ExecutionStrategy.IMMEDIATE
        return ExecutionStrategy.IMMEDIATE

    @staticmethod
    def prepare_parameters(context: ProcessingContext) -> Dict[str, Any]:
        """Entity values by type (first one wins) plus request metadata"""
        parameters: Dict[str, Any] = {}
        for entity in context.entities:
            parameters.setdefault(entity.type, entity.value)

        parameters["context"] = dict(context.app_context)
        parameters["user_id"] = context.user_id
        parameters["timestamp"] = context.timestamp
        return parameters

    @staticmethod
    def check_preconditions(context: ProcessingContext) -> List[Precondition]:
        preconditions = []

        if context.command.category == IntentCategory.TRANSACTION.value:
            authenticated = bool(context.user_id) and context.authenticated
            preconditions.append(Precondition(
                name="authentication",
                satisfied=authenticated,
                blocking=True,
                message="" if authenticated else AUTHENTICATION_REQUIRED,
            ))

        return preconditions
