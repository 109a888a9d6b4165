"""Executor - invokes command callbacks"""

import inspect
from typing import Any

from voice_commands.core.logging import get_logger
from voice_commands.services.pipeline.base import ExecutionPlan, ExecutionResult

logger = get_logger(__name__)


class Executor:
    """
    Executes planned commands.

    Responsibilities:
    - Refuse plans with unmet blocking preconditions
    - Call the command's callback exactly once
    - Turn callback failures into structured results

    Callbacks are at-most-once; nothing is rolled back on failure.
    """

    async def execute(self, plan: ExecutionPlan) -> ExecutionResult:
        """
        Execute plan

        Args:
            plan: Execution plan from the planner

        Returns:
            Execution result
        """
        command = plan.command

        if not plan.can_execute:
            reasons = "; ".join(p.message for p in plan.blockers)
            logger.info("Execution blocked", command=command.name, reasons=reasons)
            return ExecutionResult(success=False, error=reasons)

        if command.execution is None or not callable(command.execution):
            return ExecutionResult(success=False, error="Command has no execution function")

        logger.info(
            "Executing command",
            command=command.name,
            strategy=plan.strategy.value,
        )

        try:
            outcome = command.execution(dict(plan.parameters))
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as e:
            logger.error("Command execution failed", command=command.name, error=str(e))
            return ExecutionResult(success=False, error=f"Command execution failed: {e}")

        return self._to_result(command.name, outcome)

    @staticmethod
    def _to_result(command_name: str, outcome: Any) -> ExecutionResult:
        if outcome is None:
            return ExecutionResult(success=True, action=command_name)

        if not isinstance(outcome, dict):
            return ExecutionResult(success=True, action=command_name, data={"result": outcome})

        data = outcome.get("data")
        if data is None:
            data = {k: v for k, v in outcome.items() if k not in ("action", "success", "error")}
        elif not isinstance(data, dict):
            data = {"result": data}

        if outcome.get("success") is False:
            return ExecutionResult(
                success=False,
                action=outcome.get("action", command_name),
                data=data,
                error=str(outcome.get("error") or "Command reported failure"),
            )

        return ExecutionResult(
            success=True,
            action=outcome.get("action", command_name),
            data=dict(data),
        )
