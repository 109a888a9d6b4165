"""Voice command interpretation pipeline"""

from voice_commands.schemas import AppContext, CommandResult
from voice_commands.services.pipeline.orchestrator import PipelineEngine

__version__ = "1.0.0"

__all__ = ["AppContext", "CommandResult", "PipelineEngine"]
