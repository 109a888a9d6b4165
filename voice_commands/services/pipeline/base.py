"""Shared types for the command interpretation pipeline"""

import math
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Pattern, Tuple, Union


UNKNOWN_INTENT = "unknown"


class ProcessingStage(str, Enum):
    """Pipeline stages in execution order"""
    PREPROCESSING = "preprocessing"
    INTENT_RECOGNITION = "intent_recognition"
    ENTITY_EXTRACTION = "entity_extraction"
    CONTEXT_ANALYSIS = "context_analysis"
    COMMAND_VALIDATION = "command_validation"
    EXECUTION_PLANNING = "execution_planning"
    RESULT_FORMATTING = "result_formatting"
    INTERNAL = "internal"


class ConfidenceLevel:
    """Named confidence levels"""
    VERY_HIGH = 0.9
    HIGH = 0.8
    MEDIUM = 0.7
    LOW = 0.5
    VERY_LOW = 0.3


class IntentCategory(str, Enum):
    """Command categories"""
    NAVIGATION = "navigation"
    TRANSACTION = "transaction"
    INFORMATION = "information"
    CONTROL = "control"
    CREATION = "creation"
    MODIFICATION = "modification"
    DELETION = "deletion"
    SEARCH = "search"
    SYSTEM = "system"


class EntityType(str, Enum):
    """Entity types known to the rule-based extractor"""
    PRODUCT = "product"
    QUANTITY = "quantity"
    PRICE = "price"
    TIME = "time"
    DATE = "date"
    PERSON = "person"
    LOCATION = "location"
    TABLE = "table"
    ORDER = "order"
    PAYMENT_METHOD = "payment_method"
    CURRENCY = "currency"
    SIZE = "size"
    STATUS = "status"


class ExecutionStrategy(str, Enum):
    """How a planned command should be executed"""
    IMMEDIATE = "immediate"
    QUEUED = "queued"
    CONFIRMED = "confirmed"
    SCHEDULED = "scheduled"
    CONDITIONAL = "conditional"


class ContextFactor(str, Enum):
    """Signals considered by the context analyzer"""
    USER_HISTORY = "user_history"
    CURRENT_PAGE = "current_page"
    CART_STATE = "cart_state"
    ORDER_STATE = "order_state"
    TIME_OF_DAY = "time_of_day"


def clamp_confidence(value: Any) -> float:
    """Clamp any numeric value into [0, 1]; non-numbers become 0"""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return min(max(number, 0.0), 1.0)


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


CommandCallback = Callable[[Dict[str, Any]], Union[Awaitable[Dict[str, Any]], Dict[str, Any]]]


@dataclass(frozen=True)
class Entity:
    """Typed value extracted from an utterance"""
    type: str
    value: Any
    start: int = 0
    end: int = 0
    confidence: float = 1.0
    resolved_from_context: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "type", _enum_value(self.type))
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))

    def from_context(self) -> "Entity":
        """Copy of this entity marked as resolved from conversation history"""
        return replace(self, resolved_from_context=True, metadata=dict(self.metadata))

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.type,
            "value": self.value,
            "start": self.start,
            "end": self.end,
            "confidence": self.confidence,
            "resolved_from_context": self.resolved_from_context,
        }
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data


@dataclass(frozen=True)
class CommandDefinition:
    """
    Registered rule mapping language patterns to an executable action.

    Patterns are regular expressions searched case-insensitively in the
    normalized utterance. The execution callback receives the planned
    parameters and returns ``{"action": ..., "data": ...}``.
    """
    name: str
    patterns: Tuple[str, ...]
    intent: str
    category: str = IntentCategory.CONTROL.value
    confidence: float = ConfidenceLevel.HIGH
    required_entities: Tuple[str, ...] = ()
    optional_entities: Tuple[str, ...] = ()
    execution: Optional[CommandCallback] = field(default=None, compare=False)
    response_template: Optional[str] = None
    suggestions: Tuple[str, ...] = ()
    next_actions: Tuple[Dict[str, str], ...] = field(default=(), compare=False)
    dependencies: Tuple[str, ...] = ()
    group: Optional[str] = None
    is_custom: bool = False
    user_id: Optional[str] = None
    _compiled: Tuple[Pattern, ...] = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self):
        if not self.name:
            raise ValueError("Command name must not be empty")
        if not self.intent:
            raise ValueError(f"Command {self.name!r} has no intent")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Command {self.name!r} confidence must be within [0, 1]")

        object.__setattr__(self, "category", _enum_value(self.category))
        object.__setattr__(self, "patterns", tuple(self.patterns))
        object.__setattr__(
            self, "required_entities", tuple(_enum_value(e) for e in self.required_entities)
        )
        object.__setattr__(
            self, "optional_entities", tuple(_enum_value(e) for e in self.optional_entities)
        )
        object.__setattr__(self, "suggestions", tuple(self.suggestions))
        object.__setattr__(self, "next_actions", tuple(dict(a) for a in self.next_actions))
        object.__setattr__(self, "dependencies", tuple(self.dependencies))
        object.__setattr__(
            self, "_compiled", tuple(re.compile(p, re.IGNORECASE) for p in self.patterns)
        )

    def count_matches(self, text: str) -> int:
        """Number of patterns found in the text"""
        return sum(1 for pattern in self._compiled if pattern.search(text))

    def score(self, text: str) -> float:
        """Weight scaled by the share of matching patterns"""
        if not self._compiled:
            return 0.0
        return self.confidence * (self.count_matches(text) / len(self._compiled))


@dataclass(frozen=True)
class IntentResult:
    """Classifier output"""
    intent: str
    confidence: float
    alternatives: List[Tuple[str, float]] = field(default_factory=list)
    command_name: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))
        object.__setattr__(
            self,
            "alternatives",
            [(intent, clamp_confidence(confidence)) for intent, confidence in self.alternatives],
        )


@dataclass
class StageError:
    """Structured error recorded by a pipeline stage"""
    stage: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"stage": self.stage, "message": self.message}


@dataclass(frozen=True)
class ConversationTurn:
    """Snapshot of one processed utterance"""
    timestamp: float
    input: str
    intent: Optional[str]
    entities: Tuple[Entity, ...]
    confidence: float
    success: bool
    action: Optional[str] = None
    message: str = ""

    def find_entity(self, entity_type: str) -> Optional[Entity]:
        for entity in self.entities:
            if entity.type == entity_type:
                return entity
        return None


@dataclass
class ContextAnalysis:
    """Context analyzer output"""
    relevance_score: float
    boost: float
    factors: List[Dict[str, Any]] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


@dataclass
class Precondition:
    """Condition checked before a plan may run"""
    name: str
    satisfied: bool
    blocking: bool = True
    message: str = ""


@dataclass
class ExecutionPlan:
    """Prepared strategy, parameters and preconditions for a command"""
    command: CommandDefinition
    strategy: ExecutionStrategy
    parameters: Dict[str, Any]
    preconditions: List[Precondition] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)

    @property
    def blockers(self) -> List[Precondition]:
        return [p for p in self.preconditions if p.blocking and not p.satisfied]

    @property
    def can_execute(self) -> bool:
        return not self.blockers


@dataclass
class ExecutionResult:
    """Outcome of invoking a command callback"""
    success: bool
    action: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class ProcessingContext:
    """
    Mutable record threaded through every stage of one invocation.

    Confidence is only changed through ``raise_confidence`` (classifier,
    monotonic) and ``boost_confidence`` (context, additive). Both clamp
    to [0, 1].
    """
    raw_input: str
    language: str
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    authenticated: bool = False
    app_context: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    normalized_input: str = ""
    stage: Optional[ProcessingStage] = None
    confidence: float = 0.0
    intent: Optional[str] = None
    alternatives: List[Tuple[str, float]] = field(default_factory=list)
    entities: List[Entity] = field(default_factory=list)
    command: Optional[CommandDefinition] = None
    context_analysis: Optional[ContextAnalysis] = None
    execution_plan: Optional[ExecutionPlan] = None
    execution_result: Optional[ExecutionResult] = None
    errors: List[StageError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def raise_confidence(self, value: float) -> float:
        self.confidence = max(self.confidence, clamp_confidence(value))
        return self.confidence

    def boost_confidence(self, delta: float) -> float:
        self.confidence = clamp_confidence(self.confidence + delta)
        return self.confidence

    def add_error(self, stage: ProcessingStage, message: str) -> None:
        self.errors.append(StageError(stage=_enum_value(stage), message=message))

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def entity_types(self) -> List[str]:
        return [entity.type for entity in self.entities]


class BaseIntentClassifier(ABC):
    """Contract for external intent classifiers"""

    @abstractmethod
    async def classify(self, text: str) -> IntentResult:
        """Classify normalized text into an intent"""
        pass


class BaseEntityExtractor(ABC):
    """Contract for external entity extractors"""

    @abstractmethod
    async def extract(self, text: str) -> List[Entity]:
        """Extract typed entities from normalized text"""
        pass


class CustomCommandStore(ABC):
    """Source of per-user command definitions"""

    @abstractmethod
    async def load(self, user_id: str) -> List[CommandDefinition]:
        """Load all custom commands for a user"""
        pass
