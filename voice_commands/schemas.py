"""Pydantic schemas for pipeline input and output"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class AppContext(BaseModel):
    """Application context supplied by the host per call"""
    model_config = ConfigDict(extra="allow")

    current_page: Optional[str] = Field(None, description="Page the user is on, e.g. /menu")
    cart_item_count: int = Field(default=0, ge=0, description="Items currently in the cart")
    user_id: Optional[str] = Field(None, description="User identifier")
    authenticated_user_id: Optional[str] = Field(None, description="Authenticated user identifier")
    authenticated: Optional[bool] = Field(
        None, description="Trust flag for user_id; None means trusted when present"
    )
    session_id: Optional[str] = Field(None, description="Conversation session identifier")
    locale: Optional[str] = Field(None, description="Language tag, e.g. de-CH")

    @property
    def effective_user_id(self) -> Optional[str]:
        return self.user_id or self.authenticated_user_id

    @property
    def is_authenticated(self) -> bool:
        if self.authenticated_user_id:
            return True
        return bool(self.user_id) and self.authenticated is not False

    @property
    def session_key(self) -> str:
        return self.session_id or self.effective_user_id or "anonymous"


class NextAction(BaseModel):
    """Follow-up action offered to the user"""
    action: str = Field(..., description="Action identifier")
    label: str = Field(..., description="User-facing label")


class CommandResult(BaseModel):
    """Result of processing one utterance"""
    success: bool = Field(..., description="Command executed successfully")
    action: Optional[str] = Field(None, description="Action reported by the command")
    data: Dict[str, Any] = Field(default_factory=dict, description="Action payload")
    message: str = Field(default="", description="User-facing response text")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0, description="Overall confidence")
    intent: Optional[str] = Field(None, description="Classified intent")
    entities: List[Dict[str, Any]] = Field(default_factory=list, description="Extracted entities")
    warnings: List[str] = Field(default_factory=list, description="Soft warnings")
    errors: List[Dict[str, str]] = Field(default_factory=list, description="Structured stage errors")
    error_code: Optional[str] = Field(None, description="Failure code (timeout, no_command, ...)")
    suggestions: List[str] = Field(default_factory=list, description="Suggestions for the user")
    next_actions: List[NextAction] = Field(default_factory=list, description="Follow-up actions")
    processing_time_ms: float = Field(default=0.0, ge=0.0, description="Processing time")
    cached: bool = Field(default=False, description="Served from the result cache")
