"""Context analyzer - weighs the utterance against application context"""

from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from voice_commands.core.logging import get_logger
from voice_commands.services.pipeline.base import (
    ContextAnalysis,
    ContextFactor,
    ConversationTurn,
    clamp_confidence,
)

logger = get_logger(__name__)


# (page, intent) -> additive confidence boost
DEFAULT_AFFINITIES: Dict[Tuple[str, str], float] = {
    ("/menu", "add_item"): 0.2,
    ("/cart", "checkout"): 0.3,
    ("/cart", "remove_item"): 0.1,
    ("/tables", "table_status"): 0.2,
}

ORDERING_INTENTS = ("add_item", "modify_item", "remove_item", "checkout")


def _page_matches(current_page: str, page: str) -> bool:
    return current_page == page or current_page.startswith(page.rstrip("/") + "/")


class ContextAnalyzer:
    """
    Computes a confidence boost from the host application's context.

    Responsibilities:
    - Look up the (page, intent) affinity table
    - Describe the context factors that were considered
    - Produce recommendations for the host

    The boost is always additive; the orchestrator clamps the result.
    """

    def __init__(self, affinities: Optional[Mapping[Tuple[str, str], float]] = None):
        self.affinities: Dict[Tuple[str, str], float] = dict(
            DEFAULT_AFFINITIES if affinities is None else affinities
        )

    def boost_for(self, current_page: Optional[str], intent: Optional[str]) -> float:
        """Affinity boost for a page and intent, 0 when unknown"""
        if not current_page or not intent:
            return 0.0

        for (page, affinity_intent), boost in self.affinities.items():
            if affinity_intent == intent and _page_matches(current_page, page):
                return boost
        return 0.0

    def analyze(
        self,
        text: str,
        intent: Optional[str],
        app_context: Mapping[str, Any],
        history: Sequence[ConversationTurn] = (),
    ) -> ContextAnalysis:
        """
        Analyze context relevance

        Args:
            text: Normalized text
            intent: Intent chosen by the classifier
            app_context: Host application context
            history: Recent turns of the session

        Returns:
            Context analysis with the additive boost
        """
        current_page = app_context.get("current_page")
        cart_item_count = app_context.get("cart_item_count") or 0

        boost = self.boost_for(current_page, intent)

        relevance = 0.5
        if boost > 0:
            relevance += 0.3
        if cart_item_count > 0 and intent == "checkout":
            relevance += 0.2

        factors = []
        if current_page:
            factors.append({
                "type": ContextFactor.CURRENT_PAGE.value,
                "value": current_page,
                "weight": 0.3,
            })
        if "cart_item_count" in app_context:
            factors.append({
                "type": ContextFactor.CART_STATE.value,
                "value": cart_item_count,
                "weight": 0.2,
            })
        if history:
            factors.append({
                "type": ContextFactor.USER_HISTORY.value,
                "value": len(history),
                "weight": 0.1,
            })

        recommendations = []
        if current_page and _page_matches(current_page, "/menu") and intent not in ORDERING_INTENTS:
            recommendations.append("Consider using ordering-related commands")
        if intent == "checkout" and cart_item_count == 0 and "cart_item_count" in app_context:
            recommendations.append("Cart is empty; suggest adding items before checkout")

        analysis = ContextAnalysis(
            relevance_score=clamp_confidence(relevance),
            boost=boost,
            factors=factors,
            recommendations=recommendations,
        )

        logger.debug(
            "Context analyzed",
            intent=intent,
            current_page=current_page,
            boost=boost,
            relevance=analysis.relevance_score,
        )

        return analysis
