"""Preprocessor - normalizes raw transcripts"""

import inspect
import re
from typing import Awaitable, Callable, List, Optional, Tuple, Union

from voice_commands.core.logging import get_logger

logger = get_logger(__name__)

DialectNormalizer = Callable[[str], Union[str, Awaitable[str]]]

# Sentence punctuation; decimal and time separators between digits are kept
_PUNCTUATION = re.compile(r"(?<!\d)[.,:]|[.,:](?!\d)|[!?;¿¡\"“”„]")
_WHITESPACE = re.compile(r"\s+")

# Regional language tags handled by the dialect normalizer
DIALECT_LANGUAGES = ("de-ch", "gsw", "gsw-ch")


def is_dialect_language(language: Optional[str]) -> bool:
    """True when the language tag denotes a regional dialect"""
    if not language:
        return False
    return language.lower().replace("_", "-") in DIALECT_LANGUAGES


class Preprocessor:
    """
    Normalizes transcripts before classification.

    Responsibilities:
    - Lowercase and strip sentence punctuation
    - Collapse whitespace
    - Apply the injected dialect normalizer for regional language tags
    """

    def __init__(self, dialect_normalizer: Optional[DialectNormalizer] = None):
        self.dialect_normalizer = dialect_normalizer

    @staticmethod
    def basic_normalize(raw_text: str) -> str:
        """Lowercase, strip punctuation and collapse whitespace"""
        if not raw_text:
            return ""
        text = raw_text.lower()
        text = _PUNCTUATION.sub(" ", text)
        return _WHITESPACE.sub(" ", text).strip()

    async def normalize(self, raw_text: str, language: Optional[str] = None) -> Tuple[str, List[str]]:
        """
        Normalize raw text

        Args:
            raw_text: Transcript from speech recognition
            language: Language tag of the transcript

        Returns:
            Normalized text and soft warnings raised while normalizing
        """
        warnings: List[str] = []
        text = self.basic_normalize(raw_text)

        if not text or self.dialect_normalizer is None or not is_dialect_language(language):
            return text, warnings

        try:
            result = self.dialect_normalizer(text)
            if inspect.isawaitable(result):
                result = await result
            if isinstance(result, str):
                text = self.basic_normalize(result)
            else:
                warnings.append("Dialect normalizer returned no text; using basic normalization")
        except Exception as e:
            logger.warning("Dialect normalization failed", language=language, error=str(e))
            warnings.append(f"Dialect normalization failed: {e}")

        return text, warnings
