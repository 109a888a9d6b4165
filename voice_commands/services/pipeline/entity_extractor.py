"""Entity extractor - pulls typed values out of normalized text"""

import math
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from voice_commands.core.logging import get_logger
from voice_commands.services.pipeline.base import BaseEntityExtractor, Entity, EntityType

logger = get_logger(__name__)


# Spoken form -> canonical product name
DEFAULT_PRODUCTS: Dict[str, str] = {
    "pizza": "pizza",
    "pizzas": "pizza",
    "pizzen": "pizza",
    "pasta": "pasta",
    "spaghetti": "pasta",
    "salat": "salat",
    "salate": "salat",
    "salad": "salat",
    "suppe": "suppe",
    "soup": "suppe",
    "brot": "brot",
    "bread": "brot",
    "burger": "burger",
    "burgers": "burger",
    "pommes": "pommes",
    "fries": "pommes",
    "rösti": "rösti",
    "kaffee": "kaffee",
    "coffee": "kaffee",
    "tee": "tee",
    "tea": "tee",
    "bier": "bier",
    "beer": "bier",
    "wein": "wein",
    "wine": "wein",
    "wasser": "wasser",
    "water": "wasser",
    "cola": "cola",
    "tiramisu": "tiramisu",
}

NUMBER_WORDS: Dict[str, int] = {
    "ein": 1, "eine": 1, "einen": 1, "eins": 1,
    "zwei": 2, "drei": 3, "vier": 4, "fünf": 5, "sechs": 6,
    "sieben": 7, "acht": 8, "neun": 9, "zehn": 10, "elf": 11, "zwölf": 12,
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
}

SIZES: Dict[str, str] = {
    "gross": "gross", "grosse": "gross", "grossen": "gross", "groß": "gross", "große": "gross",
    "large": "gross",
    "mittel": "mittel", "mittlere": "mittel", "medium": "mittel",
    "klein": "klein", "kleine": "klein", "kleinen": "klein", "small": "klein",
}

TABLE_STATUSES: Dict[str, str] = {
    "frei": "free", "free": "free",
    "besetzt": "occupied", "occupied": "occupied",
    "reserviert": "reserved", "reserved": "reserved",
}

PAYMENT_METHODS: Dict[str, str] = {
    "twint": "twint",
    "postcard": "postcard",
    "karte": "card", "kreditkarte": "card", "card": "card",
    "bar": "cash", "cash": "cash",
}

CURRENCIES: Dict[str, str] = {
    "chf": "CHF", "franken": "CHF", "franke": "CHF", "fr": "CHF",
    "€": "EUR", "euro": "EUR", "eur": "EUR",
}


def _alternation(words) -> str:
    return "|".join(re.escape(word) for word in sorted(words, key=len, reverse=True))


_NUMBER = r"\d+|" + _alternation(NUMBER_WORDS)
_PRICE = re.compile(
    r"(?<![\w.,])(\d+(?:[.,]\d{1,2})?)\s*(" + _alternation(CURRENCIES) + r")(?=\s|$)"
)
_TABLE = re.compile(r"\b(?:tisch|table)\s*(?:nr\s*|nummer\s*|number\s*)?(" + _NUMBER + r")\b")
_TIME = re.compile(r"\b(\d{1,2})(?:[:.](\d{2}))?\s*uhr\b|\b(\d{1,2})[:.](\d{2})\b")
_QUANTITY = re.compile(r"\b(" + _NUMBER + r")(?:\s*(?:stück|mal|x)\b|\b)")
_CLOCK = re.compile(r"\d{2}:\d{2}")


def _to_number(token: str) -> Optional[int]:
    if token.isdigit():
        return int(token)
    return NUMBER_WORDS.get(token)


def _lexicon_pattern(lexicon: Mapping[str, str]) -> "re.Pattern":
    return re.compile(r"(?<!\w)(" + _alternation(lexicon) + r")(?!\w)")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _valid_quantity(value: Any) -> bool:
    return _is_int(value) and value > 0


def _valid_price(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value >= 0
    )


def _valid_table(value: Any) -> bool:
    return _is_int(value) and 1 <= value <= 100


def _valid_time(value: Any) -> bool:
    if not isinstance(value, str) or not _CLOCK.fullmatch(value):
        return False
    hour, minute = (int(part) for part in value.split(":"))
    return hour <= 23 and minute <= 59


ENTITY_VALIDATORS: Dict[str, Callable[[Any], bool]] = {
    EntityType.QUANTITY.value: _valid_quantity,
    EntityType.PRICE.value: _valid_price,
    EntityType.TABLE.value: _valid_table,
    EntityType.TIME.value: _valid_time,
}


def validate_entities(entities: List[Entity]) -> List[Entity]:
    """Drop entities failing their type-specific predicate"""
    valid = []
    for entity in entities:
        if not entity.type or entity.value is None or entity.value == "":
            continue
        predicate = ENTITY_VALIDATORS.get(entity.type)
        if predicate is not None and not predicate(entity.value):
            logger.debug("Entity rejected", type=entity.type, value=entity.value)
            continue
        valid.append(entity)
    return valid


class EntityExtractor:
    """
    Extracts typed entities from normalized text.

    Rules run in a fixed order: prices and tables first, so that their
    digits are not read again as quantities, then times, quantities and
    lexicon lookups. A delegate extractor may replace the rules; its output
    goes through the same validation.
    """

    def __init__(
        self,
        delegate: Optional[BaseEntityExtractor] = None,
        products: Optional[Mapping[str, str]] = None,
    ):
        self.delegate = delegate
        self.products: Dict[str, str] = dict(DEFAULT_PRODUCTS)
        if products:
            self.products.update({k.lower(): v for k, v in products.items()})

        self._lexicons: List[Tuple[str, "re.Pattern", Mapping[str, str], float]] = [
            (EntityType.PRODUCT.value, _lexicon_pattern(self.products), self.products, 0.8),
            (EntityType.SIZE.value, _lexicon_pattern(SIZES), SIZES, 0.85),
            (EntityType.STATUS.value, _lexicon_pattern(TABLE_STATUSES), TABLE_STATUSES, 0.85),
            (EntityType.PAYMENT_METHOD.value, _lexicon_pattern(PAYMENT_METHODS), PAYMENT_METHODS, 0.8),
        ]

    async def extract(self, text: str) -> List[Entity]:
        """
        Extract and validate entities

        Args:
            text: Normalized text

        Returns:
            Valid entities ordered by position
        """
        entities: Optional[List[Entity]] = None

        if self.delegate is not None:
            try:
                entities = list(await self.delegate.extract(text))
                logger.info("Delegate entity extraction", count=len(entities))
            except Exception as e:
                logger.debug("Delegate extractor failed, using rules", error=str(e))
                entities = None

        if entities is None:
            entities = self.extract_by_rules(text)

        return validate_entities(entities)

    def extract_by_rules(self, text: str) -> List[Entity]:
        """Rule-based extraction without validation"""
        entities: List[Entity] = []
        taken: List[Tuple[int, int]] = []

        def free(start: int, end: int) -> bool:
            return all(end <= s or start >= e for s, e in taken)

        for match in _PRICE.finditer(text):
            amount = float(match.group(1).replace(",", "."))
            entities.append(Entity(
                type=EntityType.PRICE,
                value=amount,
                start=match.start(),
                end=match.end(),
                confidence=0.9,
                metadata={"currency": CURRENCIES[match.group(2)]},
            ))
            taken.append(match.span())

        for match in _TABLE.finditer(text):
            entities.append(Entity(
                type=EntityType.TABLE,
                value=_to_number(match.group(1)),
                start=match.start(),
                end=match.end(),
                confidence=0.9,
            ))
            taken.append(match.span())

        for match in _TIME.finditer(text):
            if not free(*match.span()):
                continue
            hour = match.group(1) or match.group(3)
            minute = match.group(2) or match.group(4) or "00"
            entities.append(Entity(
                type=EntityType.TIME,
                value=f"{int(hour):02d}:{minute}",
                start=match.start(),
                end=match.end(),
                confidence=0.85,
            ))
            taken.append(match.span())

        for match in _QUANTITY.finditer(text):
            if not free(*match.span()):
                continue
            entities.append(Entity(
                type=EntityType.QUANTITY,
                value=_to_number(match.group(1)),
                start=match.start(),
                end=match.end(),
                confidence=0.9,
            ))
            taken.append(match.span())

        for entity_type, pattern, lexicon, confidence in self._lexicons:
            for match in pattern.finditer(text):
                if not free(*match.span()):
                    continue
                entities.append(Entity(
                    type=entity_type,
                    value=lexicon[match.group(1)],
                    start=match.start(),
                    end=match.end(),
                    confidence=confidence,
                ))

        entities.sort(key=lambda entity: entity.start)
        return entities
