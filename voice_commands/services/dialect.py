"""Swiss German dialect normalization"""

import re
from typing import Dict, Mapping, Optional

from voice_commands.core.logging import get_logger

logger = get_logger(__name__)


# Word-level mappings to standard German. Coverage is limited to words that
# matter for ordering commands.
SWISS_GERMAN_WORDS: Dict[str, str] = {
    # Numbers
    "eis": "eins",
    "zwöi": "zwei",
    "zwoi": "zwei",
    "drü": "drei",
    "drüü": "drei",
    "föif": "fünf",
    "füüf": "fünf",
    "sächs": "sechs",
    "sibe": "sieben",
    "nüün": "neun",
    "zäh": "zehn",
    "zwänzg": "zwanzig",
    # Verbs
    "isch": "ist",
    "hät": "hat",
    "het": "hat",
    "git": "gibt",
    "chunt": "kommt",
    "gaht": "geht",
    "geit": "geht",
    "wött": "möchte",
    "wett": "möchte",
    "möcht": "möchte",
    "hetti": "hätte",
    "hätti": "hätte",
    "zahle": "zahlen",
    "bstelle": "bestellen",
    # Pronouns and particles
    "öppis": "etwas",
    "öpper": "jemand",
    "nüt": "nichts",
    "gärn": "gern",
    "vo": "von",
    "uf": "auf",
    "ohni": "ohne",
    # Greetings
    "grüezi": "guten tag",
    "grüessech": "guten tag",
    "hoi": "hallo",
    "sali": "hallo",
    # Food
    "röschti": "rösti",
    "müesli": "müsli",
    "spätzli": "spätzle",
    "chli": "klein",
    "chlini": "kleine",
}


class SwissGermanNormalizer:
    """
    Maps common Swiss German words to standard German.

    The normalizer works on already lowercased, punctuation-free text and
    replaces whole words only.
    """

    def __init__(self, extra_words: Optional[Mapping[str, str]] = None):
        self.words: Dict[str, str] = dict(SWISS_GERMAN_WORDS)
        if extra_words:
            self.words.update({k.lower(): v.lower() for k, v in extra_words.items()})

        # Longest words first so multi-letter variants win over prefixes
        alternatives = sorted(self.words, key=len, reverse=True)
        self._pattern = re.compile(
            r"\b(" + "|".join(re.escape(word) for word in alternatives) + r")\b"
        )
        self.replacements_made = 0

    def __call__(self, text: str) -> str:
        return self.normalize(text)

    def normalize(self, text: str) -> str:
        """Replace dialect words in text"""
        if not text:
            return text

        def substitute(match: "re.Match") -> str:
            self.replacements_made += 1
            return self.words[match.group(1)]

        normalized = self._pattern.sub(substitute, text)

        if normalized != text:
            logger.debug("Dialect words normalized", original=text, normalized=normalized)

        return normalized
