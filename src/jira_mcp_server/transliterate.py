"""
Latin <-> Cyrillic Transliteration

Generates additional spellings of project keys and names so that a query
typed in the "wrong" alphabet still matches. Transliterated forms are only
ever used as search candidates; canonical keys and names are never altered.
"""

import re
from typing import Dict, Iterable, List, Optional, Tuple

CYR_TO_LAT: Dict[str, str] = {
    "а": "a", "б": "b", "в": "v", "г": "g", "д": "d", "е": "e", "ё": "yo",
    "ж": "zh", "з": "z", "и": "i", "й": "y", "к": "k", "л": "l", "м": "m",
    "н": "n", "о": "o", "п": "p", "р": "r", "с": "s", "т": "t", "у": "u",
    "ф": "f", "х": "kh", "ц": "ts", "ч": "ch", "ш": "sh", "щ": "shch",
    "ъ": "", "ы": "y", "ь": "", "э": "e", "ю": "yu", "я": "ya",
}

LAT_TO_CYR: Dict[str, str] = {
    "shch": "щ",
    "kh": "х", "ts": "ц", "ch": "ч", "sh": "ш",
    "yo": "ё", "zh": "ж", "yu": "ю", "ya": "я",
    "a": "а", "b": "б", "v": "в", "g": "г", "d": "д", "e": "е", "z": "з",
    "i": "и", "y": "й", "k": "к", "l": "л", "m": "м", "n": "н", "o": "о",
    "p": "п", "r": "р", "s": "с", "t": "т", "u": "у", "f": "ф",
}

# Alternation order decides the match: longest sequences first, any single
# character last.
_LAT_TOKEN_RE = re.compile(
    "|".join(re.escape(seq) for seq in sorted(LAT_TO_CYR, key=len, reverse=True) if len(seq) > 1)
    + "|.",
    re.DOTALL,
)

# Ambiguous Latin spellings and the Cyrillic sequences they may stand for
EN_TO_RU_CLUSTERS: Tuple[str, ...] = ("shch", "sch", "yo", "yu", "ya", "kh", "ts", "ch", "sh")

EN_TO_RU_VARIANTS: Dict[str, List[str]] = {
    "shch": ["щ"],
    "sch": ["щ", "шч"],
    "kh": ["х"],
    "ts": ["ц"],
    "ch": ["ч"],
    "sh": ["ш"],
    "yo": ["ё", "йо", "ио"],
    "yu": ["ю", "йу", "иу"],
    "ya": ["я", "йа", "иа"],
    "a": ["а"],
    "b": ["б"],
    "v": ["в"],
    "g": ["г"],
    "d": ["д"],
    "e": ["е", "э"],
    "z": ["з"],
    "i": ["и", "ай", "й"],
    "y": ["й", "ы", "и"],
    "k": ["к"],
    "l": ["л"],
    "m": ["м"],
    "n": ["н"],
    "o": ["о"],
    "p": ["п"],
    "r": ["р"],
    "s": ["с"],
    "t": ["т"],
    "u": ["у", "ю"],
    "f": ["ф"],
    "h": ["х"],
    "c": ["к", "с"],
    "j": ["дж", "ж", "й"],
    "q": ["к"],
    "w": ["в", "у"],
    "x": ["кс", "з"],
}

KEY_RU_VARIANTS_LIMIT = 20
NAME_RU_VARIANTS_LIMIT = 5


def transliterate(text: str) -> str:
    """Transliterate Cyrillic text to Latin (result is lowercase)."""
    return "".join(CYR_TO_LAT.get(ch, ch) for ch in text.lower())


def transliterate_ru(text: str) -> str:
    """
    Transliterate Latin text to Cyrillic (result is lowercase).

    Multi-character sequences ("shch", "kh", "ts", ...) are matched before
    single letters, longest first, so "shch" becomes "щ" rather than "шч".
    """
    return _LAT_TOKEN_RE.sub(lambda m: LAT_TO_CYR.get(m.group(0), m.group(0)), text.lower())


def en_to_ru_variants(text: str, max_results: int = KEY_RU_VARIANTS_LIMIT) -> List[str]:
    """
    Enumerate plausible Cyrillic spellings of a Latin string.

    Example:
        en_to_ru_variants("aitech") -> ["аитеч", "аитэч", "айтеч", ...]

    Args:
        text: Latin text
        max_results: Stop expanding once this many spellings were produced

    Returns:
        Unique spellings sorted by length, then alphabetically
    """
    source = text.lower()
    if not source:
        return []
    clusters = sorted(EN_TO_RU_CLUSTERS, key=len, reverse=True)
    results: List[str] = []

    def expand(idx: int, acc: str) -> None:
        if len(results) >= max_results:
            return
        if idx >= len(source):
            results.append(acc)
            return

        for cluster in clusters:
            if source.startswith(cluster, idx):
                for variant in EN_TO_RU_VARIANTS[cluster]:
                    expand(idx + len(cluster), acc + variant)
                    if len(results) >= max_results:
                        return
                # a matched cluster is never split into single letters
                return

        ch = source[idx]
        for variant in EN_TO_RU_VARIANTS.get(ch, [ch]):
            expand(idx + 1, acc + variant)
            if len(results) >= max_results:
                return

    expand(0, "")
    return sorted(set(results), key=lambda s: (len(s), s))


def _unique(values: Iterable[Optional[str]]) -> Tuple[str, ...]:
    seen = {}
    for value in values:
        if value and value not in seen:
            seen[value] = None
    return tuple(seen)


def project_search_texts(key: str, name: str) -> Tuple[str, ...]:
    """
    Search texts embedded for one project.

    Original key and name, their lowercase forms, the Cyrillic spelling of
    the key (lower and upper case) and of the name, and the upper-cased Latin
    transliteration of the name.
    """
    key_lc = key.lower()
    name_lc = name.lower()
    key_ru = transliterate_ru(key_lc)
    return _unique([
        key,
        name,
        key_lc,
        name_lc,
        key_ru,
        key_ru.upper(),
        transliterate_ru(name_lc),
        transliterate(name).upper(),
    ])


def project_variants(key: str, name: str, description: Optional[str] = None) -> Tuple[str, ...]:
    """
    Lexical match candidates for one project.

    Everything from :func:`project_search_texts` plus the Latin
    transliteration of key and name, ambiguous Cyrillic spellings and the
    free-text description.
    """
    key_lc = key.lower()
    name_lc = name.lower()
    return _unique([
        *project_search_texts(key, name),
        transliterate(key),
        transliterate(name),
        *en_to_ru_variants(key_lc, KEY_RU_VARIANTS_LIMIT),
        *en_to_ru_variants(name_lc, NAME_RU_VARIANTS_LIMIT),
        description,
    ])
