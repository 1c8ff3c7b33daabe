"""
Phrase Similarity for Short Identifiers

Similarity metric for project keys and names that tolerates:
- typos (Optimal String Alignment distance, adjacent transpositions)
- merged and split words ("AI TECH" vs "AITECH")
- diacritics and case differences
- word order, with a penalty for permuted or missing tokens

All functions are pure. Pairwise results are memoized for the lifetime of
the process; inputs are short identifiers, not documents.
"""

import re
import unicodedata
from functools import lru_cache
from typing import List, Sequence, Tuple

DEFAULT_THRESHOLD = 0.72

CHAR_WEIGHT = 0.6
TOKEN_WEIGHT = 0.4
COMPACT_FLOOR = 0.9

WORD_RE = re.compile(r"\w+")


def strip_accents(text: str) -> str:
    """Decompose (NFKD) and drop combining marks."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.category(ch).startswith("M"))


def normalize(text: str) -> Tuple[List[str], str]:
    """
    Normalize text for comparison.

    Args:
        text: Raw phrase

    Returns:
        Tuple of (tokens, compact) where compact is all tokens concatenated
    """
    lowered = strip_accents(text).lower()
    tokens = WORD_RE.findall(lowered)
    return tokens, "".join(tokens)


@lru_cache(maxsize=None)
def osa_distance(a: str, b: str) -> int:
    """
    Optimal String Alignment distance.

    Insertion, deletion, substitution and adjacent transposition all cost 1.
    A transposed pair cannot be edited again, so this is not the full
    Damerau-Levenshtein distance.
    """
    n, m = len(a), len(b)
    if n == 0:
        return m
    if m == 0:
        return n

    dp = [[0] * (m + 1) for _ in range(n + 1)]
    for i in range(n + 1):
        dp[i][0] = i
    for j in range(m + 1):
        dp[0][j] = j

    for i in range(1, n + 1):
        ai = a[i - 1]
        for j in range(1, m + 1):
            bj = b[j - 1]
            cost = 0 if ai == bj else 1
            best = min(
                dp[i - 1][j] + 1,  # deletion
                dp[i][j - 1] + 1,  # insertion
                dp[i - 1][j - 1] + cost,  # substitution
            )
            if i > 1 and j > 1 and ai == b[j - 2] and a[i - 2] == bj:
                best = min(best, dp[i - 2][j - 2] + 1)
            dp[i][j] = best

    return dp[n][m]


@lru_cache(maxsize=None)
def char_similarity(a: str, b: str) -> float:
    """Character-level similarity in [0, 1] derived from OSA distance."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    distance = osa_distance(a, b)
    return max(0.0, 1.0 - distance / max(len(a), len(b)))


def token_similarity(tokens_a: Sequence[str], tokens_b: Sequence[str]) -> float:
    """
    Order-aware token alignment (weighted longest common subsequence).

    Tokens matched in the same relative order accumulate their pairwise
    character similarity; the total is normalized by the longer sequence so
    omissions and permutations lower the score.
    """
    n, m = len(tokens_a), len(tokens_b)
    if n == 0 and m == 0:
        return 1.0
    if n == 0 or m == 0:
        return 0.0

    sim = [[char_similarity(ta, tb) for tb in tokens_b] for ta in tokens_a]

    dp = [[0.0] * (m + 1) for _ in range(n + 1)]
    for i in range(1, n + 1):
        for j in range(1, m + 1):
            dp[i][j] = max(
                dp[i - 1][j],
                dp[i][j - 1],
                dp[i - 1][j - 1] + sim[i - 1][j - 1],
            )

    return dp[n][m] / max(n, m)


def phrase_similarity(a: str, b: str) -> float:
    """
    Combined similarity of two short phrases.

    Args:
        a: First phrase
        b: Second phrase

    Returns:
        Score in [0, 1], higher is closer
    """
    tokens_a, compact_a = normalize(a)
    tokens_b, compact_b = normalize(b)

    sim_char = char_similarity(compact_a, compact_b)
    sim_tok = token_similarity(tokens_a, tokens_b)

    combo = CHAR_WEIGHT * sim_char + TOKEN_WEIGHT * sim_tok
    # a strong merged-text match is never pulled down by token fragmentation
    return max(combo, sim_char * COMPACT_FLOOR)


def is_close(a: str, b: str, threshold: float = DEFAULT_THRESHOLD) -> bool:
    """Check whether two phrases are similar enough to be the same thing."""
    return phrase_similarity(a, b) >= threshold
