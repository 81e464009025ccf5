import re
from typing import List, Optional

NON_ALPHANUMERIC_PATTERN = re.compile(r"[^a-z0-9\s]")
WHITESPACE_PATTERN = re.compile(r"\s+")

SIMILARITY_THRESHOLD = 0.6


def normalize_title(value: str):
    lowered = (value or "").lower()
    stripped = NON_ALPHANUMERIC_PATTERN.sub("", lowered)
    return WHITESPACE_PATTERN.sub(" ", stripped).strip()


def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(
                min(
                    previous[j] + 1,  # deletion
                    current[j - 1] + 1,  # insertion
                    previous[j - 1] + cost,  # substitution
                )
            )
        previous = current
    return previous[-1]


def calculate_similarity(a: str, b: str) -> float:
    """1 - edit_distance / longest length, computed on normalized strings."""
    a = normalize_title(a)
    b = normalize_title(b)

    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


def candidate_titles(candidate: dict) -> List[str]:
    titles = [
        candidate.get("title"),
        candidate.get("title_english"),
        candidate.get("title_japanese"),
    ]
    titles.extend(candidate.get("title_synonyms") or [])
    for entry in candidate.get("titles") or []:
        if isinstance(entry, dict):
            titles.append(entry.get("title"))
    return [title for title in titles if isinstance(title, str) and title.strip()]


def find_best_match(query: str, candidates: List[dict]) -> Optional[dict]:
    if not candidates:
        return None

    lowered_query = query.strip().lower()
    for candidate in candidates:
        for title in candidate_titles(candidate):
            if title.strip().lower() == lowered_query:
                return candidate

    best_candidate = None
    best_score = -1.0
    for candidate in candidates:
        for title in candidate_titles(candidate):
            score = calculate_similarity(query, title)
            if score > best_score:
                best_candidate = candidate
                best_score = score

    if best_candidate is None or best_score < SIMILARITY_THRESHOLD:
        # Below threshold the search engine's own ranking is trusted
        return candidates[0]
    return best_candidate
