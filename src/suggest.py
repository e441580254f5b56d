from typing import Iterable, Optional

from rapidfuzz.distance import Levenshtein

DEFAULT_MAX_DISTANCE = 2


def normalize_name(s: str) -> str:
    return "".join(ch for ch in str(s).lower() if ch.isalnum())


def levenshtein(a: str, b: str) -> int:
    return Levenshtein.distance(a, b)


def is_fuzzy_match(a: str, b: str, max_distance: int = DEFAULT_MAX_DISTANCE) -> bool:
    if a is None or b is None:
        raise TypeError("is_fuzzy_match expects two strings")
    return levenshtein(normalize_name(a), normalize_name(b)) <= max_distance


def find_closest(target: str,
                 options: Iterable[str],
                 max_distance: int = DEFAULT_MAX_DISTANCE) -> Optional[str]:
    """
    Closest option to target by edit distance over normalized names
    (case, spaces and punctuation ignored). Ties keep the first option seen.
    Returns None when nothing is within max_distance.
    """
    if target is None:
        raise TypeError("find_closest expects a target string")
    norm_target = normalize_name(target)
    best = None
    best_dist = None
    for option in options:
        dist = levenshtein(norm_target, normalize_name(option))
        if best_dist is None or dist < best_dist:
            best, best_dist = option, dist
    if best_dist is None or best_dist > max_distance:
        return None
    return best
