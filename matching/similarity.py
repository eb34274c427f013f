from rapidfuzz.distance import Levenshtein


def calculate_string_similarity(a: str, b: str) -> float:
    """
    Edit-distance similarity in [0, 1].

    ``1 - levenshtein(a, b) / max(len(a), len(b))``; two empty strings are
    identical (1.0), an empty string against a non-empty one scores 0.0.
    Case-sensitive: normalize before comparing.
    """
    a = a or ""
    b = b or ""
    if not a and not b:
        return 1.0
    distance = Levenshtein.distance(a, b)
    return 1.0 - distance / max(len(a), len(b))
