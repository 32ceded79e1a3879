import re
from collections.abc import Iterable

STOP_WORDS = frozenset({"der", "die", "das", "und", "oder", "bei", "von", "zu", "mit", "für"})

_PUNCTUATION = re.compile(r"[^\w\s]")
_NUMERIC = re.compile(r"^\d+$")

# Share of one recipient's tokens that must be found in the other's.
RECIPIENT_OVERLAP_RATIO = 0.7


def normalize_text(value: str | None) -> str:
    return (value or "").strip().lower()


def full_text(recipient: str | None, description: str | None) -> str:
    return f"{normalize_text(recipient)} {normalize_text(description)}"


def tokenize(text: str | None) -> list[str]:
    cleaned = _PUNCTUATION.sub(" ", (text or "").lower())
    return [
        token
        for token in cleaned.split()
        if len(token) > 2 and token not in STOP_WORDS
    ]


def significant_tokens(text: str | None) -> list[str]:
    return [
        token
        for token in tokenize(text)
        if len(token) > 3 and not _NUMERIC.match(token)
    ]


def jaccard(first: Iterable[str], second: Iterable[str]) -> float:
    set_a = set(first)
    set_b = set(second)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def token_similarity(first: list[str], second: list[str]) -> float:
    if not first and not second:
        return 1.0
    if not first or not second:
        return 0.0
    return jaccard(first, second)


def is_fuzzy_recipient_match(first: str | None, second: str | None) -> bool:
    """Treat two merchant names as one entity when most tokens overlap as substrings."""
    left = normalize_text(first)
    right = normalize_text(second)
    if not left or not right:
        return False
    if left == right:
        return True

    tokens_left = left.split()
    tokens_right = right.split()
    overlap = sum(
        1
        for token in tokens_left
        if any(other in token or token in other for other in tokens_right)
    )
    return overlap >= min(len(tokens_left), len(tokens_right)) * RECIPIENT_OVERLAP_RATIO


def shares_leading_token(first: str | None, second: str | None) -> bool:
    left = normalize_text(first)
    right = normalize_text(second)
    if not left or not right:
        return False
    return right.split()[0] in left or left.split()[0] in right


def substring_overlap(first: str | None, second: str | None) -> float:
    left = normalize_text(first)
    right = normalize_text(second)
    if not left or not right:
        return 0.0
    longer, shorter = (left, right) if len(left) > len(right) else (right, left)
    if shorter in longer:
        return len(shorter) / len(longer)
    return 0.0
