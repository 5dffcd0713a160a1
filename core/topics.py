"""Topic vocabulary and custom-topic validation.

Canonical topics are a fixed lowercase set understood by the backend.
Custom topics are free-form, case-preserving strings that must pass the
length rules below before they are stored.
"""

from __future__ import annotations

from collections.abc import Iterable

#: Canonical topics offered by the backend.
PREDEFINED_TOPICS: frozenset[str] = frozenset([
    "business", "entertainment", "general", "health",
    "science", "sports", "technology", "world",
])

DEFAULT_TOPIC = "general"

MAX_SINGLE_WORD_LENGTH = 20
MAX_WORD_LENGTH = 15
#: Hard limit enforced by the backend.
MAX_TOPIC_LENGTH = 50


def normalize_topic(name: str) -> str:
    """Return the canonical form of a predefined topic name."""
    return name.strip().lower()


def is_predefined(name: str) -> bool:
    return normalize_topic(name) in PREDEFINED_TOPICS


def validate_custom_topic(name: str, existing: Iterable[str] = ()) -> str:
    """Validate a user-defined topic and return its trimmed form.

    Args:
        name: The raw topic entered by the user.
        existing: Custom topics the user already has.

    Returns:
        The trimmed topic name.

    Raises:
        ValueError: With a user-facing message when the topic is rejected.

    Examples:
        >>> validate_custom_topic("  Formula 1 ")
        'Formula 1'
        >>> validate_custom_topic("Sports")
        Traceback (most recent call last):
        ...
        ValueError: This topic is already available in the main topics list.
    """
    if name is not None and not isinstance(name, str):
        raise TypeError(f"Topic names must be strings, got {type(name).__name__}.")
    trimmed = (name or "").strip()
    if not trimmed:
        raise ValueError("Please enter a topic name.")
    if trimmed in set(existing):
        raise ValueError("This topic already exists.")
    if is_predefined(trimmed):
        raise ValueError("This topic is already available in the main topics list.")
    if len(trimmed) > MAX_TOPIC_LENGTH:
        raise ValueError(f"Topics must be {MAX_TOPIC_LENGTH} characters or less.")

    words = trimmed.split()
    if len(words) == 1:
        if len(trimmed) > MAX_SINGLE_WORD_LENGTH:
            raise ValueError(
                f"Single word topics must be {MAX_SINGLE_WORD_LENGTH} characters or less."
            )
    elif any(len(word) > MAX_WORD_LENGTH for word in words):
        raise ValueError(
            f"Each word in multi-word topics must be {MAX_WORD_LENGTH} characters or less."
        )
    return trimmed


def _require_list(value: object, field: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise TypeError(f"{field} must be a list of strings.")
    return value


def validate_topic_list(value: object) -> list[str]:
    """Validate a list of canonical topics and return their normalised names.

    Raises:
        TypeError: If *value* is not a list of strings.
        ValueError: If a name is not one of ``PREDEFINED_TOPICS``.
    """
    topics = []
    for name in _require_list(value, "topics"):
        if not isinstance(name, str):
            raise TypeError("topics must be a list of strings.")
        if not is_predefined(name):
            raise ValueError(f"Unknown topic {name!r}.")
        topics.append(normalize_topic(name))
    return topics


def validate_custom_topic_list(value: object) -> list[str]:
    """Validate every entry with ``validate_custom_topic`` (duplicates rejected)."""
    topics: list[str] = []
    for name in _require_list(value, "customTopics"):
        topics.append(validate_custom_topic(name, existing=topics))
    return topics
