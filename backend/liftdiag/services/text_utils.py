"""Small text helpers shared by the record mappers, linker and renderer."""
import json
import re
from typing import Any, Iterable, Optional

DEFAULT_LOCALE = "en-GB"
DEFAULT_LOCALE_FALLBACKS = ("en-GB", "en", "en-US", "fr-FR", "fr")

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")

# Words rendered with a fixed spelling when translating coded state keys
_STATE_KEY_WORDS = {
    "guideshoes": "Guide Shoes",
    "remotealarm": "Remote Alarm",
}


def extract_preferred_locale(
    value: Any,
    preferred_locale: str = DEFAULT_LOCALE,
    fallback_order: Iterable[str] = DEFAULT_LOCALE_FALLBACKS,
) -> str:
    """
    Pick one string out of a multi-locale translation structure.

    Accepts a dict ({"en-GB": "...", "fr-FR": "..."}), a JSON string encoding
    such a dict, a list of {"locale": ..., "value": ...} entries, or a plain
    string. Lookup order: preferred locale, the fallback order, then the first
    non-empty entry. Anything else is returned as its raw string form.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped.startswith(("{", "[")):
            return stripped
        try:
            value = json.loads(stripped)
        except ValueError:
            return stripped

    translations: dict = {}
    if isinstance(value, dict):
        translations = {str(k): v for k, v in value.items()}
    elif isinstance(value, list):
        for entry in value:
            if isinstance(entry, dict):
                locale = entry.get("locale") or entry.get("lang") or entry.get("language")
                text = entry.get("value") or entry.get("text") or entry.get("translation")
                if locale and text:
                    translations[str(locale)] = text
    else:
        return str(value)

    for locale in (preferred_locale, *fallback_order):
        text = translations.get(locale)
        if isinstance(text, str) and text.strip():
            return text.strip()
    for text in translations.values():
        if isinstance(text, str) and text.strip():
            return text.strip()
    return ""


def translate_state_key(state_key: Optional[str]) -> str:
    """Coded component key to plain words: 'landings.door.locks' -> 'Landings Door Locks'."""
    if not state_key:
        return state_key or ""
    words = []
    for part in state_key.split("."):
        if not part:
            continue
        fixed = _STATE_KEY_WORDS.get(part.lower())
        if fixed:
            words.append(fixed)
            continue
        for word in _CAMEL_RE.split(part):
            words.append(word[:1].upper() + word[1:].lower())
    return " ".join(words)


def tokenize(*texts: Optional[str]) -> set:
    """Lower-case alphanumeric tokens from all given texts."""
    tokens = set()
    for text in texts:
        if text:
            tokens.update(_TOKEN_RE.findall(text.lower()))
    return tokens


def leading_sentences(text: str, count: int = 2) -> str:
    """First `count` sentences of `text`, split on '. ', always ending with a period."""
    head = ". ".join(text.split(". ")[:count]).strip()
    if not head:
        return ""
    return head if head.endswith((".", "!", "?")) else head + "."


def normalize_key(value: Optional[str]) -> str:
    """Case- and punctuation-insensitive form used for grouping coded values."""
    return "".join(_TOKEN_RE.findall((value or "").lower()))
