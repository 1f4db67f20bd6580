"""Text utilities shared by the normalizer and the apps layer."""

import re


def apply_vocab(text: str, vocab: dict[str, str]) -> str:
    """Apply vocabulary corrections to text.

    Each key in *vocab* is matched as a case-insensitive whole word (or
    phrase) and replaced with the corresponding value. Typical use is fixing
    recurring speech-recognition mistakes ("note pad" -> "Notepad").
    """
    for wrong, correct in vocab.items():
        if not wrong:
            continue
        pattern = re.compile(rf"(?<!\w){re.escape(wrong)}(?!\w)", re.IGNORECASE)
        text = pattern.sub(lambda _m: correct, text)
    return text


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def is_meaningful(text: str) -> bool:
    """Filter out noise so we do not dispatch junk input."""
    cleaned = re.sub(r"[^\w]", "", text)
    return len(cleaned) >= 1


def base_language(locale: str) -> str:
    """Reduce a locale tag ("en-US", "nl_BE") to its language code."""
    return re.split(r"[-_]", (locale or "").strip().lower(), maxsplit=1)[0]
