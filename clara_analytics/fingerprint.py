"""Deterministic text fingerprints used for record and question identifiers."""

import re

FNV_OFFSET_BASIS = 0xCBF29CE484222325
FNV_PRIME = 0x100000001B3
_MASK_64 = 0xFFFFFFFFFFFFFFFF

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def fingerprint(text: str) -> str:
    """Hash text with 64-bit FNV-1a.

    Args:
        text: Any string; it is hashed as UTF-8 bytes.

    Returns:
        str: 16-character lowercase hex digest.
    """
    value = FNV_OFFSET_BASIS
    for byte in text.encode("utf-8"):
        value ^= byte
        value = (value * FNV_PRIME) & _MASK_64
    return f"{value:016x}"


def normalize_question(question: str) -> str:
    """Lower-case, strip punctuation and collapse whitespace."""
    lowered = _PUNCTUATION.sub("", question.lower())
    return _WHITESPACE.sub(" ", lowered).strip()


def question_fingerprint(question: str) -> str:
    """Fingerprint of the normalized form, so near-identical questions collide."""
    return fingerprint(normalize_question(question))
