"""Deterministic field-to-profile matching for the DOM-driven layers.

Cascade, first hit wins:
    automation id / name attribute  ->  known profile key
    label, aria-label, placeholder  ->  fuzzy lookup over profile keys

Only empty, visible, enabled fields are considered by callers.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

# name/automation-id attribute (lowercased, separators removed) -> canonical key
NAME_TO_KEY: dict[str, str] = {
    "firstname": "first_name",
    "givenname": "first_name",
    "lastname": "last_name",
    "familyname": "last_name",
    "surname": "last_name",
    "fullname": "full_name",
    "email": "email",
    "emailaddress": "email",
    "phone": "phone",
    "phonenumber": "phone",
    "mobile": "phone",
    "addressline1": "street",
    "street": "street",
    "city": "city",
    "state": "state",
    "province": "state",
    "postalcode": "zip",
    "zip": "zip",
    "zipcode": "zip",
    "country": "country",
    "linkedin": "linkedin",
    "website": "website",
}

_SEPARATORS_RE = re.compile(r"[\s_\-.]+")
_STEM_RE = re.compile(r"(ating|ting|ing|tion|sion|ment|ness|able|ible|ed|ly|er|est|ies|es|s)$")


@dataclass
class FieldMatch:
    key: str
    value: str
    method: str


def normalize_label(label: str) -> str:
    label = label.replace("*", "")
    label = re.sub(r"\brequired\b", "", label, flags=re.IGNORECASE)
    label = re.sub(r"\(optional\)", "", label, flags=re.IGNORECASE)
    label = label.replace("_", " ")
    # split camelCase profile keys ("firstName" -> "first name")
    label = re.sub(r"(?<=[a-z])(?=[A-Z])", " ", label)
    return " ".join(label.split()).lower()


def _compact(s: str) -> str:
    return _SEPARATORS_RE.sub("", s).lower()


def _stem(word: str) -> str:
    return _STEM_RE.sub("", word)


def _lookup_key(data: Mapping[str, object], canonical: str) -> str | None:
    """Find the profile key for a canonical name regardless of its casing style."""
    want = _compact(canonical)
    for k in data:
        if _compact(k) == want:
            return k
    return None


def fuzzy_lookup(raw_label: str, data: Mapping[str, object]) -> str | None:
    """Return the profile key best matching *raw_label*, or None.

    Passes: exact, label contains key, key contains label, whole-word
    overlap, stem overlap.
    """
    label = normalize_label(raw_label)
    if len(label) < 2:
        return None
    keys = {k: normalize_label(k) for k in data}

    for k, norm in keys.items():
        if norm == label:
            return k

    for k, norm in keys.items():
        if norm and len(norm) >= len(label) * 0.6 and norm in label:
            return k

    if len(label) > 3:
        for k, norm in keys.items():
            if len(label) >= len(norm) * 0.5 and label in norm:
                return k

    label_words = [w for w in label.split() if len(w) > 3]
    if len(label_words) >= 2:
        best, best_overlap = None, 0
        for k, norm in keys.items():
            k_words = {w for w in norm.split() if len(w) > 3}
            overlap = [w for w in label_words if w in k_words]
            if len(overlap) >= 2 and len(overlap) == len(label_words) and len(overlap) > best_overlap:
                best, best_overlap = k, len(overlap)
        if best:
            return best

    label_stems = {_stem(w) for w in label_words}
    if len(label_stems) >= 2:
        for k, norm in keys.items():
            k_stems = {_stem(w) for w in norm.split() if len(w) > 3}
            if len(label_stems & k_stems) >= 2:
                return k
    return None


def _as_text(value: object) -> str | None:
    if value is None or isinstance(value, (dict, list, tuple, set)):
        return None
    if isinstance(value, bool):
        return "Yes" if value else "No"
    text = str(value).strip()
    return text or None


def match_field(field: Mapping[str, Any], user_data: Mapping[str, object]) -> FieldMatch | None:
    """Match one scanned form field to a profile value."""
    for attr, method in (("automationId", "automation_id"), ("name", "name_attr"), ("id", "id_attr")):
        raw = field.get(attr)
        if not raw:
            continue
        canonical = NAME_TO_KEY.get(_compact(raw))
        key = _lookup_key(user_data, canonical) if canonical else _lookup_key(user_data, raw)
        if key is not None:
            value = _as_text(user_data[key])
            if value is not None:
                return FieldMatch(key, value, method)

    for attr, method in (("label", "label"), ("ariaLabel", "aria_label"), ("placeholder", "placeholder")):
        raw = field.get(attr)
        if not raw:
            continue
        key = fuzzy_lookup(raw, user_data)
        if key is not None:
            value = _as_text(user_data[key])
            if value is not None:
                return FieldMatch(key, value, method)
    return None
