"""{{field_name}} placeholder handling for manual step values."""

from __future__ import annotations

import re
from collections.abc import Mapping

PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


class MissingFieldError(KeyError):
    """A placeholder references a profile field the caller did not supply."""

    def __init__(self, fields: list[str]) -> None:
        self.fields = fields
        super().__init__(", ".join(fields))

    def __str__(self) -> str:
        return f"missing user data for: {', '.join(self.fields)}"


def placeholders(template: str | None) -> list[str]:
    """Field names referenced by *template*, in order of appearance."""
    if not template:
        return []
    return PLACEHOLDER_RE.findall(template)


def resolve_template(template: str, user_data: Mapping[str, object]) -> str:
    """Substitute every {{field}} in *template* with user_data[field].

    Lookup is exact first, then case-insensitive.

    Raises:
        MissingFieldError: If any referenced field is absent.
    """
    lowered = {k.lower(): v for k, v in user_data.items()}
    missing: list[str] = []

    def _sub(match: re.Match[str]) -> str:
        key = match.group(1)
        if key in user_data:
            return str(user_data[key])
        if key.lower() in lowered:
            return str(lowered[key.lower()])
        missing.append(key)
        return match.group(0)

    resolved = PLACEHOLDER_RE.sub(_sub, template)
    if missing:
        raise MissingFieldError(missing)
    return resolved


def templatize(value: str, user_data: Mapping[str, object]) -> str:
    """Replace a literal value with {{field}} if it exactly equals a profile value."""
    if not value:
        return value
    for field_name, field_value in user_data.items():
        if isinstance(field_value, (str, int, float)) and not isinstance(field_value, bool):
            if str(field_value) and value == str(field_value):
                return "{{" + field_name + "}}"
    return value
