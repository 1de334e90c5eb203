"""
Structured representation of the child the storybook is written for.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

MIN_AGE = 2
MAX_AGE = 12
DEFAULT_AGE = 6

_GENDER_ALIASES = {
    "girl": "girl",
    "female": "girl",
    "f": "girl",
    "she": "girl",
    "boy": "boy",
    "male": "boy",
    "m": "boy",
    "he": "boy",
}


def _coerce_age(value: Any) -> int:
    if value is None or value == "":
        return DEFAULT_AGE
    try:
        age = int(float(value))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected an integer-compatible value for age, got {value!r}") from exc
    return max(MIN_AGE, min(MAX_AGE, age))


def _coerce_gender(value: Any) -> str:
    text = str(value or "").strip().lower()
    return _GENDER_ALIASES.get(text, "neutral")


@dataclass(frozen=True)
class ChildProfile:
    """
    The child featured in the book.

    Attributes
    ----------
    name:
        Name used as the protagonist in every page.
    age:
        Age in years, clamped to 2..12. Drives the per-page word limit.
    gender:
        Grammatical gender the story language should use for the child
        (``girl``, ``boy`` or ``neutral``).
    """

    name: str
    age: int = DEFAULT_AGE
    gender: str = "neutral"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ChildProfile":
        """
        Build a profile from a dict-like object (e.g., parsed JSON/YAML or a form).
        """
        name = str(data.get("name") or data.get("child_name") or "").strip()
        if not name:
            raise ValueError("Profile data must include a non-empty 'name' field.")

        return cls(
            name=name,
            age=_coerce_age(data.get("age", data.get("child_age"))),
            gender=_coerce_gender(
                data.get("gender") or data.get("child_gender") or data.get("pronouns")
            ),
        )

    @property
    def max_words_per_page(self) -> int:
        return 55 if self.age <= 7 else 75

    def as_dict(self) -> dict[str, Any]:
        return {"name": self.name, "age": self.age, "gender": self.gender}
