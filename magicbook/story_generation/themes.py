"""
Theme and illustration-style catalogue offered to families.
"""

from __future__ import annotations

THEMES: dict[str, tuple[str, str]] = {
    "space": (
        "Space Voyage",
        "space adventure (planets, rockets, stars, colorful nebulae)",
    ),
    "dragon": (
        "Kingdom of Dragons",
        "medieval fantasy with friendly dragons, castles and magical villages",
    ),
    "ocean": (
        "Under the Sea",
        "under the sea with corals, colorful fish, treasures and sea friends",
    ),
    "jungle": (
        "Jungle Safari",
        "jungle safari with animals, nature and fun trails",
    ),
    "superhero": (
        "Superhero",
        "superhero in a cheerful city, a good-deed mission, cape and emblems",
    ),
    "dinosaur": (
        "Land of Dinosaurs",
        "land of dinosaurs (friendly Jurassic), trails and discoveries",
    ),
}

STYLES: dict[str, str] = {
    "read": "Illustrated storybook",
    "color": "Coloring book",
}

DEFAULT_THEME = "space"
DEFAULT_STYLE = "read"


def theme_label(theme_key: str | None) -> str:
    entry = THEMES.get(str(theme_key or ""))
    return entry[0] if entry else str(theme_key or "Theme")


def theme_description(theme_key: str | None) -> str:
    entry = THEMES.get(str(theme_key or ""))
    return entry[1] if entry else str(theme_key or "a fun adventure")


def style_label(style_key: str | None) -> str:
    return STYLES.get(str(style_key or ""), STYLES[DEFAULT_STYLE])


def normalize_style(style_key: str | None) -> str:
    key = str(style_key or "").strip().lower()
    return key if key in STYLES else DEFAULT_STYLE
