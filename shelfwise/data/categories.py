"""
Category definitions for by-category recommendations.

Each category is a set of subject headings to include, optional subjects to
exclude, and an optional publication-year range written as "1980-",
"-2020" or "1950-2000".
"""

import re
from dataclasses import dataclass, field

CATEGORIES = {
    "fantasy": {
        "description": "Epic quests, magic systems and secondary worlds",
        "include": ["fantasy", "epic fantasy", "high fantasy", "fantasy fiction", "magic"],
        "exclude": ["juvenile fiction", "picture books"],
    },
    "science-fiction": {
        "description": "Space, future societies and speculative technology",
        "include": ["science fiction", "space opera", "cyberpunk", "dystopias", "time travel"],
        "exclude": ["juvenile fiction"],
    },
    "mystery": {
        "description": "Detectives, whodunits and crime fiction",
        "include": ["mystery", "detective and mystery stories", "crime fiction", "private investigators"],
    },
    "thriller": {
        "description": "Suspense and high-stakes thrillers",
        "include": ["thriller", "suspense", "psychological fiction", "espionage"],
        "years": "1970-",
    },
    "romance": {
        "description": "Love stories of every flavour",
        "include": ["romance", "love stories", "romantic suspense", "historical romance"],
    },
    "horror": {
        "description": "Ghosts, monsters and creeping dread",
        "include": ["horror", "horror fiction", "ghost stories", "supernatural"],
    },
    "historical-fiction": {
        "description": "Novels set in the past",
        "include": ["historical fiction", "history fiction"],
    },
    "literary-fiction": {
        "description": "Character-driven contemporary literature",
        "include": ["literary fiction", "fiction, literary", "domestic fiction"],
        "exclude": ["science fiction", "fantasy"],
    },
    "classics": {
        "description": "Enduring works published before 1950",
        "include": ["classic literature", "classics", "fiction"],
        "years": "-1949",
    },
    "modern-fantasy": {
        "description": "Fantasy published since 2000",
        "include": ["fantasy", "urban fantasy", "fantasy fiction"],
        "years": "2000-",
    },
    "biography": {
        "description": "Lives told by others and by themselves",
        "include": ["biography", "autobiography", "memoir"],
    },
    "popular-science": {
        "description": "Science for curious readers",
        "include": ["popular science", "science", "physics", "biology", "evolution"],
        "exclude": ["textbooks"],
    },
}

YEAR_RANGE_PATTERN = re.compile(r"^(\d+)?-(\d+)?$")


@dataclass(frozen=True)
class CategoryConstraints:
    slug: str
    subjects: list[str]
    exclude_subjects: list[str] = field(default_factory=list)
    year_min: int | None = None
    year_max: int | None = None
    description: str | None = None


def parse_year_range(value: str | None) -> tuple[int | None, int | None]:
    """Parse "1980-", "-2020" or "1950-2000" into (min, max); unparseable means no bounds."""
    if not value:
        return None, None
    match = YEAR_RANGE_PATTERN.match(value.strip())
    if not match:
        return None, None
    year_min = int(match.group(1)) if match.group(1) else None
    year_max = int(match.group(2)) if match.group(2) else None
    return year_min, year_max


def get_category_constraints(slug: str) -> CategoryConstraints | None:
    """Constraints for a category slug, or None if the slug is unknown."""
    config = CATEGORIES.get(slug)
    if config is None:
        return None

    year_min, year_max = parse_year_range(config.get("years"))
    return CategoryConstraints(
        slug=slug,
        subjects=list(config["include"]),
        exclude_subjects=list(config.get("exclude", [])),
        year_min=year_min,
        year_max=year_max,
        description=config.get("description"),
    )


def get_category_slugs() -> list[str]:
    return list(CATEGORIES.keys())


def get_category_metadata() -> list[dict]:
    """Slug and description of every category, for listing in the UI."""
    return [{"slug": slug, "description": config.get("description")} for slug, config in CATEGORIES.items()]
