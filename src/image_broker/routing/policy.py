"""
Selection policy table.

A SelectionPolicy is plain data: ordered use-case categories (keywords,
preferred and fallback backends, base confidence), the quality and speed
heuristics used when no category matches, and the static default chain.
The built-in table can be replaced with one loaded from YAML.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from image_broker.errors import ValidationError


class MatchMode(str, Enum):
    """How a keyword is found in a prompt."""

    WORD = "word"
    """Keyword must start at a word boundary ('art' matches 'artwork', not 'start')."""

    SUBSTRING = "substring"
    """Plain substring containment ('art' also matches 'startup'); the default."""


@dataclass(frozen=True)
class Category:
    """One use-case category.

    Attributes:
        name: Category identifier (e.g., 'text-heavy')
        keywords: Lower-case keywords; longer ones weigh more
        preferred: Backends to try first, in order
        fallback: Backends to try next, in order
        base_confidence: Confidence when every keyword matches
    """

    name: str
    keywords: tuple[str, ...]
    preferred: tuple[str, ...] = ()
    fallback: tuple[str, ...] = ()
    base_confidence: float = 0.8

    def __post_init__(self) -> None:
        if not self.keywords:
            raise ValidationError(f"Category {self.name!r} has no keywords", field="keywords")
        if not 0.0 <= self.base_confidence <= 1.0:
            raise ValidationError(
                f"Category {self.name!r} confidence must be within [0, 1]",
                field="base_confidence",
                actual=self.base_confidence,
            )

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> Category:
        return cls(
            name=name,
            keywords=tuple(str(k).lower() for k in data.get("keywords", ())),
            preferred=tuple(str(b).lower() for b in data.get("preferred", ())),
            fallback=tuple(str(b).lower() for b in data.get("fallback", ())),
            base_confidence=float(data.get("confidence", data.get("base_confidence", 0.8))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "keywords": list(self.keywords),
            "preferred": list(self.preferred),
            "fallback": list(self.fallback),
            "confidence": self.base_confidence,
        }


DEFAULT_CATEGORIES: tuple[Category, ...] = (
    Category(
        "logo",
        ("logo", "brand", "icon", "symbol", "emblem", "mark", "badge"),
        ("ideogram", "openai"),
        ("recraft", "stability"),
        0.9,
    ),
    Category(
        "text-heavy",
        ("text", "poster", "banner", "sign", "quote", "typography", "lettering", "flyer", "advertisement"),
        ("ideogram",),
        ("openai", "gemini"),
        0.95,
    ),
    Category(
        "photorealistic",
        ("realistic", "photo", "photography", "real", "lifelike", "portrait", "headshot", "professional"),
        ("bfl", "stability"),
        ("gemini", "openai"),
        0.85,
    ),
    Category(
        "artistic",
        ("art", "painting", "illustration", "creative", "abstract", "surreal", "fantasy", "imaginative"),
        ("recraft", "replicate"),
        ("stability", "fal"),
        0.8,
    ),
    Category(
        "ui-design",
        ("ui", "ux", "interface", "app", "website", "dashboard", "mockup", "wireframe", "design"),
        ("openai", "ideogram"),
        ("stability", "recraft"),
        0.85,
    ),
    Category(
        "product",
        ("product", "ecommerce", "catalog", "item", "merchandise", "packaging"),
        ("bfl", "stability"),
        ("openai", "gemini"),
        0.8,
    ),
    Category(
        "social-media",
        ("instagram", "tiktok", "youtube", "thumbnail", "story", "post", "reel", "viral"),
        ("recraft", "ideogram"),
        ("fal", "clipdrop"),
        0.75,
    ),
    Category(
        "technical",
        ("diagram", "chart", "graph", "flowchart", "architecture", "schematic", "blueprint"),
        ("openai", "gemini"),
        ("ideogram", "stability"),
        0.8,
    ),
    Category(
        "3d-render",
        ("3d", "render", "cgi", "three dimensional", "model", "sculpture"),
        ("stability", "bfl"),
        ("openai", "recraft"),
        0.85,
    ),
    Category(
        "anime",
        ("anime", "manga", "kawaii", "chibi", "japanese", "otaku"),
        ("recraft", "stability"),
        ("replicate", "fal"),
        0.9,
    ),
    Category(
        "carousel",
        ("carousel", "series", "consistent", "multiple", "sequence", "slides"),
        ("recraft",),
        ("ideogram", "stability"),
        0.95,
    ),
    Category(
        "quick-draft",
        ("quick", "draft", "fast", "rapid", "speed", "instant"),
        ("fal",),
        ("openai", "gemini"),
        0.9,
    ),
    Category(
        "post-process",
        ("remove background", "transparent", "upscale", "enhance", "cleanup", "edit"),
        ("clipdrop",),
        ("stability", "openai"),
        0.95,
    ),
    Category(
        "infographic",
        ("infographic", "data", "visualization", "stats", "chart", "graph", "information"),
        ("ideogram", "openai"),
        ("gemini", "stability"),
        0.85,
    ),
    Category(
        "game-asset",
        ("game", "asset", "sprite", "texture", "character design", "concept art"),
        ("recraft", "stability"),
        ("fal", "bfl"),
        0.85,
    ),
)

DEFAULT_QUALITY_KEYWORDS: tuple[str, ...] = ("high quality", "professional", "4k")
DEFAULT_QUALITY_BACKENDS: tuple[str, ...] = ("bfl", "stability", "openai")
DEFAULT_SPEED_KEYWORDS: tuple[str, ...] = ("quick", "fast", "draft")
DEFAULT_SPEED_BACKENDS: tuple[str, ...] = ("fal", "openai", "gemini")
DEFAULT_CHAIN: tuple[str, ...] = (
    "openai",
    "stability",
    "replicate",
    "gemini",
    "ideogram",
    "bfl",
    "fal",
    "recraft",
    "clipdrop",
    "mock",
)
DEFAULT_PRIMARY: tuple[str, ...] = ("openai", "stability", "bfl")
DEFAULT_SECONDARY: tuple[str, ...] = ("gemini", "recraft", "fal", "ideogram")


@dataclass(frozen=True)
class SelectionPolicy:
    """Everything the selection engine needs, as data.

    Attributes:
        categories: Use-case categories in declaration (tie-break) order
        quality_keywords: Prompt phrases that ask for quality
        quality_backends: Backends preferred for quality requests
        speed_keywords: Prompt phrases that ask for speed
        speed_backends: Backends preferred for speed requests
        default_chain: Static priority order used last
        primary: Generic recommendations when no category matches
        secondary: Generic secondary recommendations
        match_mode: How keywords are matched against the prompt
    """

    categories: tuple[Category, ...] = DEFAULT_CATEGORIES
    quality_keywords: tuple[str, ...] = DEFAULT_QUALITY_KEYWORDS
    quality_backends: tuple[str, ...] = DEFAULT_QUALITY_BACKENDS
    speed_keywords: tuple[str, ...] = DEFAULT_SPEED_KEYWORDS
    speed_backends: tuple[str, ...] = DEFAULT_SPEED_BACKENDS
    default_chain: tuple[str, ...] = DEFAULT_CHAIN
    primary: tuple[str, ...] = DEFAULT_PRIMARY
    secondary: tuple[str, ...] = DEFAULT_SECONDARY
    match_mode: MatchMode = MatchMode.SUBSTRING
    _index: dict[str, Category] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        seen: dict[str, Category] = {}
        for category in self.categories:
            if category.name in seen:
                raise ValidationError(f"Duplicate category {category.name!r}", field="categories")
            seen[category.name] = category
        object.__setattr__(self, "_index", seen)

    def category(self, name: str) -> Category | None:
        return self._index.get(name)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SelectionPolicy:
        """Build a policy from a mapping; missing sections keep their defaults.

        ``categories`` is a mapping of name to category data; its order is the
        tie-break order.
        """
        kwargs: dict[str, Any] = {}
        raw_categories = data.get("categories")
        if raw_categories is not None:
            if not isinstance(raw_categories, dict):
                raise ValidationError("categories must be a mapping", field="categories")
            kwargs["categories"] = tuple(
                Category.from_dict(str(name), body or {}) for name, body in raw_categories.items()
            )

        quality = data.get("quality") or {}
        speed = data.get("speed") or {}
        recommendations = data.get("recommendations") or {}
        lists = {
            "quality_keywords": quality.get("keywords"),
            "quality_backends": quality.get("backends"),
            "speed_keywords": speed.get("keywords"),
            "speed_backends": speed.get("backends"),
            "default_chain": data.get("default_chain"),
            "primary": recommendations.get("primary"),
            "secondary": recommendations.get("secondary"),
        }
        for key, value in lists.items():
            if value is not None:
                kwargs[key] = tuple(str(v).lower() for v in value)

        if "match_mode" in data:
            try:
                kwargs["match_mode"] = MatchMode(str(data["match_mode"]).lower())
            except ValueError as e:
                raise ValidationError(
                    f"Unknown match_mode {data['match_mode']!r}", field="match_mode"
                ) from e

        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: str | Path) -> SelectionPolicy:
        """Load a policy from a YAML file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValidationError: If the document is not a valid policy
        """
        content = Path(path).read_text(encoding="utf-8")
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ValidationError(f"Invalid policy YAML in {path}: {e}", field="policy") from e
        if not isinstance(data, dict):
            raise ValidationError(f"Policy file {path} must contain a mapping", field="policy")
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "categories": {c.name: c.to_dict() for c in self.categories},
            "quality": {"keywords": list(self.quality_keywords), "backends": list(self.quality_backends)},
            "speed": {"keywords": list(self.speed_keywords), "backends": list(self.speed_backends)},
            "default_chain": list(self.default_chain),
            "recommendations": {"primary": list(self.primary), "secondary": list(self.secondary)},
            "match_mode": self.match_mode.value,
        }

    def to_yaml(self, path: str | Path) -> None:
        """Write the policy to a YAML file."""
        Path(path).write_text(yaml.safe_dump(self.to_dict(), sort_keys=False), encoding="utf-8")
