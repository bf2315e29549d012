"""Typed, phase-keyed artifacts for a generation run.

The store keeps artifacts as a JSON object. ``GenerationArtifacts`` wraps that
object so every key is read and written through its own pydantic model.
"""
from typing import Dict, Any, List, Optional, Type
from pydantic import BaseModel, Field

from seo_writer.agents.schemas import (
    CacheMetrics, ImageCandidate, Outline, QualityControlReport,
    ScreenshotCandidate, SectionResult, Source,
)

PHASES: List[str] = ["research", "outline", "writing", "quality_control", "validation"]


class ResearchArtifact(BaseModel):
    text: str
    sources: List[Source] = Field(default_factory=list)


class OutlineArtifact(BaseModel):
    outline: Outline


class WriteArtifact(BaseModel):
    sections: List[SectionResult] = Field(default_factory=list)
    complete: bool = False
    content: str = ""
    slug: str = ""
    meta_description: str = ""
    tags: List[str] = Field(default_factory=list)
    word_count: int = 0


class QualityControlArtifact(BaseModel):
    report: QualityControlReport
    is_valid: bool
    history: List[QualityControlReport] = Field(default_factory=list)


class ValidationArtifact(BaseModel):
    is_valid: bool
    issues: List[str] = Field(default_factory=list)


class CoverImageArtifact(BaseModel):
    image_url: Optional[str] = None
    alt_text: Optional[str] = None
    attribution: Optional[str] = None
    candidate: Optional[ImageCandidate] = None
    error: Optional[str] = None


class ScreenshotArtifact(BaseModel):
    approved: List[ScreenshotCandidate] = Field(default_factory=list)
    rejected: List[Dict[str, str]] = Field(default_factory=list)
    error: Optional[str] = None


ARTIFACT_TYPES: Dict[str, Type[BaseModel]] = {
    "research": ResearchArtifact,
    "outline": OutlineArtifact,
    "write": WriteArtifact,
    "qualityControl": QualityControlArtifact,
    "validation": ValidationArtifact,
    "coverImage": CoverImageArtifact,
    "screenshots": ScreenshotArtifact,
    "cacheMetrics": CacheMetrics,
}

# Artifact key that marks each phase as done
PHASE_ARTIFACT: Dict[str, str] = {
    "research": "research",
    "outline": "outline",
    "writing": "write",
    "quality_control": "qualityControl",
    "validation": "validation",
}


class GenerationArtifacts:

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self._items: Dict[str, BaseModel] = {}
        self.errors: Dict[str, str] = {}
        for key, value in (data or {}).items():
            if key == "errors":
                self.errors = dict(value or {})
            elif key in ARTIFACT_TYPES and value is not None:
                self._items[key] = ARTIFACT_TYPES[key].model_validate(value)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GenerationArtifacts":
        return cls(data)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            key: item.model_dump(mode="json") for key, item in self._items.items()
        }
        data["errors"] = dict(self.errors)
        return data

    def get(self, key: str) -> Optional[BaseModel]:
        return self._items.get(key)

    def set(self, key: str, value: BaseModel):
        expected = ARTIFACT_TYPES[key]
        if not isinstance(value, expected):
            raise TypeError(f"Artifact '{key}' must be {expected.__name__}, got {type(value).__name__}")
        self._items[key] = value

    # Typed accessors

    @property
    def research(self) -> Optional[ResearchArtifact]:
        return self._items.get("research")

    @property
    def outline(self) -> Optional[OutlineArtifact]:
        return self._items.get("outline")

    @property
    def write(self) -> Optional[WriteArtifact]:
        return self._items.get("write")

    @property
    def quality_control(self) -> Optional[QualityControlArtifact]:
        return self._items.get("qualityControl")

    @property
    def validation(self) -> Optional[ValidationArtifact]:
        return self._items.get("validation")

    @property
    def cover_image(self) -> Optional[CoverImageArtifact]:
        return self._items.get("coverImage")

    @property
    def screenshots(self) -> Optional[ScreenshotArtifact]:
        return self._items.get("screenshots")

    @property
    def cache_metrics(self) -> Optional[CacheMetrics]:
        return self._items.get("cacheMetrics")

    # Phase bookkeeping

    def is_phase_complete(self, phase: str) -> bool:
        item = self._items.get(PHASE_ARTIFACT[phase])
        if item is None:
            return False
        if isinstance(item, WriteArtifact):
            return item.complete
        return True

    def first_incomplete_phase(self) -> Optional[str]:
        for phase in PHASES:
            if not self.is_phase_complete(phase):
                return phase
        return None

    def set_error(self, phase: str, message: str):
        self.errors[phase] = message

    def clear_error(self, phase: str):
        self.errors.pop(phase, None)

    def public_view(self) -> Dict[str, Any]:
        """Subset consumed by the UI layer."""
        view: Dict[str, Any] = {"errors": dict(self.errors)}
        if self.research:
            view["research"] = {"sources": [s.model_dump() for s in self.research.sources]}
        if self.write and self.write.complete:
            view["write"] = {
                "content": self.write.content,
                "slug": self.write.slug,
                "meta_description": self.write.meta_description,
                "tags": list(self.write.tags),
            }
        if self.validation:
            view["validation"] = self.validation.model_dump(mode="json")
        if self.cover_image:
            view["coverImage"] = {
                "image_url": self.cover_image.image_url,
                "alt_text": self.cover_image.alt_text,
                "attribution": self.cover_image.attribution,
            }
        if self.quality_control:
            view["qualityControl"] = {
                "report": self.quality_control.report.model_dump(mode="json"),
                "is_valid": self.quality_control.is_valid,
            }
        return view
