"""
Canonical document model shared by the normalizer, the loader and the stores.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Optional


MIN_TEXT_LENGTH = 5  # valid documents have strictly more characters than this


class SourceType(str, Enum):
    """Kinds of knowledge source."""
    QURAN = "Quran"
    HADITH = "Hadith"
    TAFSIR = "Tafsir"
    FIQH = "Fiqh"
    SEERAH = "Seerah"
    DUA = "Dua"


def as_text(value: Any) -> str:
    """Coerce a raw field to a string; None becomes empty."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


@dataclass
class CanonicalDocument:
    """Normalized knowledge record ready for persistence and embedding."""

    source_type: str
    reference: str
    arabic_text: str = ""
    english_text: str = ""
    context: str = ""
    tags: list[str] = field(default_factory=lambda: ["general"])
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "CanonicalDocument":
        """Build from a corpus file entry; missing fields stay empty."""
        source_type = data.get("source_type") or ""
        if isinstance(source_type, SourceType):
            source_type = source_type.value
        tags = data.get("tags")
        metadata = data.get("metadata")
        return cls(
            source_type=as_text(source_type),
            reference=as_text(data.get("reference")),
            arabic_text=as_text(data.get("arabic_text")),
            english_text=as_text(data.get("english_text")),
            context=as_text(data.get("context")),
            tags=list(tags) if isinstance(tags, list) else [],
            metadata=dict(metadata) if isinstance(metadata, dict) else {},
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @property
    def embedding_text(self) -> str:
        """Text used for the embedding: English, else Arabic, else the reference."""
        return self.english_text or self.arabic_text or self.reference


def has_valid_text(doc: CanonicalDocument | dict) -> bool:
    """True if the document carries enough text to be worth embedding."""
    if isinstance(doc, dict):
        text = doc.get("english_text") or doc.get("arabic_text")
    else:
        text = doc.english_text or doc.arabic_text
    return len(as_text(text).strip()) > MIN_TEXT_LENGTH


def sanitize(doc: CanonicalDocument) -> CanonicalDocument:
    """Return a copy with every optional field filled with its default."""
    tags = [t for t in doc.tags if isinstance(t, str) and t] if isinstance(doc.tags, list) else []
    return CanonicalDocument(
        source_type=doc.source_type or SourceType.HADITH.value,
        reference=doc.reference or "Unknown Reference",
        arabic_text=doc.arabic_text or "",
        english_text=doc.english_text or doc.arabic_text or doc.reference or "",
        context=doc.context or "",
        tags=tags or ["general"],
        metadata=dict(doc.metadata or {}),
    )


def embedding_payload(doc: CanonicalDocument) -> dict[str, Optional[Any]]:
    """Payload stored next to each vector."""
    return {
        "text": doc.english_text,
        "source_type": doc.source_type,
        "reference": doc.reference,
    }
