"""
Normalizer - Convert raw source records into canonical documents.

Raw Quran verses and hadiths have different shapes; both are mapped onto
``CanonicalDocument`` and tagged with topics from a fixed keyword taxonomy.
Input order is preserved: the loader derives vector ids from it.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from loguru import logger

from ..core.models import CanonicalDocument, SourceType, as_text
from .fetcher import HADITH_COLLECTIONS, QURAN_FILE


# Topic -> trigger keywords. Matching is a plain case-insensitive substring
# test, so "fast" also fires on "breakfast".
KEYWORD_TAXONOMY: dict[str, list[str]] = {
    "prayer": ["pray", "prayer", "salah", "salat", "namaz", "prostration", "rakat"],
    "fasting": ["fast", "fasting", "ramadan", "sawm", "siyam", "iftar", "suhoor"],
    "zakat": ["zakat", "charity", "alms", "sadaqah", "zakah"],
    "hajj": ["hajj", "pilgrimage", "kaaba", "mecca", "umrah", "tawaf", "safa", "marwah"],
    "faith": ["faith", "believe", "belief", "iman", "conviction"],
    "prophet": ["prophet", "messenger", "muhammad", "rasul", "nabiy"],
    "allah": ["allah", "god", "lord", "creator", "rabb"],
    "quran": ["quran", "koran", "revelation", "book", "scripture"],
    "death": ["death", "grave", "afterlife", "judgment", "paradise", "hell"],
    "family": ["marriage", "divorce", "wife", "husband", "children", "family"],
    "halal": ["halal", "haram", "permissible", "forbidden", "lawful"],
    "ethics": ["honesty", "truthful", "kindness", "mercy", "justice", "character"],
    "knowledge": ["knowledge", "learn", "study", "education", "wisdom"],
    "purification": ["wudu", "ghusl", "ablution", "purification", "clean"],
}

DEFAULT_TAG = "general"


def extract_tags(text: Any) -> list[str]:
    """Topics whose keywords occur in text, or ["general"] if none do."""
    lowered = as_text(text).lower()
    tags = [
        topic for topic, keywords in KEYWORD_TAXONOMY.items()
        if any(keyword in lowered for keyword in keywords)
    ]
    return tags or [DEFAULT_TAG]


@dataclass(frozen=True)
class SourceMetadata:
    """Describes where a batch of raw records came from."""

    source_type: SourceType
    collection: Optional[str] = None


def normalize(raw_records: Any, source: SourceMetadata) -> list[CanonicalDocument]:
    """
    Map raw records of one source onto canonical documents.

    Malformed input (not a list) yields an empty result; non-dict records
    are skipped.
    """
    if not isinstance(raw_records, list):
        logger.warning(f"Expected a list of {source.source_type.value} records, got {type(raw_records).__name__}")
        logger.info(f"Normalized 0 {source.source_type.value} records")
        return []

    if source.source_type == SourceType.QURAN:
        convert = _quran_document
    elif source.source_type == SourceType.HADITH:
        convert = _hadith_document
    else:
        convert = _generic_document

    documents = []
    skipped = 0
    for record in raw_records:
        if not isinstance(record, dict):
            skipped += 1
            continue
        documents.append(convert(record, source))

    label = source.collection or source.source_type.value
    if skipped:
        logger.warning(f"Skipped {skipped} malformed records from {label}")
    logger.info(f"Normalized {len(documents)} records from {label}")
    return documents


def _unique(tags: list[Any]) -> list[str]:
    seen = []
    for tag in tags:
        if tag is None or tag == "":
            continue
        tag = str(tag)
        if tag not in seen:
            seen.append(tag)
    return seen


def _quran_document(verse: dict, source: SourceMetadata) -> CanonicalDocument:
    chapter_id = verse.get("chapter_id")
    chapter_name = verse.get("chapter_name") or f"Chapter {chapter_id}"
    verse_number = verse.get("verse_number")
    english = as_text(verse.get("english_text"))

    structural = ["Quran", chapter_name, f"Chapter{chapter_id}"]
    if verse.get("juz") is not None:
        structural.append(f"Juz{verse['juz']}")

    metadata = {
        "chapter_id": chapter_id,
        "verse_number": verse_number,
        "juz": verse.get("juz"),
        "page": verse.get("page"),
    }

    return CanonicalDocument(
        source_type=SourceType.QURAN.value,
        reference=f"Surah {chapter_name} {chapter_id}:{verse_number}",
        arabic_text=as_text(verse.get("arabic_text")),
        english_text=english,
        context=f"Verse {verse_number} from Surah {chapter_name} (Chapter {chapter_id})",
        tags=_unique(structural + extract_tags(english)),
        metadata={k: v for k, v in metadata.items() if v is not None},
    )


def _hadith_document(hadith: dict, source: SourceMetadata) -> CanonicalDocument:
    collection = source.collection or hadith.get("collection") or "Hadith"
    number = hadith.get("hadithnumber")
    english = as_text(hadith.get("text"))

    return CanonicalDocument(
        source_type=SourceType.HADITH.value,
        reference=f"{collection} {number}",
        arabic_text=as_text(hadith.get("arabictext")),
        english_text=english,
        context=f"Hadith from {collection}",
        tags=_unique(["Hadith", collection] + extract_tags(english)),
        metadata={"hadith_number": number, "collection": collection},
    )


def _generic_document(record: dict, source: SourceMetadata) -> CanonicalDocument:
    english = as_text(record.get("english_text"))
    structural = [source.source_type.value, source.collection]
    return CanonicalDocument(
        source_type=source.source_type.value,
        reference=as_text(record.get("reference")),
        arabic_text=as_text(record.get("arabic_text")),
        english_text=english,
        context=as_text(record.get("context")),
        tags=_unique(structural + extract_tags(english)),
        metadata=dict(record["metadata"]) if isinstance(record.get("metadata"), dict) else {},
    )


@dataclass
class CorpusReport:
    """Summary of a corpus build."""

    output_file: Path
    counts: dict[str, int] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)
    size_bytes: int = 0

    @property
    def total(self) -> int:
        return sum(self.counts.values())


def build_corpus(raw_dir: Path | str, corpus_file: Path | str) -> CorpusReport:
    """
    Normalize every raw file in raw_dir into one canonical corpus file.

    Order: Quran verses first, then the hadith collections in their fixed
    order. Missing raw files are logged and skipped.
    """
    raw_dir = Path(raw_dir)
    corpus_file = Path(corpus_file)

    sources: list[tuple[str, SourceMetadata]] = [
        (QURAN_FILE, SourceMetadata(SourceType.QURAN)),
    ]
    sources += [
        (c.raw_file, SourceMetadata(SourceType.HADITH, c.display_name))
        for c in HADITH_COLLECTIONS
    ]

    report = CorpusReport(output_file=corpus_file)
    documents: list[CanonicalDocument] = []

    for filename, source in sources:
        path = raw_dir / filename
        label = source.collection or source.source_type.value
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            logger.warning(f"Raw file not found, skipping {label}: {path}")
            report.missing.append(filename)
            continue
        except json.JSONDecodeError as e:
            logger.error(f"Could not parse {path}: {e}")
            report.missing.append(filename)
            continue

        normalized = normalize(raw, source)
        report.counts[label] = len(normalized)
        documents.extend(normalized)

    corpus_file.parent.mkdir(parents=True, exist_ok=True)
    with open(corpus_file, "w", encoding="utf-8") as f:
        json.dump([doc.to_dict() for doc in documents], f, ensure_ascii=False, indent=2)

    report.size_bytes = corpus_file.stat().st_size
    logger.info(f"Wrote {report.total} documents to {corpus_file} ({report.size_bytes / 1024 / 1024:.2f} MB)")
    return report


def get_statistics(documents: list[CanonicalDocument]) -> dict:
    """Get statistics about a normalized corpus."""
    if not documents:
        return {}

    sources: dict[str, int] = {}
    topics: dict[str, int] = {}
    taxonomy = set(KEYWORD_TAXONOMY) | {DEFAULT_TAG}

    for doc in documents:
        sources[doc.source_type] = sources.get(doc.source_type, 0) + 1
        for tag in doc.tags:
            if tag in taxonomy:
                topics[tag] = topics.get(tag, 0) + 1

    return {
        "total_documents": len(documents),
        "by_source": sources,
        "top_topics": sorted(topics.items(), key=lambda x: x[1], reverse=True)[:10],
    }
