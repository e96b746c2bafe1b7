"""
Source Fetcher - Download raw Quran and hadith data.

``RetryingFetcher`` performs single GETs with a bounded, linear retry.
``QuranSource`` and ``HadithSource`` know the remote layouts and pick a
fallback source when the primary one is exhausted. Results are written to
the raw data directory for the normalizer.

Note: every non-2xx status is retried the same way. A 404 is retried
exactly like a 500; status codes are not inspected.
"""

import json
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

import httpx
from loguru import logger

from ..core.errors import FetchError
from .retry import RetryPolicy


CHAPTER_NAMES = [
    "Al-Fatihah", "Al-Baqarah", "Ali 'Imran", "An-Nisa", "Al-Ma'idah",
    "Al-An'am", "Al-A'raf", "Al-Anfal", "At-Tawbah", "Yunus",
    "Hud", "Yusuf", "Ar-Ra'd", "Ibrahim", "Al-Hijr",
    "An-Nahl", "Al-Isra", "Al-Kahf", "Maryam", "Ta-Ha",
    "Al-Anbya", "Al-Hajj", "Al-Mu'minun", "An-Nur", "Al-Furqan",
    "Ash-Shu'ara", "An-Naml", "Al-Qasas", "Al-'Ankabut", "Ar-Rum",
    "Luqman", "As-Sajdah", "Al-Ahzab", "Saba", "Fatir",
    "Ya-Sin", "As-Saffat", "Sad", "Az-Zumar", "Ghafir",
    "Fussilat", "Ash-Shura", "Az-Zukhruf", "Ad-Dukhan", "Al-Jathiyah",
    "Al-Ahqaf", "Muhammad", "Al-Fath", "Al-Hujurat", "Qaf",
    "Adh-Dhariyat", "At-Tur", "An-Najm", "Al-Qamar", "Ar-Rahman",
    "Al-Waqi'ah", "Al-Hadid", "Al-Mujadila", "Al-Hashr", "Al-Mumtahanah",
    "As-Saf", "Al-Jumu'ah", "Al-Munafiqun", "At-Taghabun", "At-Talaq",
    "At-Tahrim", "Al-Mulk", "Al-Qalam", "Al-Haqqah", "Al-Ma'arij",
    "Nuh", "Al-Jinn", "Al-Muzzammil", "Al-Muddaththir", "Al-Qiyamah",
    "Al-Insan", "Al-Mursalat", "An-Naba", "An-Nazi'at", "Abasa",
    "At-Takwir", "Al-Infitar", "Al-Mutaffifin", "Al-Inshiqaq", "Al-Buruj",
    "At-Tariq", "Al-A'la", "Al-Ghashiyah", "Al-Fajr", "Al-Balad",
    "Ash-Shams", "Al-Layl", "Ad-Duha", "Ash-Sharh", "At-Tin",
    "Al-'Alaq", "Al-Qadr", "Al-Bayyinah", "Az-Zalzalah", "Al-'Adiyat",
    "Al-Qari'ah", "At-Takathur", "Al-'Asr", "Al-Humazah", "Al-Fil",
    "Quraysh", "Al-Ma'un", "Al-Kawthar", "Al-Kafirun", "An-Nasr",
    "Al-Masad", "Al-Ikhlas", "Al-Falaq", "An-Nas",
]

QURAN_FILE = "quran_verses_complete.json"
HADITH_SUMMARY_FILE = "hadith_summary.json"

HTML_TAG_RE = re.compile(r"<[^>]*>")


@dataclass(frozen=True)
class HadithCollection:
    """A hadith collection published on the hadith CDN."""

    name: str
    display_name: str
    filename: str

    @property
    def raw_file(self) -> str:
        return f"hadith_{self.name}.json"


HADITH_COLLECTIONS = [
    HadithCollection("bukhari", "Sahih Bukhari", "eng-bukhari"),
    HadithCollection("muslim", "Sahih Muslim", "eng-muslim"),
    HadithCollection("abudawud", "Abu Dawud", "eng-abudawud"),
    HadithCollection("tirmidhi", "Tirmidhi", "eng-tirmidhi"),
    HadithCollection("nasai", "Nasa'i", "eng-nasai"),
    HadithCollection("ibnmajah", "Ibn Majah", "eng-ibnmajah"),
]


class RetryingFetcher:
    """
    GET a URL and parse its JSON body, retrying on any failure.

    Features:
    - Bounded attempts with linear backoff (via RetryPolicy)
    - Non-2xx responses and unparseable bodies count as failures
    - Raises FetchError once the budget is spent; never picks a fallback
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        policy: Optional[RetryPolicy] = None,
        timeout: float = 60.0,
    ):
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self.policy = policy or RetryPolicy()

    def fetch(self, url: str) -> Any:
        """Fetch url and return the decoded JSON body."""
        last_error: Optional[Exception] = None

        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                response = self._client.get(url)
                response.raise_for_status()
                return response.json()
            except (httpx.HTTPError, json.JSONDecodeError) as e:
                last_error = e
                if attempt == self.policy.max_attempts:
                    break
                delay = self.policy.wait(attempt)
                logger.warning(
                    f"Retry {attempt}/{self.policy.max_attempts} for {url} in {delay:.1f}s ({e})"
                )

        logger.error(f"Giving up on {url} after {self.policy.max_attempts} attempts: {last_error}")
        raise FetchError(url, self.policy.max_attempts, last_error)

    def close(self):
        self._client.close()


class QuranSource:
    """
    Complete Quran (Arabic + English) from the CDN, with quran.com as fallback.
    """

    def __init__(
        self,
        fetcher: RetryingFetcher,
        cdn_base: str = "https://cdn.jsdelivr.net/gh/fawazahmed0/quran-api@1/editions",
        api_base: str = "https://api.quran.com/api/v4",
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.fetcher = fetcher
        self.cdn_base = cdn_base.rstrip("/")
        self.api_base = api_base.rstrip("/")
        self._sleep = sleep

    def fetch(self) -> list[dict]:
        """Fetch all verses, falling back to quran.com when the CDN fails."""
        try:
            return self.fetch_from_cdn()
        except (FetchError, ValueError) as e:
            logger.warning(f"CDN failed: {e}")
            logger.info("Trying backup source (quran.com API)...")
            return self.fetch_from_quran_com()

    def fetch_from_cdn(self) -> list[dict]:
        logger.info("Downloading English translation from CDN...")
        english = self.fetcher.fetch(f"{self.cdn_base}/eng-kquran.json")
        logger.info("Downloading Arabic text from CDN...")
        arabic = self.fetcher.fetch(f"{self.cdn_base}/ara-quran.json")

        english_map = _verse_map(english)
        if not english_map:
            raise ValueError("Invalid response from CDN")
        arabic_map = _verse_map(arabic)

        verses = []
        for chapter_id in sorted(english_map):
            chapter_name = _chapter_name(chapter_id)
            arabic_chapter = arabic_map.get(chapter_id, {})
            for verse_number in sorted(english_map[chapter_id]):
                verses.append({
                    "chapter_id": chapter_id,
                    "chapter_name": chapter_name,
                    "verse_number": verse_number,
                    "verse_key": f"{chapter_id}:{verse_number}",
                    "arabic_text": arabic_chapter.get(verse_number, ""),
                    "english_text": english_map[chapter_id][verse_number],
                })

        logger.info(f"Fetched {len(verses)} Quran verses from CDN")
        return verses

    def fetch_from_quran_com(self) -> list[dict]:
        data = self.fetcher.fetch(f"{self.api_base}/chapters?language=en")
        chapters = (data.get("chapters") or []) if isinstance(data, dict) else []
        logger.info(f"Got {len(chapters)} chapters from quran.com")

        verses = []
        for chapter in chapters:
            chapter_verses = self._fetch_chapter(chapter)
            logger.debug(f"Chapter {chapter['id']}/114: {chapter.get('name_simple')} - {len(chapter_verses)} verses")
            verses.extend(chapter_verses)
            self._sleep(0.3)

        logger.info(f"Fetched {len(verses)} verses from quran.com")
        return verses

    def _fetch_chapter(self, chapter: dict) -> list[dict]:
        chapter_id = int(chapter["id"])
        chapter_name = chapter.get("name_simple") or _chapter_name(chapter_id)
        verses = []
        page = 1

        while True:
            url = (
                f"{self.api_base}/verses/by_chapter/{chapter_id}"
                f"?language=en&translations=131&fields=text_uthmani&page={page}&per_page=50"
            )
            data = self.fetcher.fetch(url)
            if not isinstance(data, dict):
                break
            page_verses = data.get("verses") or []
            if not page_verses:
                break

            for verse in page_verses:
                translations = verse.get("translations") or []
                english = HTML_TAG_RE.sub("", translations[0].get("text", "")).strip() if translations else ""
                record = {
                    "chapter_id": chapter_id,
                    "chapter_name": chapter_name,
                    "verse_number": verse.get("verse_number"),
                    "verse_key": verse.get("verse_key"),
                    "arabic_text": verse.get("text_uthmani") or "",
                    "english_text": english,
                }
                if verse.get("juz_number") is not None:
                    record["juz"] = verse["juz_number"]
                if verse.get("page_number") is not None:
                    record["page"] = verse["page_number"]
                verses.append(record)

            meta = data.get("pagination") or data.get("meta") or {}
            if not meta or meta.get("current_page", page) >= meta.get("total_pages", page):
                break
            page += 1
            self._sleep(0.2)

        return verses


@dataclass
class CollectionResult:
    """Outcome of fetching one hadith collection."""

    collection: HadithCollection
    hadiths: list[dict] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.hadiths)


class HadithSource:
    """Hadith collections from the hadith CDN."""

    def __init__(
        self,
        fetcher: RetryingFetcher,
        cdn_base: str = "https://cdn.jsdelivr.net/gh/fawazahmed0/hadith-api@1",
        collections: Optional[list[HadithCollection]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.fetcher = fetcher
        self.cdn_base = cdn_base.rstrip("/")
        self.collections = collections if collections is not None else list(HADITH_COLLECTIONS)
        self._sleep = sleep

    def fetch_collection(self, collection: HadithCollection) -> CollectionResult:
        """Fetch one collection; a failure is recorded, not raised."""
        url = f"{self.cdn_base}/editions/{collection.filename}.json"
        try:
            data = self.fetcher.fetch(url)
        except FetchError as e:
            logger.error(f"Failed to fetch {collection.display_name}: {e}")
            return CollectionResult(collection, error=str(e))

        hadiths = (data.get("hadiths") or []) if isinstance(data, dict) else []
        logger.info(f"Fetched {len(hadiths)} hadiths from {collection.display_name}")
        return CollectionResult(collection, hadiths=hadiths)

    def fetch_all(self) -> list[CollectionResult]:
        results = []
        for idx, collection in enumerate(self.collections):
            if idx:
                self._sleep(0.5)
            results.append(self.fetch_collection(collection))
        return results


@dataclass
class FetchReport:
    """Summary of a fetch run."""

    quran_verses: int
    collections: list[CollectionResult]
    output_dir: Path
    duration: float = 0.0

    @property
    def total_hadiths(self) -> int:
        return sum(r.count for r in self.collections)

    @property
    def failed_collections(self) -> list[str]:
        return [r.collection.display_name for r in self.collections if r.error]


def fetch_all(
    raw_dir: Path | str,
    quran_source: QuranSource,
    hadith_source: HadithSource,
) -> FetchReport:
    """
    Fetch the Quran and every hadith collection into raw_dir.

    Raises:
        FetchError: If both Quran sources fail
    """
    raw_dir = Path(raw_dir)
    raw_dir.mkdir(parents=True, exist_ok=True)
    start = time.time()

    logger.info("Fetching complete Quran data...")
    verses = quran_source.fetch()
    _save(raw_dir / QURAN_FILE, verses)

    logger.info("Fetching hadith collections...")
    results = hadith_source.fetch_all()
    for result in results:
        if not result.error:
            _save(raw_dir / result.collection.raw_file, result.hadiths)

    summary = {
        "fetchedAt": datetime.now(timezone.utc).isoformat(),
        "collections": [
            {"name": r.collection.display_name, "count": r.count, "error": r.error}
            for r in results
        ],
        "totalHadiths": sum(r.count for r in results),
    }
    _save(raw_dir / HADITH_SUMMARY_FILE, summary)

    report = FetchReport(
        quran_verses=len(verses),
        collections=results,
        output_dir=raw_dir,
        duration=time.time() - start,
    )
    ok = len(results) - len(report.failed_collections)
    logger.info(
        f"Fetch complete: {report.quran_verses} verses, {report.total_hadiths} hadiths "
        f"({ok}/{len(results)} collections) in {report.duration:.1f}s"
    )
    return report


def _save(path: Path, data: Any):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    logger.debug(f"Saved: {path.name}")


def _chapter_name(chapter_id: int) -> str:
    if 1 <= chapter_id <= len(CHAPTER_NAMES):
        return CHAPTER_NAMES[chapter_id - 1]
    return f"Chapter {chapter_id}"


def _verse_map(payload: Any) -> dict[int, dict[int, str]]:
    """
    Index an edition payload by chapter and verse.

    Accepts the nested ``{"chapter": {"1": {"1": text}}}`` layout and the
    flat ``{"quran": [{"chapter", "verse", "text"}]}`` layout.
    """
    if not isinstance(payload, dict):
        return {}

    verses: dict[int, dict[int, str]] = {}
    nested = payload.get("chapter")
    if isinstance(nested, dict):
        for chapter_id, chapter in nested.items():
            if isinstance(chapter, dict):
                verses[int(chapter_id)] = {int(v): text for v, text in chapter.items()}
        return verses

    for entry in payload.get("quran") or []:
        try:
            chapter_id, verse_number = int(entry["chapter"]), int(entry["verse"])
        except (KeyError, TypeError, ValueError):
            continue
        verses.setdefault(chapter_id, {})[verse_number] = entry.get("text", "")
    return verses
