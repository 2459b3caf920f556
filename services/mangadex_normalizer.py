"""Map raw MangaDex manga payloads onto the canonical ``manga`` row shape.

Everything here is pure: the same raw payload always produces the same
``NormalizedManga``.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import config
from utils.text import clean_text, dedupe_casefold, slugify


ENGLISH_LANGS = ("en",)
NATIVE_LANGS = ("ja", "jp")
COVER_LOCALE_PREFERENCE = ("ja", "en")
COVER_SIZE_SUFFIXES = ("", ".512.jpg", ".256.jpg")

STATUS_ONGOING = "ongoing"
STATUS_COMPLETED = "completed"
STATUS_HIATUS = "hiatus"
STATUS_CANCELLED = "cancelled"

STATUS_SYNONYMS = {
    "ongoing": STATUS_ONGOING,
    "releasing": STATUS_ONGOING,
    "publishing": STATUS_ONGOING,
    "serializing": STATUS_ONGOING,
    "completed": STATUS_COMPLETED,
    "complete": STATUS_COMPLETED,
    "finished": STATUS_COMPLETED,
    "ended": STATUS_COMPLETED,
    "hiatus": STATUS_HIATUS,
    "on hiatus": STATUS_HIATUS,
    "paused": STATUS_HIATUS,
    "cancelled": STATUS_CANCELLED,
    "canceled": STATUS_CANCELLED,
    "discontinued": STATUS_CANCELLED,
    "abandoned": STATUS_CANCELLED,
}

TAG_GROUPS_KEPT = ("genre", "theme")
SNAPSHOT_RELATIONSHIP_TYPES = ("author", "artist", "cover_art")


@dataclass
class NormalizedManga:
    external_id: str
    slug: str
    title: str
    title_english: Optional[str]
    title_native: Optional[str]
    title_preferred: Optional[str]
    description: Optional[str]
    status: Optional[str]
    publication_year: Optional[int]
    genres: List[str] = field(default_factory=list)
    themes: List[str] = field(default_factory=list)
    merged_genres: List[str] = field(default_factory=list)
    cover_candidates: List[str] = field(default_factory=list)
    authors: List[Dict[str, Any]] = field(default_factory=list)
    artists: List[Dict[str, Any]] = field(default_factory=list)
    source: str = config.MANGADEX_SOURCE
    snapshot: Dict[str, Any] = field(default_factory=dict)


def _attributes(manga: Dict[str, Any]) -> Dict[str, Any]:
    attributes = manga.get("attributes") if isinstance(manga, dict) else None
    return attributes if isinstance(attributes, dict) else {}


def _relationships(manga: Dict[str, Any]) -> List[Dict[str, Any]]:
    rels = manga.get("relationships") if isinstance(manga, dict) else None
    if not isinstance(rels, list):
        return []
    return [rel for rel in rels if isinstance(rel, dict)]


def pick_lang(values: Any, preferred: Sequence[str] = ENGLISH_LANGS, *, fallback_any: bool = True) -> Optional[str]:
    """Pick a localized string from a ``{lang: text}`` map.

    Languages in ``preferred`` are tried in order; with ``fallback_any`` the
    first non-empty entry is returned when none of them match.
    """
    if not isinstance(values, dict):
        return None
    for lang in preferred:
        text = clean_text(values.get(lang))
        if text:
            return text
    if fallback_any:
        for raw in values.values():
            text = clean_text(raw)
            if text:
                return text
    return None


def normalize_titles(manga: Dict[str, Any]) -> Dict[str, Optional[str]]:
    attributes = _attributes(manga)
    main_titles = attributes.get("title")

    title_en = pick_lang(main_titles, ENGLISH_LANGS, fallback_any=False)
    title_native = pick_lang(main_titles, NATIVE_LANGS, fallback_any=False)
    title_any = title_en or title_native or pick_lang(main_titles, ())

    alt_en = None
    for alt in attributes.get("altTitles") or []:
        alt_en = pick_lang(alt, ENGLISH_LANGS, fallback_any=False)
        if alt_en:
            break

    title_english = title_en or alt_en
    preferred = title_english or title_any or title_native

    return {
        "title": title_any or preferred or "Untitled",
        "title_english": title_english,
        "title_native": title_native,
        "title_preferred": preferred,
    }


def normalize_description(manga: Dict[str, Any]) -> Optional[str]:
    descriptions = _attributes(manga).get("description")
    return (
        pick_lang(descriptions, ENGLISH_LANGS, fallback_any=False)
        or pick_lang(descriptions, NATIVE_LANGS, fallback_any=False)
        or pick_lang(descriptions, ())
    )


def normalize_status(raw_status: Any) -> Optional[str]:
    text = clean_text(raw_status).lower().replace("_", " ")
    if not text:
        return None
    return STATUS_SYNONYMS.get(text)


def normalize_year(raw_year: Any) -> Optional[int]:
    if isinstance(raw_year, bool):
        return None
    if isinstance(raw_year, int):
        return raw_year
    if isinstance(raw_year, str) and raw_year.strip().isdigit():
        return int(raw_year.strip())
    return None


def split_tags(manga: Dict[str, Any]) -> Dict[str, List[str]]:
    """Split tags into genres and themes; tags in any other group are dropped."""
    buckets: Dict[str, List[str]] = {group: [] for group in TAG_GROUPS_KEPT}
    for tag in _attributes(manga).get("tags") or []:
        if not isinstance(tag, dict):
            continue
        tag_attributes = tag.get("attributes") or {}
        group = clean_text(tag_attributes.get("group")).lower()
        if group not in buckets:
            continue
        name = pick_lang(tag_attributes.get("name"), ENGLISH_LANGS)
        if name:
            buckets[group].append(name)
    return {
        "genres": sorted(dedupe_casefold(buckets["genre"]), key=str.casefold),
        "themes": sorted(dedupe_casefold(buckets["theme"]), key=str.casefold),
    }


def merge_genres(*tag_lists: Sequence[str]) -> List[str]:
    merged: List[str] = []
    for tags in tag_lists:
        merged.extend(tags or [])
    return sorted(dedupe_casefold(merged), key=str.casefold)


def _cover_locale_rank(rel: Dict[str, Any]) -> int:
    locale = clean_text((rel.get("attributes") or {}).get("locale")).lower()
    if locale in COVER_LOCALE_PREFERENCE:
        return COVER_LOCALE_PREFERENCE.index(locale)
    return len(COVER_LOCALE_PREFERENCE)


def cover_candidates(manga: Dict[str, Any]) -> List[str]:
    """Ordered cover URLs, most preferred first.

    Each ``cover_art`` file is offered at full size and then as the two
    thumbnails the CDN generates, so a missing original still leaves options.
    """
    manga_id = clean_text(manga.get("id")) if isinstance(manga, dict) else ""
    if not manga_id:
        return []

    covers = [
        rel
        for rel in _relationships(manga)
        if rel.get("type") == "cover_art" and clean_text((rel.get("attributes") or {}).get("fileName"))
    ]
    # sorted() is stable, so upstream order breaks locale ties
    covers = sorted(covers, key=_cover_locale_rank)

    candidates: List[str] = []
    for rel in covers:
        file_name = clean_text(rel["attributes"]["fileName"])
        base = f"{config.MANGADEX_UPLOADS_URL}/covers/{quote(manga_id)}/{quote(file_name)}"
        for suffix in COVER_SIZE_SUFFIXES:
            url = base + suffix
            if url not in candidates:
                candidates.append(url)
    return candidates


def get_creators(manga: Dict[str, Any]) -> Dict[str, List[Dict[str, Any]]]:
    credits: Dict[str, List[Dict[str, Any]]] = {"author": [], "artist": []}
    seen: Dict[str, set] = {"author": set(), "artist": set()}
    for rel in _relationships(manga):
        role = rel.get("type")
        if role not in credits:
            continue
        name = clean_text((rel.get("attributes") or {}).get("name"))
        if not name or name.casefold() in seen[role]:
            continue
        seen[role].add(name.casefold())
        credits[role].append({"id": rel.get("id"), "name": name})
    return {"authors": credits["author"], "artists": credits["artist"]}


def build_slug(titles: Dict[str, Optional[str]], external_id: str) -> str:
    for key in ("title_preferred", "title_english", "title"):
        slug = slugify(titles.get(key))
        if slug:
            return slug
    return slugify(f"mangadex-{external_id}") or "mangadex"


def slim_snapshot(manga: Dict[str, Any]) -> Dict[str, Any]:
    attributes = _attributes(manga)
    return {
        "mangadex_id": manga.get("id"),
        "attributes": {
            "title": attributes.get("title") or {},
            "altTitles": attributes.get("altTitles") or [],
            "description": attributes.get("description") or {},
            "status": attributes.get("status"),
            "year": attributes.get("year"),
            "originalLanguage": attributes.get("originalLanguage"),
            "publicationDemographic": attributes.get("publicationDemographic"),
            "contentRating": attributes.get("contentRating"),
            "tags": [
                {
                    "id": tag.get("id"),
                    "group": (tag.get("attributes") or {}).get("group"),
                    "name": (tag.get("attributes") or {}).get("name") or {},
                }
                for tag in attributes.get("tags") or []
                if isinstance(tag, dict)
            ],
            "updatedAt": attributes.get("updatedAt"),
            "createdAt": attributes.get("createdAt"),
        },
        "relationships": [
            {"id": rel.get("id"), "type": rel.get("type"), "attributes": rel.get("attributes")}
            for rel in _relationships(manga)
            if rel.get("type") in SNAPSHOT_RELATIONSHIP_TYPES
        ],
    }


def normalize_manga(manga: Dict[str, Any]) -> NormalizedManga:
    external_id = clean_text(manga.get("id")) if isinstance(manga, dict) else ""
    if not external_id:
        raise ValueError("MangaDex record has no id")

    titles = normalize_titles(manga)
    tags = split_tags(manga)
    creators = get_creators(manga)
    candidates = cover_candidates(manga)

    normalized = NormalizedManga(
        external_id=external_id,
        slug=build_slug(titles, external_id),
        title=titles["title"],
        title_english=titles["title_english"],
        title_native=titles["title_native"],
        title_preferred=titles["title_preferred"],
        description=normalize_description(manga),
        status=normalize_status(_attributes(manga).get("status")),
        publication_year=normalize_year(_attributes(manga).get("year")),
        genres=tags["genres"],
        themes=tags["themes"],
        merged_genres=merge_genres(tags["genres"], tags["themes"]),
        cover_candidates=candidates,
        authors=creators["authors"],
        artists=creators["artists"],
    )

    snapshot = slim_snapshot(manga)
    snapshot["normalized"] = {
        key: value for key, value in asdict(normalized).items() if key not in ("snapshot", "source")
    }
    normalized.snapshot = snapshot
    return normalized
