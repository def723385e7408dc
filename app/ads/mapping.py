"""
Mapping from a scraped ad-library record to an `ads` table row: date normalisation, page name derivation,
media URL selection and storage path naming.
"""
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

# Fields that, when empty on an existing row, trigger a full overwrite instead of a storage-path patch.
ENSURE_FIELDS = (
    "cta_text", "cta_type", "publisher_platform", "text", "caption", "link_url", "page_categories",
    "total_active_time", "url", "ad_library_url", "title", "cards_json", "cards_count",
    "competitor_niche", "creative_json_full",
)

EXISTING_COLUMNS = "ad_archive_id, storage_path, video_storage_path, " + ", ".join(ENSURE_FIELDS)

_DATE_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%Y-%m-%d", "%m/%d/%Y", "%d.%m.%Y")


def _iso_utc(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_iso_date(value: Any) -> Optional[str]:
    """Normalise a date-ish value (datetime, date, epoch milliseconds, or string) to ISO-8601 UTC; None when unparseable."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _iso_utc(value)
    if isinstance(value, date):
        return _iso_utc(datetime(value.year, value.month, value.day))
    if isinstance(value, (int, float)):
        try:
            return _iso_utc(datetime.fromtimestamp(value / 1000.0, tz=timezone.utc))
        except (OverflowError, OSError, ValueError):
            return None
    s = str(value).strip()
    if not s:
        return None
    try:
        return _iso_utc(datetime.fromisoformat(s.replace("Z", "+00:00")))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return _iso_utc(datetime.strptime(s, fmt))
        except ValueError:
            continue
    return None


def _get(obj: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


def _first(*values: Any) -> Any:
    for v in values:
        if v:
            return v
    return None


def derive_page_name(item: Dict[str, Any], snapshot: Dict[str, Any]) -> str:
    """Page name is a NOT NULL column: try the usual advertiser fields, then the URL host, then 'unknown'."""
    candidates = (
        item.get("page_name"),
        item.get("advertiser_name"),
        item.get("advertiser"),
        snapshot.get("page_name"),
        snapshot.get("advertiser_name"),
        _get(snapshot, "page", "name"),
        _get(item, "page", "name"),
        _get(item, "ad", "advertiser_name"),
    )
    for c in candidates:
        if isinstance(c, str) and c.strip():
            return c.strip()
    url = _first(item.get("url"), snapshot.get("url"), item.get("ad_url"))
    if url:
        host = urlparse(str(url)).hostname
        if host:
            return host[4:] if host.startswith("www.") else host
    return "unknown"


@dataclass
class MediaPlan:
    """Which media to fetch for an ad: a video plus its preview image, or a single image."""

    is_video: bool
    video_url: Optional[str] = None
    preview_url: Optional[str] = None
    image_url: Optional[str] = None


def _url_from(entry: Any, keys: tuple) -> Optional[str]:
    if isinstance(entry, str):
        return entry or None
    if isinstance(entry, dict):
        return _first(*(entry.get(k) for k in keys))
    return None


def plan_media(snapshot: Dict[str, Any]) -> MediaPlan:
    """Video ads use the first video (hd, sd, then url) and its preview; image ads use the first image, else the first card."""
    videos = snapshot.get("videos")
    if isinstance(videos, list) and videos:
        video = videos[0] if isinstance(videos[0], dict) else {}
        return MediaPlan(
            is_video=True,
            video_url=_first(video.get("video_hd_url"), video.get("video_sd_url"), video.get("url")),
            preview_url=video.get("video_preview_image_url") or None,
        )
    image_url = None
    images = snapshot.get("images")
    if isinstance(images, list) and images:
        image_url = _url_from(images[0], ("resized_image_url", "url", "image_url"))
    cards = snapshot.get("cards")
    if not image_url and isinstance(cards, list) and cards:
        image_url = _url_from(cards[0], ("resized_image_url", "original_image_url", "image_url", "url"))
    return MediaPlan(is_video=False, image_url=image_url)


def image_extension(content_type: str) -> str:
    ct = (content_type or "").lower()
    if "png" in ct:
        return "png"
    if "webp" in ct:
        return "webp"
    if "gif" in ct:
        return "gif"
    return "jpg"


def storage_key(business_slug: str, ad_archive_id: Any, ext: str, suffix: str = "") -> str:
    return f"{business_slug}/{ad_archive_id}{suffix}.{ext}"


def _join_categories(value: Any) -> Optional[str]:
    if not value:
        return None
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return str(value)


def build_ad_row(
    item: Dict[str, Any],
    business_id: Any,
    *,
    storage_path: Optional[str],
    video_storage_path: Optional[str],
    is_video: bool,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Build the full ads row for an imported record, including the original record as creative_json_full."""
    snapshot = item.get("snapshot") if isinstance(item.get("snapshot"), dict) else {}
    cards: Optional[List[Any]] = _first(snapshot.get("cards"), item.get("cards"))
    if isinstance(cards, list):
        cards_count: Any = len(cards)
    else:
        cards_count = item.get("cards_count")

    return {
        "business_id": business_id,
        "ad_archive_id": item.get("ad_archive_id"),
        "display_format": "VIDEO" if is_video else "IMAGE",
        "storage_path": storage_path,
        "video_storage_path": video_storage_path,
        "creative_json_full": item,
        "start_date_formatted": to_iso_date(
            _first(item.get("start_date_formatted"), item.get("start_date"), snapshot.get("start_date"))
        ),
        "end_date_formatted": to_iso_date(
            _first(item.get("end_date_formatted"), item.get("end_date"), snapshot.get("end_date"))
        ),
        "page_name": derive_page_name(item, snapshot),
        "created_at": _iso_utc(now or datetime.now(timezone.utc)),
        "cta_text": _first(item.get("cta_text"), _get(snapshot, "cta", "text"), _get(item, "cta", "text"), _get(item, "call_to_action", "text")),
        "cta_type": _first(item.get("cta_type"), _get(snapshot, "cta", "type"), _get(item, "cta", "type")),
        "publisher_platform": _first(item.get("publisher_platform"), item.get("platform"), snapshot.get("platform")),
        "text": _first(item.get("text"), item.get("body"), snapshot.get("text"), item.get("description")),
        "caption": _first(item.get("caption"), snapshot.get("caption"), item.get("caption_text")),
        "link_url": _first(item.get("link_url"), item.get("link"), item.get("url"), snapshot.get("url")),
        "page_categories": _join_categories(_first(item.get("page_categories"), snapshot.get("page_categories"))),
        "total_active_time": _first(item.get("total_active_time"), item.get("total_active")),
        "url": _first(item.get("url"), snapshot.get("url")),
        "ad_library_url": _first(item.get("ad_library_url"), item.get("ad_library_link")),
        "title": _first(item.get("title"), item.get("headline"), snapshot.get("title")),
        "cards_json": cards,
        "cards_count": cards_count,
        "competitor_niche": _first(item.get("competitor_niche"), item.get("niche")),
    }


def has_missing_fields(existing: Dict[str, Any]) -> bool:
    return any(existing.get(f) in (None, "") for f in ENSURE_FIELDS)


def storage_patch(existing: Dict[str, Any], storage_path: Optional[str], video_storage_path: Optional[str]) -> Dict[str, Any]:
    """Only fill storage paths the existing row lacks."""
    patch: Dict[str, Any] = {}
    if not existing.get("storage_path") and storage_path:
        patch["storage_path"] = storage_path
    if not existing.get("video_storage_path") and video_storage_path:
        patch["video_storage_path"] = video_storage_path
    return patch
