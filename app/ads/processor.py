"""
Per-item work for real ad imports: upload the creative's media to storage and save or patch the ads row.
A failing item is logged and counted; it never stops the run.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from app.ads.client import BackendError, SupabaseAdminClient
from app.ads.mapping import (
    EXISTING_COLUMNS,
    build_ad_row,
    has_missing_fields,
    image_extension,
    plan_media,
    storage_key,
    storage_patch,
)
from app.core.config import settings
from app.importer.models import ImportTask

logger = logging.getLogger(__name__)

MAX_ERROR_DETAILS = 10


class AdImportProcessor:
    """Imports one ad per process() call and keeps saved/updated/skipped/errors counters for the run summary.
    Why available: The IMPORT_PROCESSOR=ads work plugged into the import worker."""

    def __init__(self, task: ImportTask, log, client: SupabaseAdminClient, bucket: str = "creatives"):
        self.task = task
        self.log = log
        self.client = client
        self.bucket = bucket
        self.saved = 0
        self.updated = 0
        self.skipped = 0
        self.errors = 0
        self.error_details: List[Dict[str, Any]] = []
        self.business_slug = self._resolve_slug()

    @classmethod
    def from_settings(cls, task: ImportTask, log) -> "AdImportProcessor":
        return cls(task, log, SupabaseAdminClient.from_settings(), bucket=settings.creatives_bucket)

    def _resolve_slug(self) -> str:
        fallback = str(self.task.business_id)
        try:
            row = self.client.select_single("businesses", "slug", {"id": self.task.business_id})
        except BackendError as e:
            self.log(f"[WARN] business slug lookup failed, using id: {e}")
            return fallback
        return (row or {}).get("slug") or fallback

    def _fail(self, reason: str, message: str, **detail: Any) -> None:
        self.errors += 1
        if len(self.error_details) < MAX_ERROR_DETAILS:
            self.error_details.append({"reason": reason, **detail})
        self.log(f"[ERROR] {message}")

    # -------------------------
    # Media
    # -------------------------

    def _transfer(self, url: str, ad_archive_id: Any, kind: str, suffix: str = "") -> Optional[str]:
        """Download url and upload it under the business folder. Returns the storage path, or None after logging the failure."""
        try:
            data, content_type = self.client.download(url)
            ext = "mp4" if kind == "video" else image_extension(content_type)
            key = storage_key(self.business_slug, ad_archive_id, ext, suffix)
            self.client.upload(self.bucket, key, data, content_type)
        except BackendError as e:
            self.log(f"[ERROR] {kind} download/upload failed for {ad_archive_id}: {e}")
            return None
        self.log(f"uploaded {kind} for {ad_archive_id} -> {key}")
        return key

    def _upload_media(self, snapshot: Dict[str, Any], ad_archive_id: Any) -> Tuple[bool, Optional[str], Optional[str]]:
        plan = plan_media(snapshot)
        storage_path = video_storage_path = None
        if plan.is_video:
            if plan.video_url:
                video_storage_path = self._transfer(plan.video_url, ad_archive_id, "video")
            if plan.preview_url:
                storage_path = self._transfer(plan.preview_url, ad_archive_id, "preview", "_preview")
        elif plan.image_url:
            storage_path = self._transfer(plan.image_url, ad_archive_id, "image")
        return plan.is_video, storage_path, video_storage_path

    # -------------------------
    # Items
    # -------------------------

    def process(self, index: int, item: Any) -> None:
        position = index + 1
        try:
            self._import_item(position, item)
        except Exception as e:
            logger.warning("ad_import_item_failed task_id=%s item=%d", self.task.task_id, position, exc_info=True)
            self._fail("exception", f"item {position}: {e}", itemIndex=position)

    def _import_item(self, position: int, item: Any) -> None:
        if not isinstance(item, dict) or not item.get("ad_archive_id"):
            self._fail("missing_ad_archive_id", f"missing ad_archive_id at index {position}", itemIndex=position)
            return
        ad_archive_id = item["ad_archive_id"]

        existing = None
        try:
            existing = self.client.select_single("ads", EXISTING_COLUMNS, {"ad_archive_id": ad_archive_id})
        except BackendError as e:
            self.log(f"[WARN] checking existing failed: {e}")

        if existing and (existing.get("storage_path") or existing.get("video_storage_path")):
            self.skipped += 1
            self.log(f"[SKIP] already exists with media: {ad_archive_id}")
            return

        snapshot = item.get("snapshot") if isinstance(item.get("snapshot"), dict) else {}
        is_video, storage_path, video_storage_path = self._upload_media(snapshot, ad_archive_id)
        if not storage_path and not video_storage_path:
            self._fail("no_media_uploaded", f"no media uploaded for {ad_archive_id}", ad_archive_id=ad_archive_id)
            return

        row = build_ad_row(
            item,
            self.task.business_id,
            storage_path=storage_path,
            video_storage_path=video_storage_path,
            is_video=is_video,
        )

        if existing is None:
            try:
                self.client.upsert("ads", [row])
            except BackendError as e:
                self._fail("db_upsert_failed", f"DB upsert failed for {ad_archive_id}: {e}", ad_archive_id=ad_archive_id)
                return
            self.saved += 1
            self.log(f"[UPSERTED] {ad_archive_id}")
            return

        if has_missing_fields(existing):
            patch, label = row, "[UPDATE_FULL]"
        else:
            patch, label = storage_patch(existing, storage_path, video_storage_path), "[UPDATE]"
            if not patch:
                self.skipped += 1
                self.log(f"[SKIP] {ad_archive_id} (no missing fields)")
                return
        try:
            self.client.update("ads", patch, {"ad_archive_id": ad_archive_id})
        except BackendError as e:
            self._fail("db_update_failed", f"DB update failed for {ad_archive_id}: {e}", ad_archive_id=ad_archive_id)
            return
        self.updated += 1
        self.log(f"{label} {ad_archive_id}" + ("" if label == "[UPDATE_FULL]" else f" (patched {len(patch)} fields)"))

    def summary(self) -> Optional[Dict[str, Any]]:
        return {
            "saved": self.saved,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "error_details": list(self.error_details),
        }
