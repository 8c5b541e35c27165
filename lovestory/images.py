"""Image attachments: validation, batch upload, cleanup, URL-to-path mapping.

An image has no row of its own. It lives in object storage and is owned by
exactly one memory through that memory's ``images`` URL list; the memory
repository and this module together make sure nothing is left behind in
storage once no memory references it.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence
from urllib.parse import unquote, urlparse

from .protocols import ObjectStorage, UnauthorizedError, UploadError, ValidationError
from .types import ImageFile

logger = logging.getLogger(__name__)

MAX_IMAGES_PER_MEMORY = 10
MAX_IMAGE_BYTES = 5 * 1024 * 1024  # 5MB
ALLOWED_IMAGE_TYPES = frozenset(
    {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}
)

# Public URLs look like <host>/storage/v1/object/public/<bucket>/<path>
_SEGMENTS_AFTER_STORAGE = 5


@dataclass
class UploadResult:
    url: str
    path: str


def path_from_url(url: Optional[str]) -> Optional[str]:
    """Reverse-map a public storage URL to its path inside the bucket.

    Returns None (never raises) when the URL is malformed, has no
    ``storage`` segment, or names no object.
    """
    if not isinstance(url, str) or not url:
        return None
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None

    parts = parsed.path.split("/")
    if "storage" not in parts:
        return None
    remainder = "/".join(parts[parts.index("storage") + _SEGMENTS_AFTER_STORAGE :])
    return unquote(remainder) or None


def paths_from_urls(urls: Iterable[str]) -> List[str]:
    """Map URLs to storage paths, dropping the ones that don't map."""
    paths = []
    for url in urls:
        path = path_from_url(url)
        if path is not None:
            paths.append(path)
    return paths


class ImageAssetManager:
    """Validates, uploads and deletes image attachments in one bucket."""

    def __init__(
        self,
        storage: ObjectStorage,
        *,
        max_files: int = MAX_IMAGES_PER_MEMORY,
        max_bytes: int = MAX_IMAGE_BYTES,
        allowed_types: Iterable[str] = ALLOWED_IMAGE_TYPES,
    ):
        self.storage = storage
        self.max_files = max_files
        self.max_bytes = max_bytes
        self.allowed_types = frozenset(allowed_types)

    # ── Validation ────────────────────────────────────────────

    def validation_errors(self, files: Sequence[ImageFile], existing_count: int = 0) -> List[str]:
        """Every violation in ``files``; empty when the batch is acceptable.

        ``existing_count`` is how many images the memory keeps alongside
        ``files``; the per-memory limit applies to the total.
        """
        errors: List[str] = []
        if existing_count + len(files) > self.max_files:
            errors.append(f"You can upload a maximum of {self.max_files} images per memory")

        max_mb = self.max_bytes // (1024 * 1024)
        for index, image in enumerate(files, start=1):
            if image.content_type not in self.allowed_types:
                errors.append(
                    f"File {index}: Please select a valid image file (JPEG, PNG, GIF, or WebP)"
                )
            if image.size > self.max_bytes:
                errors.append(f"File {index}: Image file size must be less than {max_mb}MB")
        return errors

    def validate(self, files: Sequence[ImageFile], existing_count: int = 0) -> None:
        """Raise ValidationError carrying all violations at once."""
        errors = self.validation_errors(files, existing_count)
        if errors:
            raise ValidationError(errors)

    # ── Upload ────────────────────────────────────────────────

    @staticmethod
    def new_path(owner_id: str, image: ImageFile) -> str:
        """Collision-resistant path under the owner's folder.

        The owner folder prefix is what storage access policies key on.
        """
        millis = int(time.time() * 1000)
        return f"{owner_id}/{uuid.uuid4().hex[:12]}-{millis}.{image.extension}"

    async def _upload_one(self, path: str, image: ImageFile) -> UploadResult:
        stored = await self.storage.upload(path, image.data, image.content_type)
        return UploadResult(url=self.storage.public_url(stored), path=stored)

    async def upload_all(self, files: Sequence[ImageFile], owner_id: Optional[str]) -> List[UploadResult]:
        """Upload every file concurrently; all-or-nothing.

        All uploads are joined before returning. If any fails, the ones that
        did succeed are removed again and UploadError is raised, so none of
        the batch's URLs may be referenced by a memory.
        """
        if not files:
            return []
        if not owner_id:
            raise UnauthorizedError("User must be authenticated to upload images")

        paths = [self.new_path(owner_id, image) for image in files]
        outcomes = await asyncio.gather(
            *(self._upload_one(path, image) for path, image in zip(paths, files)),
            return_exceptions=True,
        )

        for outcome in outcomes:
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome

        failures = [outcome for outcome in outcomes if isinstance(outcome, Exception)]
        if failures:
            stored = [outcome.path for outcome in outcomes if isinstance(outcome, UploadResult)]
            logger.warning(
                f"{len(failures)} of {len(files)} image uploads failed for {owner_id}; "
                f"discarding {len(stored)} stored siblings"
            )
            await self.delete_all(stored)
            raise UploadError(
                f"Failed to upload {len(failures)} of {len(files)} images: {failures[0]}",
                failures=[str(failure) for failure in failures],
            ) from failures[0]

        logger.debug(f"Uploaded {len(outcomes)} images for {owner_id}")
        return list(outcomes)

    # ── Cleanup ───────────────────────────────────────────────

    async def delete_all(self, paths: Sequence[str]) -> bool:
        """Best-effort batch delete. Failures are logged, never raised."""
        if not paths:
            return True
        try:
            await self.storage.remove(list(paths))
        except Exception as e:
            logger.warning(f"Failed to delete {len(paths)} images from storage: {e}")
            return False
        return True

    async def delete_urls(self, urls: Iterable[str]) -> bool:
        """Best-effort delete of the objects behind public URLs."""
        return await self.delete_all(paths_from_urls(urls))
