from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence
from uuid import uuid4

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from marketplace.config import Config
from marketplace.errors import Internal, ValidationError

logger = logging.getLogger(__name__)

_ABSOLUTE_PREFIXES = ("http://", "https://", "data:", "//")


def _join_base(reference: str, base_url: str) -> str:
    if reference.startswith(_ABSOLUTE_PREFIXES):
        return reference
    return f"{base_url.rstrip('/')}/{reference.lstrip('/')}"


def resolve_image_url(
    source: Optional[Mapping[str, Any]],
    base_url: Optional[str] = None,
    placeholder: Optional[str] = None,
) -> str:
    """Pick the display image for a product-like record.

    Priority: ``imageUrl``, then the first of ``images``, then ``image``,
    then the placeholder. Relative references are joined to ``base_url``.
    """
    base_url = base_url or Config.BASE_URL
    placeholder = placeholder or Config.PLACEHOLDER_IMAGE_URL
    if not source:
        return placeholder

    candidates = [source.get("imageUrl")]
    images = source.get("images")
    if isinstance(images, (list, tuple)) and images:
        candidates.append(images[0])
    candidates.append(source.get("image"))

    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return _join_base(candidate.strip(), base_url)
    return placeholder


def resolve_image_urls(references: Iterable[str], base_url: Optional[str] = None) -> List[str]:
    base_url = base_url or Config.BASE_URL
    return [_join_base(ref, base_url) for ref in references if isinstance(ref, str) and ref.strip()]


class ImageStorage:
    """Stores uploaded product images on local disk under unique names."""

    def __init__(
        self,
        upload_dir: Optional[str] = None,
        public_prefix: Optional[str] = None,
        max_images: Optional[int] = None,
        allowed_extensions: Optional[Sequence[str]] = None,
    ) -> None:
        self.upload_dir = Path(upload_dir or Config.UPLOAD_DIR)
        self.public_prefix = (public_prefix or Config.UPLOAD_SUBDIR).strip("/")
        self.max_images = max_images or Config.MAX_PRODUCT_IMAGES
        self.allowed_extensions = tuple(ext.lower() for ext in (allowed_extensions or Config.ALLOWED_IMAGE_EXTENSIONS))

    def allowed(self, filename: str) -> bool:
        extension = os.path.splitext(filename)[1].lower().lstrip(".")
        return bool(extension) and extension in self.allowed_extensions

    def validate(self, files: Sequence[FileStorage], existing_count: int = 0) -> List[FileStorage]:
        uploads = [f for f in files if f is not None and getattr(f, "filename", "")]
        if existing_count + len(uploads) > self.max_images:
            raise ValidationError(f"A product can have at most {self.max_images} images.")
        for upload in uploads:
            filename = secure_filename(upload.filename)
            if not filename or not self.allowed(filename):
                raise ValidationError(
                    "Unsupported image format. Allowed: " + ", ".join(self.allowed_extensions) + "."
                )
        return uploads

    def save_all(self, files: Sequence[FileStorage], existing_count: int = 0) -> List[str]:
        """Validate and store uploads; returns public relative references."""
        uploads = self.validate(files, existing_count)
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        saved: List[str] = []
        for upload in uploads:
            extension = os.path.splitext(secure_filename(upload.filename))[1].lower()
            unique_name = f"{uuid4().hex}{extension}"
            try:
                upload.save(self.upload_dir / unique_name)
            except OSError as exc:
                self.remove(saved)
                logger.error("Could not store uploaded image", extra={"error": exc.__class__.__name__})
                raise Internal("We could not store the uploaded image. Please try again.") from exc
            saved.append(f"{self.public_prefix}/{unique_name}")
        return saved

    def remove(self, references: Iterable[str]) -> None:
        """Delete stored files for ``references``; missing files are ignored."""
        prefix = f"{self.public_prefix}/"
        for reference in references or []:
            if not isinstance(reference, str) or not reference.startswith(prefix):
                continue
            name = secure_filename(reference[len(prefix):])
            if not name:
                continue
            try:
                (self.upload_dir / name).unlink()
            except FileNotFoundError:
                continue
            except OSError:
                logger.warning("Could not remove product image", extra={"image": name})
