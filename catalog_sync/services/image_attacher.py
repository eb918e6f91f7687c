from __future__ import annotations

import logging
import re
from pathlib import Path

from catalog_sync.models.catalog import META_GALLERY, META_THUMBNAIL_ID
from catalog_sync.store.base import CatalogStore

"""Attach product images from a media directory by SKU.

Files are matched by name: the SKU, then optionally a separator (space, _ or -)
followed by a number, then an image extension, e.g. ``ABC123.jpg``,
``ABC123_1.png``, ``ABC123-2.webp``. Ordering puts ``_1`` first, then the
unnumbered file, then ascending numbers. The first image becomes the
featured image and the remainder the gallery.
"""

__all__ = [
    "MediaDirectoryImageAttacher",
    "order_images",
]

logger = logging.getLogger(__name__)

_EXTENSIONS = "jpg|jpeg|png|webp|gif"


def _pattern_for(sku: str) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(sku)}(?:[\s_-]+(\d+))?\.({_EXTENSIONS})$", re.IGNORECASE)


def order_images(names: list[str], sku: str) -> list[str]:
    pattern = _pattern_for(sku)

    def sort_key(name: str) -> tuple[int, int, str]:
        match = pattern.match(name)
        number = match.group(1) if match else None
        if number is not None and int(number) == 1:
            return (0, 1, name)
        if number is None:
            return (1, 0, name)
        return (2, int(number), name)

    return sorted(names, key=sort_key)


class MediaDirectoryImageAttacher:
    def __init__(self, store: CatalogStore, media_dir: Path) -> None:
        self.store = store
        self.media_dir = Path(media_dir)

    def find_images(self, sku: str) -> list[str]:
        if not self.media_dir.is_dir():
            return []
        pattern = _pattern_for(sku)
        return [p.name for p in self.media_dir.iterdir() if p.is_file() and pattern.match(p.name)]

    def attach_gallery_from_sku(self, product_id: int, sku: str) -> None:
        sku = (sku or "").strip()
        if product_id <= 0 or not sku:
            return
        images = order_images(self.find_images(sku), sku)
        if not images:
            logger.info(f"No images found for SKU {sku}")
            return
        featured, gallery = images[0], images[1:]
        self.store.update_meta(product_id, META_THUMBNAIL_ID, featured)
        self.store.update_meta(product_id, META_GALLERY, ",".join(gallery))
        logger.info(f"Set featured image {featured} and gallery [{','.join(gallery)}] for product {product_id}")
