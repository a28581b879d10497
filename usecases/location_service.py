# usecases/location_service.py - Directory management on top of the catalog and photo storage
import logging
import re
from dataclasses import fields
from typing import Any, Dict, List, Optional, Sequence, Tuple

from domain.errors import (
    CatalogUnavailable, InvalidRequest, LocationNotFound, PhotoNotFound, StorageUnavailable
)
from domain.models import CatalogRepository, FilterCriteria, Location, ObjectStorage
from usecases.criteria import compile_criteria

logger = logging.getLogger(__name__)

# Public route names -> stored category tokens
CATEGORY_ALIASES: Dict[str, str] = {
    "drink": "prendre_un_verre",
    "eat": "manger_ensemble",
    "fun": "partager_une_activité",
}

# (payload, content type)
Photo = Tuple[bytes, str]

_HREF_PATTERN = re.compile(r"""href=["']([^"']+)["']""")
_IMMUTABLE_FIELDS = {"id", "photos"}
_EDITABLE_FIELDS = {f.name for f in fields(Location)} - _IMMUTABLE_FIELDS
_REQUIRED_FIELDS = ("name", "address", "category")
_LIST_FIELDS = ("keywords", "filters", "media_links")


def extract_href(link: str) -> Optional[str]:
    """Return the href of an HTML anchor, or the link itself when it is already a plain URL"""
    if "<" not in link:
        return link.strip() or None
    match = _HREF_PATTERN.search(link)
    return match.group(1) if match else None


class LocationService:
    def __init__(
        self,
        catalog: CatalogRepository,
        storage: ObjectStorage,
        max_photo_bytes: int = 10 * 1024 * 1024,
    ):
        self.catalog = catalog
        self.storage = storage
        self.max_photo_bytes = max_photo_bytes

    async def create(self, data: Dict[str, Any], photos: Sequence[Photo] = ()) -> Location:
        for required in _REQUIRED_FIELDS:
            if not str(data.get(required) or "").strip():
                raise InvalidRequest(f"Field '{required}' is required")
        unknown = set(data) - _EDITABLE_FIELDS
        if unknown:
            raise InvalidRequest(f"Unknown fields: {', '.join(sorted(unknown))}")
        self._validate_photos(photos)

        location = Location(**self._clean(data))
        location.photos = await self._upload_all(photos)
        try:
            saved = await self._catalog_call(self.catalog.save(location))
        except CatalogUnavailable:
            await self._discard_photos(location.photos, "unsaved location")
            raise
        logger.info(f"Created location {saved.id} ({saved.name}) with {len(saved.photos)} photos")
        return saved

    async def list_all(self) -> List[Location]:
        return await self.browse(FilterCriteria())

    async def browse(self, criteria: FilterCriteria) -> List[Location]:
        return await self._catalog_call(self.catalog.find(compile_criteria(criteria)))

    async def get(self, location_id: str) -> Location:
        location = await self._catalog_call(self.catalog.find_by_id(location_id))
        if location is None:
            raise LocationNotFound(location_id)
        return location

    async def update(
        self, location_id: str, changes: Dict[str, Any], photos: Sequence[Photo] = ()
    ) -> Location:
        """Apply a partial update; only provided fields change and new photos are appended"""
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise InvalidRequest(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        for required in _REQUIRED_FIELDS:
            if required in changes and not str(changes[required] or "").strip():
                raise InvalidRequest(f"Field '{required}' cannot be blank")
        self._validate_photos(photos)

        location = await self.get(location_id)
        for name, value in self._clean(changes).items():
            setattr(location, name, value)
        uploaded = await self._upload_all(photos)
        location.photos.extend(uploaded)
        try:
            return await self._catalog_call(self.catalog.save(location))
        except CatalogUnavailable:
            await self._discard_photos(uploaded, location_id)
            raise

    async def delete(self, location_id: str) -> None:
        location = await self.get(location_id)
        await self._catalog_call(self.catalog.delete(location_id))
        logger.info(f"Deleted location {location_id}")
        await self._discard_photos(location.photos, location_id)

    async def add_photo(self, location_id: str, data: bytes, content_type: str) -> Location:
        return await self.update(location_id, {}, [(data, content_type)])

    async def remove_photo(self, location_id: str, photo_url: str) -> Location:
        location = await self.get(location_id)
        if photo_url not in location.photos:
            raise PhotoNotFound(photo_url)
        await self.storage.delete(photo_url)
        location.photos.remove(photo_url)
        return await self._catalog_call(self.catalog.save(location))

    def _validate_photos(self, photos: Sequence[Photo]) -> None:
        for data, content_type in photos:
            if not data:
                raise InvalidRequest("Photo payload is empty")
            if len(data) > self.max_photo_bytes:
                raise InvalidRequest(f"Photo exceeds {self.max_photo_bytes} bytes")
            if not (content_type or "").startswith("image/"):
                raise InvalidRequest(f"Unsupported content type {content_type!r}")

    async def _upload_all(self, photos: Sequence[Photo]) -> List[str]:
        urls: List[str] = []
        try:
            for data, content_type in photos:
                urls.append(await self.storage.upload(data, content_type))
        except StorageUnavailable:
            await self._discard_photos(urls, "failed upload batch")
            raise
        return urls

    async def _discard_photos(self, urls: Sequence[str], owner: str) -> None:
        """Best-effort removal; a storage outage only leaves orphaned files behind"""
        for url in urls:
            try:
                await self.storage.delete(url)
            except StorageUnavailable as e:
                logger.warning(f"Could not delete photo {url} of {owner}: {e}")

    def _clean(self, data: Dict[str, Any]) -> Dict[str, Any]:
        cleaned = dict(data)
        for name in _LIST_FIELDS:
            if name in cleaned and cleaned[name] is None:
                cleaned[name] = []
        if "media_links" in cleaned:
            links = [extract_href(link) for link in cleaned["media_links"] if link]
            cleaned["media_links"] = [link for link in links if link]
        for name in ("keywords", "filters"):
            if name in cleaned:
                cleaned[name] = [v.strip() for v in cleaned[name] if v and v.strip()]
        if "description" in cleaned and cleaned["description"] is None:
            cleaned["description"] = ""
        if "hours" in cleaned and cleaned["hours"] is None:
            cleaned["hours"] = {}
        return cleaned

    async def _catalog_call(self, awaitable):
        try:
            return await awaitable
        except CatalogUnavailable:
            raise
        except Exception as e:
            logger.error(f"Catalog operation failed: {e}")
            raise CatalogUnavailable("Location catalog is unavailable") from e
