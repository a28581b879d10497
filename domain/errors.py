# domain/errors.py - Error taxonomy shared by use cases and adapters
from enum import Enum


class DirectoryError(Exception):
    """Base class for every error the directory surfaces to callers"""
    code = "directory_error"


class InvalidRequest(DirectoryError):
    code = "invalid_request"


class LocationNotFound(DirectoryError):
    code = "location_not_found"

    def __init__(self, location_id: str):
        super().__init__(f"Location {location_id} not found")
        self.location_id = location_id


class PhotoNotFound(DirectoryError):
    code = "photo_not_found"

    def __init__(self, photo_url: str):
        super().__init__(f"Photo {photo_url} is not attached to this location")
        self.photo_url = photo_url


class OriginGeocodeFailed(DirectoryError):
    """The search origin could not be resolved, so there is no reference point"""
    code = "origin_geocode_failed"


class SearchTimeout(DirectoryError):
    code = "search_timeout"


class CatalogUnavailable(DirectoryError):
    code = "catalog_unavailable"


class StorageUnavailable(DirectoryError):
    code = "storage_unavailable"


class GeocodeFailureReason(str, Enum):
    NOT_FOUND = "not_found"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    INVALID_INPUT = "invalid_input"


class GeocodeError(Exception):
    """Raised by geocoders. Only fatal to a search when it concerns the origin."""

    def __init__(self, reason: GeocodeFailureReason, address: str, message: str = ""):
        self.reason = reason
        self.address = address
        super().__init__(message or f"Geocoding failed ({reason.value}) for address {address!r}")
