# adapters/api.py - FastAPI routes for the location directory and nearby search
from fastapi import FastAPI, Depends, File, Query, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field, ValidationError
from starlette.datastructures import UploadFile as StarletteUploadFile
from typing import Any, Dict, List, Optional, Tuple, Type
import json
import time
import logging

from config import settings
from domain.errors import (
    CatalogUnavailable, DirectoryError, InvalidRequest, LocationNotFound, OriginGeocodeFailed,
    PhotoNotFound, SearchTimeout, StorageUnavailable,
)
from domain.models import FilterCriteria, Location, RankedResult, SearchCriteria
from services.directory import DirectoryServices, get_directory_services
from usecases.location_service import CATEGORY_ALIASES

# Set up logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

FORM_LIST_FIELDS = ("keywords", "filters", "media_links")

ERROR_STATUS = {
    InvalidRequest: status.HTTP_400_BAD_REQUEST,
    LocationNotFound: status.HTTP_404_NOT_FOUND,
    PhotoNotFound: status.HTTP_404_NOT_FOUND,
    OriginGeocodeFailed: status.HTTP_502_BAD_GATEWAY,
    CatalogUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    StorageUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    SearchTimeout: status.HTTP_504_GATEWAY_TIMEOUT,
}

# Pydantic schemas
class LocationCreate(BaseModel):
    name: str = Field(..., description="Display name")
    address: str = Field(..., description="Postal address, used for geocoding")
    category: str = Field(..., description="Place category token, e.g. 'prendre_un_verre'")
    description: str = ""
    postal_code: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    price_range: Optional[str] = None
    filters: List[str] = Field(default_factory=list, description="Attribute tags, e.g. 'decor:cozy'")
    tips: Optional[str] = None
    social_media: Optional[str] = None
    media_links: List[str] = Field(default_factory=list, description="URLs or HTML anchors")
    hours: Dict[str, Any] = Field(default_factory=dict)

class LocationUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    postal_code: Optional[str] = None
    keywords: Optional[List[str]] = None
    price_range: Optional[str] = None
    filters: Optional[List[str]] = None
    tips: Optional[str] = None
    social_media: Optional[str] = None
    media_links: Optional[List[str]] = None
    hours: Optional[Dict[str, Any]] = None

class LocationResponse(BaseModel):
    id: str
    name: str
    address: str
    category: str
    description: str
    postal_code: Optional[str]
    keywords: List[str]
    price_range: Optional[str]
    filters: List[str]
    photos: List[str]
    tips: Optional[str]
    social_media: Optional[str]
    media_links: List[str]
    hours: Dict[str, Any]

    @classmethod
    def from_domain(cls, location: Location) -> "LocationResponse":
        return cls(**location.to_dict())

class NearbyLocationResponse(LocationResponse):
    distance_km: float = Field(..., description="Great-circle distance from the origin", ge=0)
    latitude: float
    longitude: float

    @classmethod
    def from_result(cls, result: RankedResult) -> "NearbyLocationResponse":
        return cls(**result.to_dict())

class NearbyResponse(BaseModel):
    results: List[NearbyLocationResponse]
    count: int
    processing_time_ms: float

class PhotoDeleteRequest(BaseModel):
    photo_url: str

class HealthResponseSchema(BaseModel):
    status: str
    timestamp: float
    database_connected: bool
    geocoder_configured: bool

# Create FastAPI app
app = FastAPI(
    title="Location Directory API",
    description="Location directory with attribute filtering and nearby search",
    version="1.0.0"
)

# Add middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/photos", StaticFiles(directory=settings.PHOTO_STORAGE_DIR, check_dir=False), name="photos")

# Performance monitoring middleware
@app.middleware("http")
async def performance_middleware(request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)

    if process_time > 0.5:
        logger.warning(f"Slow request: {request.url.path} took {process_time*1000:.2f}ms")

    return response

@app.exception_handler(DirectoryError)
async def directory_error_handler(request: Request, exc: DirectoryError):
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content={"error": exc.code, "detail": str(exc)})

@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unexpected error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal_error", "detail": "Internal server error"},
    )

def split_list(raw: Optional[str]) -> Optional[List[str]]:
    """Parse a comma-separated query parameter; blank items are dropped"""
    if raw is None:
        return None
    items = [item.strip() for item in raw.split(",") if item.strip()]
    return items or None

def parse_form_list(raw: str) -> List[str]:
    """Form list fields arrive as a JSON array or as comma-separated text"""
    if raw.strip().startswith("["):
        try:
            return json.loads(raw)
        except ValueError as e:
            raise InvalidRequest(f"Malformed list value: {raw[:100]}") from e
    return split_list(raw) or []

async def read_photos(files: List[StarletteUploadFile]) -> List[Tuple[bytes, str]]:
    photos = []
    for upload in files:
        data = await upload.read()
        # browsers send an empty part when no file was picked
        if not data and not upload.filename:
            continue
        photos.append((data, upload.content_type or ""))
    return photos

async def read_location_payload(request: Request, model: Type[BaseModel]):
    """Validated location fields and uploaded photos from a JSON body or a multipart form"""
    content_type = request.headers.get("content-type", "")
    photos: List[Tuple[bytes, str]] = []
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        raw: Dict[str, Any] = {}
        files = []
        for key, value in form.multi_items():
            if isinstance(value, StarletteUploadFile):
                if key == "photos":
                    files.append(value)
            elif key in FORM_LIST_FIELDS:
                raw[key] = parse_form_list(value)
            elif key == "hours":
                try:
                    raw[key] = json.loads(value) if value.strip() else {}
                except ValueError as e:
                    raise InvalidRequest("Field 'hours' must be a JSON object") from e
            else:
                raw[key] = value
        photos = await read_photos(files)
    else:
        try:
            raw = await request.json()
        except ValueError as e:
            raise InvalidRequest("Request body must be valid JSON") from e

    try:
        return model.model_validate(raw), photos
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False)) from e

# Health check endpoint
@app.get("/health", response_model=HealthResponseSchema)
async def health_check(services: DirectoryServices = Depends(get_directory_services)):
    """Health check endpoint"""
    db_healthy = await services.health_check()
    geocoder_info = services.get_info().get("geocoder", {})
    return HealthResponseSchema(
        status="healthy" if db_healthy else "unhealthy",
        timestamp=time.time(),
        database_connected=db_healthy,
        geocoder_configured=bool(geocoder_info.get("api_key_configured")),
    )

# Directory endpoints
@app.post("/items", response_model=LocationResponse, status_code=status.HTTP_201_CREATED)
async def create_location(request: Request, services: DirectoryServices = Depends(get_directory_services)):
    """Create a location from a JSON body, or from a multipart form with optional `photos` files"""
    fields, photos = await read_location_payload(request, LocationCreate)
    location = await services.locations.create(fields.model_dump(), photos)
    return LocationResponse.from_domain(location)

@app.get("/items", response_model=List[LocationResponse])
async def list_locations(services: DirectoryServices = Depends(get_directory_services)):
    return [LocationResponse.from_domain(loc) for loc in await services.locations.list_all()]

@app.get("/items/{location_id}", response_model=LocationResponse)
async def get_location(location_id: str, services: DirectoryServices = Depends(get_directory_services)):
    return LocationResponse.from_domain(await services.locations.get(location_id))

@app.put("/items/{location_id}", response_model=LocationResponse)
async def update_location(
    location_id: str,
    request: Request,
    services: DirectoryServices = Depends(get_directory_services),
):
    """Partial update from a JSON body or multipart form; uploaded `photos` are appended"""
    fields, photos = await read_location_payload(request, LocationUpdate)
    location = await services.locations.update(location_id, fields.model_dump(exclude_unset=True), photos)
    return LocationResponse.from_domain(location)

@app.delete("/items/{location_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_location(location_id: str, services: DirectoryServices = Depends(get_directory_services)):
    await services.locations.delete(location_id)

@app.post("/items/{location_id}/photos", response_model=LocationResponse)
async def upload_photos(
    location_id: str,
    photos: List[UploadFile] = File(..., description="One or more image files"),
    services: DirectoryServices = Depends(get_directory_services),
):
    location = await services.locations.update(location_id, {}, await read_photos(photos))
    return LocationResponse.from_domain(location)

@app.delete("/items/{location_id}/photo", response_model=LocationResponse)
async def delete_photo(
    location_id: str,
    payload: PhotoDeleteRequest,
    services: DirectoryServices = Depends(get_directory_services),
):
    location = await services.locations.remove_photo(location_id, payload.photo_url)
    return LocationResponse.from_domain(location)

# Filtering endpoints
@app.get("/filter-categories", response_model=List[LocationResponse])
async def filter_categories(
    place_category: Optional[str] = None,
    postal_code: Optional[str] = None,
    keywords: Optional[str] = Query(None, description="Comma-separated, any must match"),
    price_range: Optional[str] = None,
    filters: Optional[str] = Query(None, description="Comma-separated, all must match"),
    services: DirectoryServices = Depends(get_directory_services),
):
    criteria = FilterCriteria(
        category=place_category,
        postal_code=postal_code,
        keywords=split_list(keywords),
        price_range=price_range,
        required_tags=split_list(filters),
    )
    return [LocationResponse.from_domain(loc) for loc in await services.locations.browse(criteria)]

@app.get("/filter-nearby", response_model=NearbyResponse)
async def filter_nearby(
    address: str = Query("", description="Origin address"),
    max_distance: Optional[float] = Query(None, description="Radius in kilometers"),
    place_category: Optional[str] = None,
    postal_code: Optional[str] = None,
    keywords: Optional[str] = Query(None, description="Comma-separated, any must match"),
    price_range: Optional[str] = None,
    filters: Optional[str] = Query(None, description="Comma-separated, all must match"),
    services: DirectoryServices = Depends(get_directory_services),
):
    """
    Locations around an address, nearest first.

    Locations whose address cannot be geocoded are left out of the results
    rather than failing the request.
    """
    start_time = time.time()
    criteria = SearchCriteria(
        origin_address=address,
        max_distance_km=max_distance or 0.0,
        category=place_category,
        postal_code=postal_code,
        keywords=split_list(keywords),
        price_range=price_range,
        required_tags=split_list(filters),
    )
    results = await services.search.search(criteria)
    return NearbyResponse(
        results=[NearbyLocationResponse.from_result(r) for r in results],
        count=len(results),
        processing_time_ms=(time.time() - start_time) * 1000,
    )

def _register_category_route(route: str, category: str):
    async def browse_category(
        postal_code: Optional[str] = None,
        keywords: Optional[str] = Query(None, description="Comma-separated, any must match"),
        price_range: Optional[str] = None,
        filters: Optional[str] = Query(None, description="Comma-separated, all must match"),
        services: DirectoryServices = Depends(get_directory_services),
    ):
        criteria = FilterCriteria(
            category=category,
            postal_code=postal_code,
            keywords=split_list(keywords),
            price_range=price_range,
            required_tags=split_list(filters),
        )
        return [LocationResponse.from_domain(loc) for loc in await services.locations.browse(criteria)]

    app.add_api_route(
        f"/{route}",
        browse_category,
        methods=["GET"],
        response_model=List[LocationResponse],
        name=f"browse_{route}",
        summary=f"Locations in category {category}",
    )

for _route, _category in CATEGORY_ALIASES.items():
    _register_category_route(_route, _category)

# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "service": "Location Directory API",
        "version": "1.0.0",
        "main_endpoint": "GET /filter-nearby",
        "health_check": "GET /health",
        "documentation": "GET /docs",
        "example_request": {
            "method": "GET",
            "url": "/filter-nearby?address=10 rue de Rivoli, Paris&max_distance=2&place_category=prendre_un_verre",
        }
    }
