# domain/models.py - Core business entities
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union
from abc import ABC, abstractmethod


def _token_set(values: Optional[Iterable[str]]) -> Optional[FrozenSet[str]]:
    """Normalize an optional token collection; an empty collection counts as absent"""
    if values is None:
        return None
    tokens = frozenset(v.strip() for v in values if v and v.strip())
    return tokens or None


def _optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass
class Location:
    name: str
    address: str
    category: str
    description: str = ""
    id: Optional[str] = None
    postal_code: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    price_range: Optional[str] = None
    filters: List[str] = field(default_factory=list)  # attribute tags, e.g. "decor:cozy"
    photos: List[str] = field(default_factory=list)  # public URLs
    tips: Optional[str] = None
    social_media: Optional[str] = None
    media_links: List[str] = field(default_factory=list)
    hours: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    def __post_init__(self):
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Latitude must be within [-90, 90], got {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Longitude must be within [-180, 180], got {self.longitude}")


@dataclass(frozen=True)
class FilterCriteria:
    """Attribute filters; every field is optional and None means absent"""
    category: Optional[str] = None
    postal_code: Optional[str] = None
    keywords: Optional[FrozenSet[str]] = None
    price_range: Optional[str] = None
    required_tags: Optional[FrozenSet[str]] = None

    def __post_init__(self):
        object.__setattr__(self, "category", _optional_text(self.category))
        object.__setattr__(self, "postal_code", _optional_text(self.postal_code))
        object.__setattr__(self, "price_range", _optional_text(self.price_range))
        object.__setattr__(self, "keywords", _token_set(self.keywords))
        object.__setattr__(self, "required_tags", _token_set(self.required_tags))

    def is_unscoped(self) -> bool:
        return not any((self.category, self.postal_code, self.keywords, self.price_range, self.required_tags))


@dataclass(frozen=True)
class SearchCriteria(FilterCriteria):
    origin_address: str = ""
    max_distance_km: float = 0.0

    def filter_criteria(self) -> FilterCriteria:
        return FilterCriteria(
            category=self.category,
            postal_code=self.postal_code,
            keywords=self.keywords,
            price_range=self.price_range,
            required_tags=self.required_tags,
        )


@dataclass
class RankedResult:
    location: Location
    distance_km: float
    latitude: float
    longitude: float

    def to_dict(self) -> Dict[str, Any]:
        payload = self.location.to_dict()
        payload.update(distance_km=self.distance_km, latitude=self.latitude, longitude=self.longitude)
        return payload


# Predicate values produced by the criteria compiler and interpreted by catalogs
class ClauseOp(str, Enum):
    EQUALS = "eq"
    ANY_OF = "any_of"  # record tokens intersect the requested tokens
    ALL_OF = "all_of"  # record tokens are a superset of the requested tokens


@dataclass(frozen=True)
class Clause:
    field: str
    op: ClauseOp
    value: Union[str, FrozenSet[str]]

    def matches(self, location: Location) -> bool:
        actual = getattr(location, self.field)
        if self.op is ClauseOp.EQUALS:
            return actual == self.value
        tokens = set(actual or ())
        if self.op is ClauseOp.ANY_OF:
            return not tokens.isdisjoint(self.value)
        return tokens.issuperset(self.value)


@dataclass(frozen=True)
class Predicate:
    """Conjunction of clauses; no clauses matches every record"""
    clauses: Tuple[Clause, ...] = ()

    @property
    def is_identity(self) -> bool:
        return not self.clauses

    def matches(self, location: Location) -> bool:
        return all(clause.matches(location) for clause in self.clauses)


# Repository interfaces (Uncle Bob's dependency inversion)
class CatalogRepository(ABC):
    @abstractmethod
    async def find(self, predicate: Predicate) -> List[Location]:
        """Get every location matching the predicate, in catalog order"""
        pass

    @abstractmethod
    async def find_by_id(self, location_id: str) -> Optional[Location]:
        pass

    @abstractmethod
    async def save(self, location: Location) -> Location:
        """Insert or update; assigns an id to new locations"""
        pass

    @abstractmethod
    async def delete(self, location_id: str) -> bool:
        pass

    async def health_check(self) -> bool:
        return True


class Geocoder(ABC):
    @abstractmethod
    async def resolve(self, address: str) -> Coordinate:
        """Resolve an address, raising GeocodeError when it cannot"""
        pass


class ObjectStorage(ABC):
    @abstractmethod
    async def upload(self, data: bytes, content_type: str) -> str:
        """Store the payload and return its public URL"""
        pass

    @abstractmethod
    async def delete(self, url: str) -> None:
        pass
