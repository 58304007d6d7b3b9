"""
Vendor listing categories
"""
from enum import Enum


class ServiceType(str, Enum):
    VENUE = "venue"
    HAIR_MAKEUP = "hair_makeup"
    PHOTO_VIDEO = "photo_video"
    DJ = "dj"
    WEDDING_PLANNER = "wedding_planner"

    @classmethod
    def parse(cls, value: str) -> "ServiceType":
        """
        Resolve a service type from its stored value or its UI slug
        (e.g. "hairMakeup"). Unknown values raise ValueError.
        """
        if isinstance(value, cls):
            return value
        if not value:
            raise ValueError("Service type is required")
        for member in cls:
            if value == member.value or value == member.url_slug:
                return member
        raise ValueError(f"Unknown service type: {value}")

    @property
    def listing_table(self) -> str:
        return _LISTING_TABLES[self]

    @property
    def url_slug(self) -> str:
        return _URL_SLUGS[self]


_LISTING_TABLES = {
    ServiceType.VENUE: "venue_listing",
    ServiceType.HAIR_MAKEUP: "hair_makeup_listing",
    ServiceType.PHOTO_VIDEO: "photo_video_listing",
    ServiceType.DJ: "dj_listing",
    ServiceType.WEDDING_PLANNER: "wedding_planner_listing",
}

_URL_SLUGS = {
    ServiceType.VENUE: "venue",
    ServiceType.HAIR_MAKEUP: "hairMakeup",
    ServiceType.PHOTO_VIDEO: "photoVideo",
    ServiceType.DJ: "dj",
    ServiceType.WEDDING_PLANNER: "weddingPlanner",
}
