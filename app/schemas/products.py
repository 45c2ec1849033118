from datetime import datetime

from pydantic import Field

from app.schemas.base import CamelModel


class DownloadOut(CamelModel):
    file_name: str | None = None
    url: str
    file_size: int | None = None


class ProductAccessOut(CamelModel):
    product_id: str
    has_access: bool
    is_creator: bool
    has_purchased: bool
    download_urls: list[DownloadOut] | None = None


class RatingIn(CamelModel):
    rating: int = Field(..., ge=1, le=5)


class RatingOut(CamelModel):
    product_id: str
    rating: int
    updated_at: datetime


class CommentIn(CamelModel):
    comment: str = Field(..., min_length=1, max_length=1000)


class CommentOut(CamelModel):
    id: str
    product_id: str
    author_id: str
    comment: str
    created_at: datetime


class RatingStatsOut(CamelModel):
    product_id: str
    average_rating: float
    total_ratings: int
    ratings_breakdown: dict[int, int]
    ratings_percentages: dict[int, int]


class CommentListOut(CamelModel):
    comments: list[CommentOut]
    page: int
    limit: int
    total: int
