from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.db.session import get_db
from app.models.product import KeyClass, Product, ProductFile
from app.models.product_comment import ProductComment
from app.models.user import User
from app.paywall import has_purchased
from app.schemas.products import (
    CommentIn,
    CommentListOut,
    CommentOut,
    DownloadOut,
    ProductAccessOut,
    RatingIn,
    RatingOut,
    RatingStatsOut,
)
from app.services.feedback.service import FeedbackService
from app.services.users.service import current_user


router = APIRouter(prefix="/products", tags=["products"])


def _comment_out(entry: ProductComment) -> CommentOut:
    return CommentOut(
        id=entry.id,
        product_id=entry.product_id,
        author_id=entry.author_id,
        comment=entry.body,
        created_at=entry.created_at,
    )


@router.get("/{product_id}/access", response_model=ProductAccessOut)
def product_access(
    product_id: str,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
) -> ProductAccessOut:
    product = db.query(Product).filter(Product.id == product_id).one_or_none()
    if product is None:
        raise NotFoundError("Product not found")

    is_creator = product.creator_id == user.id
    purchased = False if is_creator else has_purchased(db, user.id, product.id)
    has_access = is_creator or purchased

    download_urls = None
    if has_access:
        files = (
            db.query(ProductFile)
            .filter(ProductFile.product_id == product.id, ProductFile.kind == KeyClass.DIGITAL.value)
            .order_by(ProductFile.key)
            .all()
        )
        download_urls = [
            DownloadOut(file_name=f.file_name, url=f"/files/{f.key}", file_size=f.file_size) for f in files
        ]

    return ProductAccessOut(
        product_id=product.id,
        has_access=has_access,
        is_creator=is_creator,
        has_purchased=purchased,
        download_urls=download_urls,
    )


@router.post("/{product_id}/ratings", response_model=RatingOut)
def rate_product(
    product_id: str,
    body: RatingIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
) -> RatingOut:
    entry = FeedbackService(db).rate(user, product_id, body.rating)
    return RatingOut(product_id=entry.product_id, rating=entry.rating, updated_at=entry.updated_at)


@router.post("/{product_id}/comments", response_model=CommentOut)
def comment_product(
    product_id: str,
    body: CommentIn,
    user: User = Depends(current_user),
    db: Session = Depends(get_db),
) -> CommentOut:
    entry = FeedbackService(db).comment(user, product_id, body.comment)
    return _comment_out(entry)


@router.get("/{product_id}/ratings", response_model=RatingStatsOut)
def product_ratings(product_id: str, db: Session = Depends(get_db)) -> RatingStatsOut:
    """Public rating statistics of a published product."""
    return RatingStatsOut(**FeedbackService(db).rating_stats(product_id))


@router.get("/{product_id}/comments", response_model=CommentListOut)
def product_comments(
    product_id: str,
    page: int = Query(1),
    limit: int = Query(10),
    db: Session = Depends(get_db),
) -> CommentListOut:
    """Public comments of a published product, newest first."""
    comments, total = FeedbackService(db).list_comments(product_id, page=page, limit=limit)
    return CommentListOut(comments=[_comment_out(c) for c in comments], page=page, limit=limit, total=total)
