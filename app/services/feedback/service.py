import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.errors import ForbiddenError, NotFoundError, ValidationError
from app.models.product import Product
from app.models.product_comment import ProductComment
from app.models.product_rating import ProductRating
from app.models.user import User
from app.paywall.access import has_purchased
from app.services.notifications.service import NotificationService

logger = logging.getLogger(__name__)

COMMENT_MAX_LEN = 1000
COMMENT_PAGE_MAX = 100


class FeedbackService:
    def __init__(self, db: Session, notifications: NotificationService | None = None):
        self.db = db
        self.notifications = notifications or NotificationService(db)

    def _published_product(self, product_id: str) -> Product:
        product = self.db.query(Product).filter(Product.id == product_id).one_or_none()
        if product is None or product.published_at is None:
            raise NotFoundError("Product not found")
        return product

    def rate(self, rater: User, product_id: str, rating: int) -> ProductRating:
        """Add or update the caller's rating. Only buyers rate; creators never rate their own product."""
        if not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("rating must be an integer between 1 and 5", field="rating")
        product = self._published_product(product_id)
        if product.creator_id == rater.id:
            raise ForbiddenError()
        if product.price and not has_purchased(self.db, rater.id, product.id):
            raise ForbiddenError()

        existing = (
            self.db.query(ProductRating)
            .filter(ProductRating.product_id == product.id, ProductRating.rater_id == rater.id)
            .one_or_none()
        )
        if existing:
            existing.rating = rating
            entry = existing
        else:
            entry = ProductRating(product_id=product.id, rater_id=rater.id, rating=rating)
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        logger.info("product_rated", extra={"product_id": product.id, "user_id": rater.id})

        self.notifications.handle_rating_event(rater, product.creator_id, product.name, rating)
        return entry

    def comment(self, author: User, product_id: str, body: str) -> ProductComment:
        body = (body or "").strip()
        if not body or len(body) > COMMENT_MAX_LEN:
            raise ValidationError(f"comment must be 1 to {COMMENT_MAX_LEN} characters", field="comment")
        product = self._published_product(product_id)

        entry = ProductComment(product_id=product.id, author_id=author.id, body=body)
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        logger.info("product_commented", extra={"product_id": product.id, "user_id": author.id})

        self.notifications.handle_comment_event(author, product.creator_id, product.name)
        return entry

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def rating_stats(self, product_id: str) -> dict:
        """Average, count and per-star breakdown (counts and rounded percentages)."""
        product = self._published_product(product_id)
        rows = (
            self.db.query(ProductRating.rating, func.count(ProductRating.id))
            .filter(ProductRating.product_id == product.id)
            .group_by(ProductRating.rating)
            .all()
        )
        breakdown = {star: 0 for star in range(1, 6)}
        breakdown.update({int(rating): count for rating, count in rows})
        total = sum(breakdown.values())
        average = round(sum(star * count for star, count in breakdown.items()) / total, 2) if total else 0.0
        return {
            "product_id": product.id,
            "average_rating": average,
            "total_ratings": total,
            "ratings_breakdown": breakdown,
            "ratings_percentages": {
                star: round(count * 100 / total) if total else 0 for star, count in breakdown.items()
            },
        }

    def list_comments(self, product_id: str, page: int = 1, limit: int = 10) -> tuple[list[ProductComment], int]:
        """Newest first, paginated; returns the page and the total count."""
        if page < 1:
            raise ValidationError("page must be at least 1", field="page")
        if not 1 <= limit <= COMMENT_PAGE_MAX:
            raise ValidationError(f"limit must be between 1 and {COMMENT_PAGE_MAX}", field="limit")
        product = self._published_product(product_id)
        query = self.db.query(ProductComment).filter(ProductComment.product_id == product.id)
        total = query.count()
        comments = (
            query.order_by(ProductComment.created_at.desc(), ProductComment.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return comments, total
