"""API Routes."""

from fastapi import APIRouter

from .admin_monitoring import router as admin_monitoring_router
from .admin_stats import router as admin_stats_router
from .auth import router as auth_router
from .blog import router as blog_router
from .books import router as books_router
from .categories import router as categories_router
from .coupons import admin_router as admin_coupons_router
from .coupons import router as coupons_router
from .courses import router as courses_router
from .dashboard import router as dashboard_router
from .events import router as events_router
from .health import router as health_router
from .newsletter import router as newsletter_router
from .orders import router as orders_router
from .payments import router as payments_router
from .payments import webhooks_router
from .publishing import admin_router as admin_submissions_router
from .publishing import router as publishing_router
from .reading_progress import router as reading_progress_router
from .reviews import router as reviews_router
from .wishlist import router as wishlist_router

# Create main API router
api_router = APIRouter()

# Include route modules
api_router.include_router(health_router, tags=["Health"])
api_router.include_router(auth_router)
api_router.include_router(categories_router)
api_router.include_router(books_router)
api_router.include_router(reviews_router)
api_router.include_router(reading_progress_router)
api_router.include_router(wishlist_router)
api_router.include_router(orders_router)
api_router.include_router(coupons_router)
api_router.include_router(payments_router)
api_router.include_router(webhooks_router)
api_router.include_router(courses_router)
api_router.include_router(events_router)
api_router.include_router(publishing_router)
api_router.include_router(blog_router)
api_router.include_router(newsletter_router)
api_router.include_router(dashboard_router)
api_router.include_router(admin_stats_router)
api_router.include_router(admin_monitoring_router)
api_router.include_router(admin_coupons_router)
api_router.include_router(admin_submissions_router)
