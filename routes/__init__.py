from .auth_routes import router as auth_routes
from .user_routes import router as user_routes
from .book_routes import router as book_routes
from .request_routes import router as request_routes
from .admin_routes import router as admin_routes

__all__ = [
    'auth_routes',
    'user_routes',
    'book_routes',
    'request_routes',
    'admin_routes'
]
