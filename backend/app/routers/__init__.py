from app.routers import auth, health, quizzes

__all__ = [
    "auth",
    "health",
    "quizzes",
]
