from app.models.user import User, UserRole
from app.models.course import Course, Enrollment, Lesson
from app.models.quiz import Question, QuestionType, Quiz
from app.models.attempt import QuizAttempt
from app.models.notification import Notification, NotificationType, UserPoints

__all__ = [
    "User",
    "UserRole",
    "Course",
    "Lesson",
    "Enrollment",
    "Quiz",
    "Question",
    "QuestionType",
    "QuizAttempt",
    "Notification",
    "NotificationType",
    "UserPoints",
]
