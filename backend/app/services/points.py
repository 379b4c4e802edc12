import uuid

from sqlalchemy.orm import Session

from app.models.notification import Notification, NotificationType, UserPoints


def _recompute_level(points: int) -> int:
    if points < 0:
        points = 0
    return (points // 100) + 1


def _as_uuid(value) -> uuid.UUID | None:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def award_points(db: Session, *, user_id, points: int) -> UserPoints | None:
    uid = _as_uuid(user_id)
    if uid is None:
        return None

    row = db.get(UserPoints, uid)
    if row is None:
        row = UserPoints(user_id=uid, points=0, level=1)
        db.add(row)

    if points:
        row.points = int(row.points or 0) + int(points)
        row.level = _recompute_level(int(row.points))
    return row


def notify(db: Session, *, user_id, type: NotificationType, title: str, message: str) -> None:
    uid = _as_uuid(user_id)
    if uid is None:
        return
    db.add(Notification(user_id=uid, type=type, title=title, message=message))


def record_quiz_outcome(
    db: Session,
    *,
    user_id,
    quiz_title: str,
    score: int,
    passing_score: int,
    passed: bool,
    pass_points: int,
) -> int:
    """Award points for a pass and leave the learner a notification either way.

    Returns the number of points awarded.
    """
    if passed:
        award_points(db, user_id=user_id, points=pass_points)
        notify(
            db,
            user_id=user_id,
            type=NotificationType.achievement,
            title="Quiz Passed!",
            message=(
                f'Congratulations! You passed "{quiz_title}" with a score of {score}%. '
                f"You earned {pass_points} points!"
            ),
        )
        return pass_points

    notify(
        db,
        user_id=user_id,
        type=NotificationType.info,
        title="Quiz Completed",
        message=(
            f'You completed "{quiz_title}" with a score of {score}%. '
            f"The passing score is {passing_score}%. You can try again!"
        ),
    )
    return 0
