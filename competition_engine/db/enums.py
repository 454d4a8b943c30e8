# db/enums.py
import enum

class Level(enum.StrEnum):
    COUNCIL = "Council"
    REGIONAL = "Regional"
    NATIONAL = "National"

class UserRole(enum.StrEnum):
    ADMIN = "admin"
    JUDGE = "judge"
    TEACHER = "teacher"

class UserStatus(enum.StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"

class SubmissionStatus(enum.StrEnum):
    PENDING = "pending"
    EVALUATED = "evaluated"
    PROMOTED = "promoted"
    ELIMINATED = "eliminated"

class RoundStatus(enum.StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    ENDED = "ended"
    CLOSED = "closed"

class TimingType(enum.StrEnum):
    FIXED_TIME = "fixed_time"
    COUNTDOWN = "countdown"

class LeaderboardVisibility(enum.StrEnum):
    LIVE = "live"
    FROZEN = "frozen"

class TieBreakStatus(enum.StrEnum):
    OPEN = "open"
    RESOLVED = "resolved"
    SUPERSEDED = "superseded"

class NotificationType(enum.StrEnum):
    JUDGE_ASSIGNED = "judge_assigned"
    ROUND_STARTED = "round_started"
    ROUND_ENDING_SOON = "round_ending_soon"
    ROUND_ENDED = "round_ended"
    SUBMISSION_PROMOTED = "submission_promoted"
    SUBMISSION_ELIMINATED = "submission_eliminated"
    CUSTOM_REMINDER = "custom_reminder"
