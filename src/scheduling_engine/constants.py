"""Constants for the scheduling engine."""

from datetime import time

ALGORITHM_VERSION = "1.0.0"

# Hard cap on students per group class. No configuration or override may exceed it.
HARD_MAX_STUDENTS_PER_CLASS = 9

# Default hard constraints
DEFAULT_MAX_STUDENTS_PER_CLASS = HARD_MAX_STUDENTS_PER_CLASS
DEFAULT_MIN_STUDENTS_FOR_GROUP_CLASS = 2
DEFAULT_MAX_CONCURRENT_CLASSES_PER_TEACHER = 1
DEFAULT_MAX_CLASSES_PER_DAY_PER_STUDENT = 2
DEFAULT_MIN_BREAK_BETWEEN_CLASSES = 15  # minutes
DEFAULT_MAX_ADVANCE_BOOKING_DAYS = 30
DEFAULT_MIN_ADVANCE_BOOKING_HOURS = 24
DEFAULT_WORKING_HOURS_START = time(9, 0)
DEFAULT_WORKING_HOURS_END = time(18, 0)
DEFAULT_AVAILABLE_DAYS = (1, 2, 3, 4, 5)  # Monday to Friday, Sunday=0

# Soft-score weights
SCORING_WEIGHTS = {
    "content_progression": 0.30,
    "student_availability": 0.25,
    "teacher_availability": 0.20,
    "class_size_optimization": 0.10,
    "learning_pace_matching": 0.05,
    "skill_level_alignment": 0.05,
    "schedule_continuity": 0.03,
    "resource_utilization": 0.02,
}

# Orchestrator
DEFAULT_MAX_PROCESSING_TIME = 30.0  # seconds
DEFAULT_MAX_OPTIMIZATION_ITERATIONS = 5
DEFAULT_AUTO_APPLY_THRESHOLD = 0.75
DEFAULT_MAX_CANDIDATES_PER_UNIT = 25
DEFAULT_ALTERNATIVES_PER_CLASS = 3
DEFAULT_SOLVER_TIME_LIMIT = 10.0  # seconds
DEFAULT_CLASS_DURATION = 60  # minutes cut from an availability window per group class
DEFAULT_RESOURCE_RETRY_ATTEMPTS = 2
DEFAULT_RESOURCE_RETRY_DELAY = 0.05  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0

# Multiplier turning [0,1] scores into CP-SAT integer coefficients
SOLVER_SCORE_SCALE = 10_000

# Neutral sub-score when there is no data to judge a dimension
NEUTRAL_SCORE = 0.5

# Lessons per week that map to a fully dense class
REFERENCE_LEARNING_PACE = 5.0

# Default student preference when none is recorded
DEFAULT_OPTIMAL_CLASS_SIZE = 4
DEFAULT_SKILL_LEVEL = 5.0

# Resolution base feasibility and implementation time (minutes)
RESOLUTION_PROFILES = {
    "reschedule": (0.85, 15),
    "reassign_teacher": (0.80, 20),
    "split_class": (0.70, 30),
    "merge_classes": (0.60, 30),
    "waitlist": (0.90, 5),
    "adjust_content": (0.95, 5),
    "defer_session": (0.55, 10),
    "cancel_conflicting": (0.40, 15),
    "manual_intervention": (0.20, 60),
}

# 1-on-1 matching
ONE_ON_ONE_DURATIONS = (30, 60)
TEACHER_MATCHING_WEIGHTS = {
    "availability": 0.30,
    "experience": 0.20,
    "specialization": 0.20,
    "preference": 0.15,
    "performance": 0.10,
    "language": 0.05,
}
EXPERIENCE_BANDS = {
    "beginner": (0, 2),
    "intermediate": (2, 5),
    "advanced": (5, 10),
    "expert": (10, None),
}
DEFAULT_AUTO_CONFIRM_THRESHOLD = 0.70
MAX_TEACHER_RECOMMENDATIONS = 5
MAX_ALTERNATIVE_SLOTS = 3
LATEST_BOOKING_HOURS_BEFORE = 24
CANCELLATION_POLICY = "24 hours before session"
RESCHEDULING_POLICY = "Up to 2 hours before session"

# Daily batch
DEFAULT_DAILY_MAX_RETRIES = 3
DEFAULT_DAILY_RETRY_DELAY = 1.0  # seconds
DEFAULT_DAILY_BACKOFF_MULTIPLIER = 2.0
