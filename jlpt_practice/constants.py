"""Application-wide constants and configuration values.

This module centralizes the magic numbers and hardcoded values used by the
practice core, making them easier to maintain and adjust.
"""

# Question synthesis
DISTRACTOR_COUNT = 3
"""Number of incorrect answer options shown with each word/sentence question."""

ANTI_REPEAT_MAX_TRIES = 10
"""Resample attempts used to avoid presenting the same answer twice in a row."""

# Daily practice calendar
MAX_WEEK = 10
"""Highest weekly unit of the daily practice calendar."""

DAYS_PER_WEEK = 7
"""Number of daily units in each week."""

DAILY_CATEGORIES = ("grammar", "vocab")
"""Categories that have a daily practice calendar."""

# Exam sessions
SESSION_MONTHS = {"July": "07", "December": "12"}
"""Exam session names mapped to the stored month value."""

RANDOM_LEVEL_PAIR = ("N2", "N3")
"""Levels matched by the 'N2-N3-random' level sentinel."""

LANGUAGE_SECTIONS = ("vocab", "grammar", "reading")
"""Exam sections included in the 'language' practice kind."""

# Key-value store keys
COMPLETED_KEY = "progress.completed"
"""Key holding the JSON list of completed daily tokens."""

UNLOCKED_WEEK_KEY_TEMPLATE = "progress.unlockedWeek.{level}.{category}"
"""Key holding the highest unlocked week for a level/category pair."""

LEVEL_KEY = "user.level"
"""Key holding the level last picked on the daily calendar."""

PICK_KEY = "user.pick"
"""Key holding the category last picked on the daily calendar."""

# Rate Limiting
PRACTICE_START_RATE_LIMIT = "30/minute"
"""Maximum number of practice session starts allowed per minute per client."""

ANSWER_SUBMISSION_RATE_LIMIT = "120/minute"
"""Maximum number of answer submissions allowed per minute per client."""

SYNC_RATE_LIMIT = "5/minute"
"""Maximum number of corpus resync requests per minute per client."""

# Sessions
MAX_ACTIVE_SESSIONS = 32
"""Practice sessions kept in memory before the oldest is evicted."""

# Logging
DEFAULT_LOG_LEVEL = "INFO"
"""Default logging level for the application."""
