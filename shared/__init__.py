# Feedback Shared Module
# Common functions used across the feedback service

from .config import (
    DATABASE_URL,
    ANTHROPIC_API_KEY,
    ANTHROPIC_MODEL,
    RECENT_FEEDBACK_LIMIT,
    ALERT_EXCERPT_LENGTH
)

from .helpers import (
    strip_markdown_json,
    truncate,
    to_json,
    from_json
)

from .database import (
    create_db_engine,
    init_db,
    insert_feedback,
    count_feedback_by_category,
    get_recent_feedback,
    get_grouped_counts,
    seed_feedback,
    upsert_stat,
    get_stat
)
