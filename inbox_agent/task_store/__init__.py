"""Task store: suggestion lifecycle, duplicate detection and preferences."""

from .similarity import (
    SIMILARITY_THRESHOLD,
    extract_pattern,
    find_similar_title,
    normalize_title,
    titles_are_similar,
)
from .store import (
    InvalidTransition,
    MAX_ARCHIVED,
    SourceKind,
    SourceRef,
    SuggestionCandidate,
    Task,
    TaskPreferences,
    TaskStatus,
    UserResponse,
    accept_suggestion,
    add_suggestions,
    archive_completed_tasks,
    build_preference_context,
    clear_suggestions,
    complete_task,
    create_task,
    decline_suggestion,
    delete_task,
    generate_task_id,
    load_archived_tasks,
    load_categories,
    load_preferences,
    load_tasks,
    load_tracked_source_ids,
    recent_feedback,
    reorder_tasks,
    save_categories,
    save_preferences,
    tracked_source_ids,
    unaccept_suggestion,
    undecline_suggestion,
    update_preferences,
    update_task,
)

__all__ = [
    "SIMILARITY_THRESHOLD",
    "extract_pattern",
    "find_similar_title",
    "normalize_title",
    "titles_are_similar",
    "InvalidTransition",
    "MAX_ARCHIVED",
    "SourceKind",
    "SourceRef",
    "SuggestionCandidate",
    "Task",
    "TaskPreferences",
    "TaskStatus",
    "UserResponse",
    "accept_suggestion",
    "add_suggestions",
    "archive_completed_tasks",
    "build_preference_context",
    "clear_suggestions",
    "complete_task",
    "create_task",
    "decline_suggestion",
    "delete_task",
    "generate_task_id",
    "load_archived_tasks",
    "load_categories",
    "load_preferences",
    "load_tasks",
    "load_tracked_source_ids",
    "recent_feedback",
    "reorder_tasks",
    "save_categories",
    "save_preferences",
    "tracked_source_ids",
    "unaccept_suggestion",
    "undecline_suggestion",
    "update_preferences",
    "update_task",
]
