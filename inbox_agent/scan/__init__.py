"""Scanning: quota, scheduling and the mail/chat classification pipelines."""

from .classifier import (
    BATCH_SIZE,
    COMPLETION_TIMEOUT_SECONDS,
    STOP_WORDS,
    VALIDATION_MIN_RATIO,
    ClassifiedItem,
    classify_batch,
    parse_classification,
    title_matches_source,
)
from .inbox_scanner import ScanResult, build_email_prompt, scan_inbox_for_tasks
from .providers import InboxMessage, MailAccount, MailProvider, fetch_inbox_messages
from .quota import (
    CanScanResult,
    ScanConfig,
    ScanUsage,
    apply_config_overrides,
    can_scan,
    load_scan_config,
    load_scan_usage,
    record_scan_result,
    record_scan_usage,
    save_scan_config,
    touch_last_scan_at,
    update_scan_config,
)
from .scheduler import (
    ScanScheduler,
    SchedulerStatus,
    compute_next_wake,
    is_near_midnight,
    next_midnight,
    run_background_scan,
    run_background_thread_scan,
)
from .thread_scanner import ThreadScanResult, scan_threads_for_tasks

__all__ = [
    "BATCH_SIZE",
    "COMPLETION_TIMEOUT_SECONDS",
    "STOP_WORDS",
    "VALIDATION_MIN_RATIO",
    "ClassifiedItem",
    "classify_batch",
    "parse_classification",
    "title_matches_source",
    "ScanResult",
    "build_email_prompt",
    "scan_inbox_for_tasks",
    "InboxMessage",
    "MailAccount",
    "MailProvider",
    "fetch_inbox_messages",
    "CanScanResult",
    "ScanConfig",
    "ScanUsage",
    "apply_config_overrides",
    "can_scan",
    "load_scan_config",
    "load_scan_usage",
    "record_scan_result",
    "record_scan_usage",
    "save_scan_config",
    "touch_last_scan_at",
    "update_scan_config",
    "ScanScheduler",
    "SchedulerStatus",
    "compute_next_wake",
    "is_near_midnight",
    "next_midnight",
    "run_background_scan",
    "run_background_thread_scan",
    "ThreadScanResult",
    "scan_threads_for_tasks",
]
