"""InboxAgent: the request/response surface over one agent instance.

Transport (HTTP, RPC, CLI) is left to the caller; every method takes and
returns plain values or API-style dicts.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence

from .execution.gate import ExecutionGate, SandboxExecutor, run_sandboxed
from .llm.anthropic_client import CompletionService
from .memory.events import EventType, clear_events, get_events, log_event
from .memory.manager import MemoryManager
from .memory.messages import ChatMessage
from .scan.providers import MailAccount
from .scan.quota import can_scan, load_scan_config, load_scan_usage
from .scan.quota import update_scan_config as apply_scan_config_update
from .scan.scheduler import ScanScheduler, run_background_scan, run_background_thread_scan
from .storage import KeyValueStore, open_store
from .task_store import store as tasks
from .threads.store import ChatThread, ThreadMessage, append_message, store_thread

logger = logging.getLogger(__name__)


class InboxAgent:
    """One agent instance: its store, memory, tasks and scan loop.

    Args:
        instance_id: Identifier for the agent's storage
        store: Storage override (defaults to ``open_store(instance_id)``)
        completion: Completion service (defaults to the Anthropic service)
        accounts_fn: Returns the currently linked mail accounts
        executor: Sandbox executor used by ``execute_code``
        gate: Execution gate (defaults to the process-wide gate)
    """

    def __init__(
        self,
        instance_id: str,
        *,
        store: Optional[KeyValueStore] = None,
        completion=None,
        accounts_fn: Callable[[], Sequence[MailAccount]] = lambda: [],
        executor: Optional[SandboxExecutor] = None,
        gate: Optional[ExecutionGate] = None,
    ) -> None:
        self.instance_id = instance_id
        self.store = store if store is not None else open_store(instance_id)
        self.completion = completion if completion is not None else CompletionService()
        self.accounts_fn = accounts_fn
        self.executor = executor
        self.gate = gate
        self.memory = MemoryManager(self.store, self.completion)
        self._connected_clients = 0
        self._clients_lock = threading.Lock()
        self.scheduler = ScanScheduler(
            self.store,
            scan_fn=self.trigger_scan,
            thread_scan_fn=self.trigger_thread_scan,
            client_count_fn=self.connected_clients,
        )

    # -------------------------------------------------------------------------
    # Clients
    # -------------------------------------------------------------------------

    def connected_clients(self) -> int:
        with self._clients_lock:
            return self._connected_clients

    def client_connected(self) -> None:
        with self._clients_lock:
            self._connected_clients += 1
        log_event(self.store, EventType.CHAT_STARTED, "Client connected")

    def client_disconnected(self) -> None:
        with self._clients_lock:
            self._connected_clients = max(0, self._connected_clients - 1)

    # -------------------------------------------------------------------------
    # Scanning
    # -------------------------------------------------------------------------

    def trigger_scan(self) -> Dict[str, Any]:
        return run_background_scan(self.store, self.completion, list(self.accounts_fn())).to_api_dict()

    def trigger_thread_scan(self) -> Dict[str, Any]:
        return run_background_thread_scan(self.store, self.completion).to_api_dict()

    def get_scan_status(self) -> Dict[str, Any]:
        config = load_scan_config(self.store)
        usage = load_scan_usage(self.store)
        next_wake = self.scheduler.next_wake()
        return {
            "config": config.to_api_dict(),
            "usage": usage.to_api_dict(),
            "canScan": can_scan(config, usage).to_api_dict(),
            "nextWakeAt": next_wake.isoformat() if next_wake else None,
        }

    def get_scan_config(self) -> Dict[str, Any]:
        return load_scan_config(self.store).to_api_dict()

    def update_scan_config(self, overrides: Dict[str, Any]) -> Dict[str, Any]:
        config, rejected = apply_scan_config_update(self.store, overrides)
        self.scheduler.schedule_next()
        return {"config": config.to_api_dict(), "rejected": rejected}

    # -------------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------------

    def list_tasks(self) -> List[Dict[str, Any]]:
        items = sorted(tasks.load_tasks(self.store), key=lambda t: t.sort_order)
        return [t.to_api_dict() for t in items]

    def list_archived_tasks(self) -> List[Dict[str, Any]]:
        return [t.to_api_dict() for t in tasks.load_archived_tasks(self.store)]

    def create_task(self, title: str, **fields: Any) -> Dict[str, Any]:
        return tasks.create_task(self.store, title, **fields).to_api_dict()

    def update_task(self, task_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        task = tasks.update_task(self.store, task_id, updates)
        return task.to_api_dict() if task else None

    def delete_task(self, task_id: str) -> bool:
        return tasks.delete_task(self.store, task_id)

    def complete_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        task = tasks.complete_task(self.store, task_id)
        return task.to_api_dict() if task else None

    def reorder_tasks(self, ordered_ids: Sequence[str]) -> List[Dict[str, Any]]:
        return [t.to_api_dict() for t in tasks.reorder_tasks(self.store, ordered_ids)]

    def accept_suggestion(self, task_id: str) -> Optional[Dict[str, Any]]:
        task = tasks.accept_suggestion(self.store, task_id)
        return task.to_api_dict() if task else None

    def decline_suggestion(self, task_id: str, reason: Optional[str] = None) -> Optional[Dict[str, Any]]:
        task = tasks.decline_suggestion(self.store, task_id, reason)
        return task.to_api_dict() if task else None

    def unaccept_suggestion(self, task_id: str) -> Optional[Dict[str, Any]]:
        task = tasks.unaccept_suggestion(self.store, task_id)
        return task.to_api_dict() if task else None

    def undecline_suggestion(self, task_id: str) -> Optional[Dict[str, Any]]:
        task = tasks.undecline_suggestion(self.store, task_id)
        return task.to_api_dict() if task else None

    def clear_suggestions(self) -> int:
        return tasks.clear_suggestions(self.store)

    def get_categories(self) -> List[str]:
        return tasks.load_categories(self.store)

    def set_categories(self, categories: Sequence[str]) -> List[str]:
        tasks.save_categories(self.store, categories)
        return tasks.load_categories(self.store)

    def get_preferences(self) -> Dict[str, Any]:
        return tasks.load_preferences(self.store).to_api_dict()

    def update_preferences(self, updates: Dict[str, Any]) -> Dict[str, Any]:
        prefs, rejected = tasks.update_preferences(self.store, updates)
        return {"preferences": prefs.to_api_dict(), "rejected": rejected}

    # -------------------------------------------------------------------------
    # Memory
    # -------------------------------------------------------------------------

    def get_memory(self) -> Dict[str, Any]:
        return self.memory.get_serializable_memory()

    def update_memory(self, **edits: Any) -> Dict[str, Any]:
        return self.memory.update_memory(**edits).to_api_dict()

    def replace_facts(self, facts: Sequence[str]) -> List[str]:
        return self.memory.replace_user_facts(facts)

    def delete_fact(self, index: int) -> List[str]:
        return self.memory.delete_user_fact(index)

    def merge_memory_from(self, source: Dict[str, Any]) -> Dict[str, Any]:
        """Fold memory exported from another agent instance into this one."""
        return self.memory.merge_memory_from(source).to_api_dict()

    def get_memory_debug(self, event_limit: int = 50) -> Dict[str, Any]:
        return self.memory.get_full_memory_debug(event_limit)

    def get_events(self, limit: Optional[int] = None, event_type: Optional[str] = None) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in get_events(self.store, limit=limit, event_type=event_type)]

    def clear_events(self) -> None:
        clear_events(self.store)

    # -------------------------------------------------------------------------
    # Chat
    # -------------------------------------------------------------------------

    def prepare_chat_context(self, messages: Sequence[ChatMessage | Dict[str, Any]]) -> List[ChatMessage]:
        return self.memory.prepare_context(messages)

    def after_chat_turn(self, conversation_id: str, messages: Sequence[ChatMessage | Dict[str, Any]]) -> bool:
        return self.memory.update_after_turn(conversation_id, messages)

    def task_context(self) -> str:
        """Current tasks and learned preferences as chat system-prompt text."""
        return tasks.build_preference_context(tasks.load_preferences(self.store), tasks.load_tasks(self.store))

    def receive_thread_message(
        self,
        channel_id: str,
        thread_ts: str,
        message: ThreadMessage,
        *,
        channel_name: Optional[str] = None,
        mentioned: bool = False,
    ) -> bool:
        """Record an incoming chat message.

        A mention stores (or re-queues) the whole thread; otherwise the
        message is appended only when the thread is already known.
        """
        if mentioned:
            store_thread(
                self.store,
                ChatThread(
                    channel_id=channel_id,
                    thread_ts=thread_ts,
                    trigger_message_ts=message.ts,
                    messages=[message],
                    channel_name=channel_name,
                ),
            )
            return True
        return append_message(self.store, channel_id, thread_ts, message)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def execute_code(self, code: str) -> Any:
        if self.executor is None:
            raise RuntimeError("No sandbox executor configured for this agent.")
        return run_sandboxed(self.store, self.executor, code, gate=self.gate)
