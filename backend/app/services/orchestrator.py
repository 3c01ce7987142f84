"""Top-level dispatcher turning chat utterances into task changes and replies."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from app.core.clock import format_wall_time, local_now
from app.core.config import settings
from app.core.context import session_id_ctx_var
from app.core.errors import CompletionError, TaskStoreError
from app.db.models.task import Task, TaskType
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.adjustment_parser import AdjustmentParser, TaskDelta
from app.services.confirmation_resolver import ConfirmationResolver
from app.services.conversation_store import (
    ChatMessage,
    ConversationStore,
    MessageRole,
    ProgressLog,
    new_session_id,
)
from app.services.intent_classifier import ClassifiedIntent, IntentClassifier, IntentKind
from app.services.llm_client import CompletionClient
from app.services.schedule_synthesizer import SchedulingSynthesizer, SynthesisResult
from app.services.task_cleanup import clean_stale_tasks
from app.services.task_decomposer import TaskDecomposer, format_drafts_for_confirmation, requires_confirmation
from app.services.task_drafts import TaskDraft, temporal_context_block
from app.services.task_store import TaskStore, task_interval

logger = logging.getLogger(__name__)

QUERY_PROMPT_HEADER = "You answer questions about a person's task list."
QUERY_TEMPERATURE = 0.7


@dataclass
class PendingConfirmation:
    original_input: str
    drafts: List[TaskDraft]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original_input": self.original_input,
            "suggested_tasks": [draft.to_public_dict() for draft in self.drafts],
            "requires_confirmation": True,
        }


@dataclass
class OrchestratorResult:
    success: bool
    session_id: str
    reply_text: str
    intent: Optional[IntentKind] = None
    actions: List[str] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)
    pending_confirmation: Optional[PendingConfirmation] = None


@dataclass
class _Turn:
    utterance: str
    session_id: str
    history: List[ChatMessage]
    now: datetime


def _intervals_overlap(
    start: datetime,
    duration: Optional[int],
    other_start: datetime,
    other_duration: Optional[int],
) -> bool:
    """Same rule as TaskStore.find_time_conflicts: a start without duration is a point."""
    if duration and other_duration:
        return start < other_start + timedelta(minutes=other_duration) and other_start < start + timedelta(
            minutes=duration
        )
    if other_duration:
        return other_start <= start < other_start + timedelta(minutes=other_duration)
    if duration:
        return start <= other_start < start + timedelta(minutes=duration)
    return False


def describe_changes(changes: Dict[str, Any]) -> List[str]:
    descriptions: List[str] = []
    if "scheduled_time" in changes:
        descriptions.append(f"time set to {format_wall_time(changes['scheduled_time'])}")
    if "estimated_duration" in changes:
        descriptions.append(f"duration set to {changes['estimated_duration']} min")
    if "deadline" in changes:
        deadline = changes["deadline"]
        descriptions.append(f"deadline set to {format_wall_time(deadline)}" if deadline else "deadline removed")
    if "type" in changes:
        descriptions.append(f"type set to {TaskType(changes['type']).display_name}")
    if "description" in changes:
        note = changes["description"]
        descriptions.append(f'note set to "{note}"' if note else "note removed")
    return descriptions


class Orchestrator:
    """Routes each utterance by intent and records the exchange in the conversation store."""

    def __init__(
        self,
        store: TaskStore,
        conversations: ConversationStore,
        progress: ProgressLog,
        client: CompletionClient,
        *,
        classifier: Optional[IntentClassifier] = None,
        decomposer: Optional[TaskDecomposer] = None,
        adjustment_parser: Optional[AdjustmentParser] = None,
        synthesizer: Optional[SchedulingSynthesizer] = None,
        resolver: Optional[ConfirmationResolver] = None,
        clock: Callable[[], datetime] = local_now,
        history_window: Optional[int] = None,
    ) -> None:
        self.store = store
        self.conversations = conversations
        self.progress = progress
        self.client = client
        self.classifier = classifier or IntentClassifier(client)
        self.decomposer = decomposer or TaskDecomposer(client)
        self.adjustment_parser = adjustment_parser or AdjustmentParser(client)
        self.synthesizer = synthesizer or SchedulingSynthesizer(client, store)
        self.resolver = resolver or ConfirmationResolver(conversations)
        self.clock = clock
        self.history_window = history_window or settings.chat_history_window
        self._handlers: Dict[IntentKind, Callable[[_Turn, ClassifiedIntent], OrchestratorResult]] = {
            IntentKind.ADJUSTMENT: self._handle_adjustment,
            IntentKind.NEW_TASK: self._handle_new_task,
            IntentKind.COMPLEX_TASK: self._handle_complex_task,
            IntentKind.QUERY: self._handle_query,
        }

    def handle(self, utterance: str, session_id: Optional[str] = None) -> OrchestratorResult:
        """Process one utterance. Errors are reported in the result, never raised."""
        session_id = session_id or new_session_id()
        token = session_id_ctx_var.set(session_id)
        try:
            with trace("orchestrator.handle", metadata={"length": len(utterance)}, session_id=session_id):
                self.conversations.append(session_id, MessageRole.USER, utterance)
                turn = _Turn(
                    utterance=utterance,
                    session_id=session_id,
                    history=self.conversations.recent(session_id, self.history_window),
                    now=self.clock(),
                )
                self.progress.clear()
                self.progress.add("Analysing your message")
                try:
                    result = self._dispatch(turn)
                except Exception as exc:  # noqa: BLE001
                    logger.exception("Failed to handle utterance in session %s", session_id)
                    log_metric("orchestrator.error", 1, {"error": type(exc).__name__})
                    result = OrchestratorResult(
                        success=False,
                        session_id=session_id,
                        reply_text=f"Processing failed: {exc}",
                    )
                self.progress.add("Done" if result.success else "Finished with problems")
                self.conversations.append(
                    session_id,
                    MessageRole.ASSISTANT,
                    result.reply_text,
                    self._reply_metadata(result),
                )
                return result
        finally:
            session_id_ctx_var.reset(token)

    def _dispatch(self, turn: _Turn) -> OrchestratorResult:
        intent = self.classifier.classify(turn.utterance, turn.now)
        self.progress.add(f"Recognised intent: {intent.kind.value}")
        log_metric("orchestrator.intent", 1, {"kind": intent.kind.value})
        if intent.kind in (IntentKind.NEW_TASK, IntentKind.COMPLEX_TASK):
            self._cleanup(turn.now)
        result = self._handlers[intent.kind](turn, intent)
        result.intent = result.intent or intent.kind
        return result

    def _cleanup(self, now: datetime) -> None:
        self.progress.add("Removing completed and expired tasks")
        try:
            clean_stale_tasks(self.store, now)
        except TaskStoreError as exc:
            logger.warning("Stale task cleanup failed; continuing: %s", exc)

    def _handle_new_task(self, turn: _Turn, intent: ClassifiedIntent) -> OrchestratorResult:
        actions: List[str] = []
        lines: List[str] = []
        if intent.draft is not None:
            task = self.store.create(intent.draft)
            actions.append(f"Created task: {task.title}")
            lines.append(f'Added "{task.title}".')
        synthesis = self._schedule(turn.now)
        actions.extend(self._synthesis_actions(synthesis))
        lines.append(synthesis.summary)
        return OrchestratorResult(
            success=synthesis.success,
            session_id=turn.session_id,
            reply_text="\n\n".join(lines),
            actions=actions,
        )

    def _handle_complex_task(self, turn: _Turn, intent: ClassifiedIntent) -> OrchestratorResult:
        self.progress.add("Splitting the request into tasks")
        decomposition = self.decomposer.decompose(turn.utterance, turn.now)
        if not decomposition.success:
            return OrchestratorResult(
                success=False,
                session_id=turn.session_id,
                reply_text="I could not break that request into tasks. Please describe it more clearly.",
            )
        if requires_confirmation(decomposition.drafts):
            self.progress.add(f"Waiting for confirmation of {len(decomposition.drafts)} tasks")
            return OrchestratorResult(
                success=True,
                session_id=turn.session_id,
                reply_text=format_drafts_for_confirmation(decomposition.drafts),
                pending_confirmation=PendingConfirmation(turn.utterance, decomposition.drafts),
            )
        return self._commit_drafts(turn, decomposition.drafts)

    def _handle_query(self, turn: _Turn, intent: ClassifiedIntent) -> OrchestratorResult:
        outcome = self.resolver.resolve(turn.utterance, session_id=turn.session_id, history=turn.history)
        if outcome.is_confirmation:
            if not outcome.original_input:
                return OrchestratorResult(
                    success=False,
                    session_id=turn.session_id,
                    reply_text="I could not find the tasks you are confirming. Please send the full description again.",
                )
            self.progress.add("Confirmation received; re-analysing the original request")
            decomposition = self.decomposer.decompose(outcome.original_input, turn.now)
            if not decomposition.success:
                return OrchestratorResult(
                    success=False,
                    session_id=turn.session_id,
                    reply_text="Re-analysing the confirmed request failed. Please send the description again.",
                )
            return self._commit_drafts(turn, decomposition.drafts)
        return self._answer_query(turn)

    def _handle_adjustment(self, turn: _Turn, intent: ClassifiedIntent) -> OrchestratorResult:
        tasks = [task for task in self.store.list_all() if not task.is_completed]
        self.progress.add("Working out which tasks to adjust")
        deltas = self.adjustment_parser.parse(turn.utterance, tasks, turn.now)
        if not deltas:
            return OrchestratorResult(
                success=False,
                session_id=turn.session_id,
                reply_text="I could not tell which task to adjust. Please name the task explicitly.",
            )

        conflicts = self._adjustment_conflicts(deltas, tasks)
        if conflicts:
            return OrchestratorResult(
                success=False,
                session_id=turn.session_id,
                reply_text="These changes conflict with other tasks. How should I proceed?\n" + "\n".join(conflicts),
                conflicts=conflicts,
            )

        successes: List[str] = []
        failures: List[str] = []
        actions: List[str] = []
        for delta in deltas:
            descriptions = describe_changes(delta.changes)
            try:
                updated = self.store.update(delta.task_id, delta.changes)
            except TaskStoreError as exc:
                logger.error("Adjustment of %s failed: %s", delta.task_title, exc)
                failures.append(f'"{delta.task_title}" could not be updated')
                continue
            if updated is None:
                failures.append(f'"{delta.task_title}" no longer exists')
                continue
            successes.append(f'"{updated.title}" updated: {", ".join(descriptions)}')
            actions.extend(f"{updated.title}: {description}" for description in descriptions)

        parts: List[str] = []
        if successes:
            parts.append("\n".join(successes))
        if failures:
            parts.append("These adjustments failed:\n" + "\n".join(failures))
        log_metric("adjustment.applied", len(successes), {"failed": len(failures)})
        return OrchestratorResult(
            success=bool(successes),
            session_id=turn.session_id,
            reply_text="\n\n".join(parts) or "No task was changed.",
            actions=actions,
        )

    def _adjustment_conflicts(self, deltas: Sequence[TaskDelta], tasks: Sequence[Task]) -> List[str]:
        """Overlaps of moved tasks with unmoved tasks and with each other's new times."""
        by_id = {str(task.id): task for task in tasks}
        moves: List[Tuple[TaskDelta, datetime, Optional[int]]] = []
        for delta in deltas:
            start = delta.changes.get("scheduled_time")
            if start is None:
                continue
            task = by_id.get(str(delta.task_id))
            duration = delta.changes.get("estimated_duration") or (task.estimated_duration if task else None)
            moves.append((delta, start, duration))
        moved = {str(delta.task_id) for delta, _, _ in moves}

        conflicts: List[str] = []
        for delta, start, duration in moves:
            for other in self.store.find_time_conflicts(start, duration, exclude_id=delta.task_id):
                if str(other.id) in moved:
                    continue
                other_start, other_end = task_interval(other)
                conflicts.append(
                    f'"{delta.task_title}" at {format_wall_time(start)} overlaps "{other.title}" '
                    f"({format_wall_time(other_start)} to {other_end.strftime('%H:%M')})"
                )
        for index, (delta, start, duration) in enumerate(moves):
            for other_delta, other_start, other_duration in moves[index + 1 :]:
                if _intervals_overlap(start, duration, other_start, other_duration):
                    conflicts.append(
                        f'"{delta.task_title}" at {format_wall_time(start)} overlaps "{other_delta.task_title}" '
                        f"moved to {format_wall_time(other_start)}"
                    )
        return conflicts

    def _commit_drafts(self, turn: _Turn, drafts: Sequence[TaskDraft]) -> OrchestratorResult:
        created: List[Task] = []
        failures: List[str] = []
        for draft in drafts:
            try:
                created.append(self.store.create(draft))
            except TaskStoreError as exc:
                logger.error("Could not create task %r: %s", draft.title, exc)
                failures.append(draft.title)
        self.progress.add(f"Created {len(created)} task(s)")
        actions = [f"Created task: {task.title}" for task in created]

        synthesis = self._schedule(turn.now)
        actions.extend(self._synthesis_actions(synthesis))
        listing = "\n".join(f"{index}. {task.title}" for index, task in enumerate(created, start=1))
        parts = [f"Created {len(created)} task(s):\n{listing}"]
        if failures:
            parts.append("Could not create: " + ", ".join(failures))
        parts.append(synthesis.summary)
        return OrchestratorResult(
            success=bool(created) and synthesis.success,
            session_id=turn.session_id,
            reply_text="\n\n".join(parts),
            actions=actions,
        )

    def _schedule(self, now: datetime) -> SynthesisResult:
        required = self.store.list_required_incomplete()
        self.progress.add(f"Scheduling {len(required)} required task(s)")
        return self.synthesizer.synthesize(required, now)

    @staticmethod
    def _synthesis_actions(synthesis: SynthesisResult) -> List[str]:
        if not synthesis.success or not synthesis.scheduled_count:
            return []
        return [f"Scheduled {synthesis.scheduled_count} task(s)", synthesis.summary]

    def _answer_query(self, turn: _Turn) -> OrchestratorResult:
        self.progress.add("Looking at your tasks")
        stats = self._task_stats()
        prompt = self._query_prompt(turn.utterance, turn.now, stats)
        try:
            answer = (self.client.complete(prompt, temperature=QUERY_TEMPERATURE) or "").strip()
        except CompletionError as exc:
            logger.warning("Query answering fell back to summary: %s", exc)
            answer = ""
        return OrchestratorResult(
            success=True,
            session_id=turn.session_id,
            reply_text=answer or self._stats_summary(stats),
        )

    def _task_stats(self) -> Dict[str, int]:
        tasks = self.store.list_all()
        by_type = self.store.tasks_by_type()
        completed = sum(1 for task in tasks if task.is_completed)
        stats = {"total": len(tasks), "completed": completed, "pending": len(tasks) - completed}
        stats.update({member.value: len(by_type[member]) for member in TaskType})
        return stats

    @staticmethod
    def _query_prompt(utterance: str, now: datetime, stats: Dict[str, int]) -> str:
        return f"""{QUERY_PROMPT_HEADER}

{temporal_context_block(now)}

Question: {utterance}

Current tasks:
- total: {stats['total']}
- completed: {stats['completed']}
- pending: {stats['pending']}
- course: {stats['course']}
- trivial: {stats['trivial']}
- work: {stats['work']}
- learning: {stats['learning']}

Answer briefly, kindly and practically."""

    @staticmethod
    def _stats_summary(stats: Dict[str, int]) -> str:
        type_counts = ", ".join(f"{TaskType(key).display_name}: {stats[key]}" for key in (m.value for m in TaskType))
        return (
            f"You have {stats['total']} task(s): {stats['completed']} completed and {stats['pending']} pending "
            f"({type_counts})."
        )

    @staticmethod
    def _reply_metadata(result: OrchestratorResult) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {}
        if result.pending_confirmation is not None:
            metadata["task_analysis"] = result.pending_confirmation.to_dict()
        if result.actions:
            metadata["actions"] = list(result.actions)
        if result.conflicts:
            metadata["conflicts"] = list(result.conflicts)
        return metadata
