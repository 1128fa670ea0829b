"""Action executor: the single entry point that runs governed agent actions.

``submit`` evaluates an action, records it, and either returns a preview for
confirmation or carries it out. A preview token is the id of the pending audit
entry; confirming it locks that row and claims it (``pending -> confirmed``)
in its own commit before anything runs, so a duplicate confirmation finds the
entry no longer pending. Governance is checked again before the claim; a
preview that is no longer permitted is closed as ``failed``.

Business writes and the audit finalization share the request session and
commit together. When a handler fails the write is rolled back and the entry
is marked ``failed`` in a fresh transaction.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from action_governance.core.logging import get_logger
from action_governance.models.action_audit_entries import ActionAuditEntry
from action_governance.schemas.actions import (
    ActorContext,
    CreateAction,
    DeleteAction,
    ExecuteAction,
    ExecutionOutcome,
    NavigateAction,
    ProposedAction,
    RevertResult,
    UpdateAction,
    action_params,
    extract_collection,
    extract_record_id,
    rebuild_action,
)
from action_governance.services import audit
from action_governance.services.action_events.queue import (
    EVENT_CREATE,
    EVENT_EXECUTE,
    EVENT_REVERT,
    EVENT_UPDATE,
    ActionEvent,
    ActionEventPublisher,
)
from action_governance.services.data_store import DataStoreError, RecordNotFound
from action_governance.services.errors import (
    AuditEntryNotFound,
    ConfirmationRequired,
    ExecutionFailed,
    GovernanceError,
    PermissionDenied,
    PreviewAccessDenied,
    PreviewInvalidState,
    PreviewNotFound,
    RateLimitExceeded,
    RevertFailed,
)
from action_governance.services.governance_evaluator import (
    CODE_RATE_LIMITED,
    PermissionDecision,
    evaluate,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

    from action_governance.services.data_store import BusinessDataStore
    from action_governance.services.policy_store import GovernanceSettingsProvider

logger = get_logger(__name__)


@dataclass
class _DispatchResult:
    before_data: dict[str, Any] | None = None
    after_data: dict[str, Any] | None = None
    record_id: str | None = None
    data: dict[str, Any] | None = None
    redirect_url: str | None = None
    events: list[ActionEvent] = field(default_factory=list)


def _failure(error: GovernanceError, **extra: Any) -> ExecutionOutcome:
    return ExecutionOutcome(
        success=False,
        message=error.message,
        error_code=error.code,
        audit_id=error.audit_id,
        **extra,
    )


def _same_action(entry: ActionAuditEntry, action: ProposedAction) -> bool:
    return (
        entry.action_type == action.action_type
        and entry.target == action.target
        and (entry.action_params or {}) == action_params(action)
    )


def _elapsed_ms(started: float, clock: Callable[[], float]) -> int:
    return max(0, int((clock() - started) * 1000))


class ActionExecutor:
    """Runs, previews, and reverts agent actions for one request session."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        data_store: BusinessDataStore,
        publisher: ActionEventPublisher,
        settings_provider: GovernanceSettingsProvider,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.session = session
        self.data_store = data_store
        self.publisher = publisher
        self.settings_provider = settings_provider
        self._clock = clock

    async def evaluate(
        self,
        action: ProposedAction,
        actor: ActorContext,
        *,
        enforce_rate_limit: bool = True,
    ) -> PermissionDecision:
        """Dry-run governance decision; nothing is recorded."""
        return await evaluate(
            self.session,
            action=action,
            actor=actor,
            settings_provider=self.settings_provider,
            enforce_rate_limit=enforce_rate_limit,
        )

    async def submit(
        self,
        action: ProposedAction,
        actor: ActorContext,
        preview_token: UUID | None = None,
    ) -> ExecutionOutcome:
        if preview_token is not None:
            return await self._confirm(action, actor, preview_token)

        decision = await self.evaluate(action, actor)
        if not decision.allowed:
            return await self._reject(action, actor, decision)

        if decision.requires_confirmation:
            preview = await self._build_preview(action)
            entry = await audit.record_action(
                self.session,
                actor=actor,
                action=action,
                matched_rule_id=decision.matched_rule_id,
                preview_payload=preview,
            )
            logger.info(
                "action.submit.preview",
                extra={"audit_id": str(entry.id), "action_type": action.action_type},
            )
            pending = ConfirmationRequired(
                "Please confirm this action before it is executed",
                audit_id=entry.id,
            )
            return _failure(
                pending,
                status=entry.status,
                requires_confirmation=True,
                preview_token=entry.id,
                preview=preview,
            )

        entry = await audit.record_action(
            self.session,
            actor=actor,
            action=action,
            matched_rule_id=decision.matched_rule_id,
        )
        return await self._execute(entry, action)

    async def _reject(
        self,
        action: ProposedAction,
        actor: ActorContext,
        decision: PermissionDecision,
    ) -> ExecutionOutcome:
        entry = await audit.record_action(
            self.session,
            actor=actor,
            action=action,
            status=audit.STATUS_REJECTED,
            matched_rule_id=decision.matched_rule_id,
            error_code=decision.rejection_code,
            error_message=decision.rejection_reason,
        )
        logger.info(
            "action.submit.rejected",
            extra={
                "audit_id": str(entry.id),
                "user_id": str(actor.user_id),
                "action_type": action.action_type,
                "rejection_code": decision.rejection_code,
            },
        )
        reason = decision.rejection_reason or "Action not permitted"
        if decision.rejection_code == CODE_RATE_LIMITED and decision.rate_limit is not None:
            limited = RateLimitExceeded(
                reason,
                reset_at=decision.rate_limit.reset_at,
                audit_id=entry.id,
            )
            return _failure(limited, status=entry.status, reset_at=limited.reset_at)
        return _failure(PermissionDenied(reason, audit_id=entry.id), status=entry.status)

    async def _build_preview(self, action: ProposedAction) -> dict[str, Any]:
        preview: dict[str, Any] = {
            "action_type": action.action_type,
            "label": action.label,
            "target": action.target,
            "params": action_params(action),
        }
        if isinstance(action, (UpdateAction, DeleteAction)):
            collection = extract_collection(action.target)
            record_id = extract_record_id(action.target)
            current: dict[str, Any] | None = None
            if collection is not None and record_id is not None:
                try:
                    current = await self.data_store.read_row(collection, record_id)
                except DataStoreError as exc:
                    logger.warning(
                        "action.preview.read_failed",
                        extra={"target": action.target, "error": str(exc)},
                    )
            preview["current"] = current
        return preview

    async def _confirm(
        self,
        action: ProposedAction,
        actor: ActorContext,
        preview_token: UUID,
    ) -> ExecutionOutcome:
        entry = await ActionAuditEntry.objects.by_id(preview_token).for_update().first(
            self.session
        )
        if entry is None:
            await self.session.rollback()
            return _failure(PreviewNotFound("Preview not found or expired"))
        if entry.user_id != actor.user_id:
            await self.session.rollback()
            logger.warning(
                "action.confirm.access_denied",
                extra={"audit_id": str(preview_token), "user_id": str(actor.user_id)},
            )
            return _failure(
                PreviewAccessDenied(
                    "This preview belongs to another user",
                    audit_id=preview_token,
                ),
            )
        if entry.status != audit.STATUS_PENDING:
            status = entry.status
            await self.session.rollback()
            return _failure(
                PreviewInvalidState(
                    f"This action has already been {status}",
                    audit_id=preview_token,
                ),
                status=status,
            )
        if not _same_action(entry, action):
            await self.session.rollback()
            return _failure(
                PreviewInvalidState(
                    "The submitted action does not match the previewed action",
                    audit_id=preview_token,
                ),
                status=audit.STATUS_PENDING,
            )

        stored = rebuild_action(
            action_type=entry.action_type,
            label=entry.action_label,
            target=entry.target,
            params=entry.action_params,
        )
        # The preview already counted against the rate limit.
        decision = await self.evaluate(stored, actor, enforce_rate_limit=False)
        if not decision.allowed:
            return await self._reject_confirmation(entry, decision)
        audit.transition_status(entry, audit.STATUS_CONFIRMED)
        self.session.add(entry)
        await self.session.commit()
        logger.info("action.confirm.claimed", extra={"audit_id": str(entry.id)})
        return await self._execute(entry, stored)

    async def _reject_confirmation(
        self,
        entry: ActionAuditEntry,
        decision: PermissionDecision,
    ) -> ExecutionOutcome:
        """Close a preview that governance no longer permits (pending -> failed)."""
        entry_id = entry.id
        reason = decision.rejection_reason or "Action not permitted"
        audit.mark_failed(
            entry,
            error_code=decision.rejection_code or PermissionDenied.code,
            error_message=reason,
            duration_ms=0,
        )
        self.session.add(entry)
        await self.session.commit()
        logger.info(
            "action.confirm.rejected",
            extra={"audit_id": str(entry_id), "rejection_code": decision.rejection_code},
        )
        return _failure(PermissionDenied(reason, audit_id=entry_id), status=audit.STATUS_FAILED)

    async def _execute(self, entry: ActionAuditEntry, action: ProposedAction) -> ExecutionOutcome:
        entry_id = entry.id
        started = self._clock()
        try:
            result = await self._dispatch(entry, action)
            audit.mark_completed(
                entry,
                before_data=result.before_data,
                after_data=result.after_data,
                record_id=result.record_id,
                duration_ms=_elapsed_ms(started, self._clock),
            )
            self.session.add(entry)
            await self.session.commit()
        except Exception as exc:
            return await self._fail(entry_id, action, exc, started)

        for event in result.events:
            self.publisher.publish(event)
        logger.info(
            "action.execute.completed",
            extra={
                "audit_id": str(entry_id),
                "action_type": action.action_type,
                "duration_ms": entry.duration_ms,
            },
        )
        return ExecutionOutcome(
            success=True,
            status=entry.status,
            message=f"{action.label or action.action_type.capitalize()} completed",
            audit_id=entry_id,
            data=result.data,
            redirect_url=result.redirect_url,
        )

    async def _fail(
        self,
        entry_id: UUID,
        action: ProposedAction,
        exc: Exception,
        started: float,
    ) -> ExecutionOutcome:
        logger.exception(
            "action.execute.failed",
            extra={"audit_id": str(entry_id), "action_type": action.action_type},
        )
        await self.session.rollback()
        entry = await ActionAuditEntry.objects.by_id(entry_id).first(self.session)
        if entry is not None:
            audit.mark_failed(
                entry,
                error_code=(
                    exc.code
                    if isinstance(exc, (GovernanceError, DataStoreError))
                    else ExecutionFailed.code
                ),
                error_message=str(exc) or type(exc).__name__,
                duration_ms=_elapsed_ms(started, self._clock),
            )
            self.session.add(entry)
            await self.session.commit()
        failed = ExecutionFailed(
            f"The action could not be completed. Reference: {entry_id}",
            audit_id=entry_id,
        )
        return _failure(failed, status=audit.STATUS_FAILED)

    async def _dispatch(self, entry: ActionAuditEntry, action: ProposedAction) -> _DispatchResult:
        if isinstance(action, NavigateAction):
            return _DispatchResult(redirect_url=action.target)
        if isinstance(action, CreateAction):
            return await self._create(entry, action)
        if isinstance(action, UpdateAction):
            return await self._update(entry, action)
        if isinstance(action, DeleteAction):
            return await self._delete(action)
        if isinstance(action, ExecuteAction):
            return self._execute_command(entry, action)
        raise ExecutionFailed(f"Unsupported action type: {action.action_type}")

    def _event(
        self,
        entry: ActionAuditEntry,
        event_type: str,
        *,
        record_id: str | None,
        payload: dict[str, Any],
    ) -> ActionEvent:
        return ActionEvent(
            event_type=event_type,
            audit_id=entry.id,
            user_id=entry.user_id,
            collection=entry.target_collection,
            record_id=record_id,
            payload=payload,
        )

    async def _create(self, entry: ActionAuditEntry, action: CreateAction) -> _DispatchResult:
        collection = extract_collection(action.target) or ""
        row = await self.data_store.insert_row(collection, action.params.values)
        record_id = str(row["id"])
        return _DispatchResult(
            # The row did not exist before: an empty snapshot, undone by deletion.
            before_data={},
            after_data=row,
            record_id=record_id,
            data=row,
            redirect_url=f"/{collection}/{record_id}",
            events=[self._event(entry, EVENT_CREATE, record_id=record_id, payload={"after": row})],
        )

    async def _update(self, entry: ActionAuditEntry, action: UpdateAction) -> _DispatchResult:
        collection = extract_collection(action.target) or ""
        record_id = extract_record_id(action.target) or ""
        before = await self.data_store.read_row(collection, record_id)
        if before is None:
            raise RecordNotFound(f"Record {collection}/{record_id} does not exist")
        after = await self.data_store.update_row(collection, record_id, action.params.changes)
        return _DispatchResult(
            before_data=before,
            after_data=after,
            record_id=record_id,
            data=after,
            redirect_url=f"/{collection}/{record_id}",
            events=[
                self._event(
                    entry,
                    EVENT_UPDATE,
                    record_id=record_id,
                    payload={"changes": action_params(action)["changes"], "after": after},
                ),
            ],
        )

    async def _delete(self, action: DeleteAction) -> _DispatchResult:
        collection = extract_collection(action.target) or ""
        record_id = extract_record_id(action.target) or ""
        before = await self.data_store.read_row(collection, record_id)
        if before is None:
            raise RecordNotFound(f"Record {collection}/{record_id} does not exist")
        await self.data_store.delete_row(collection, record_id)
        return _DispatchResult(
            before_data=before,
            record_id=record_id,
            redirect_url=f"/{collection}",
        )

    def _execute_command(self, entry: ActionAuditEntry, action: ExecuteAction) -> _DispatchResult:
        params = action_params(action)
        return _DispatchResult(
            after_data=params,
            data={"command": action.params.command},
            events=[self._event(entry, EVENT_EXECUTE, record_id=None, payload=params)],
        )

    async def revert(
        self,
        audit_id: UUID,
        *,
        actor: ActorContext,
        reason: str | None = None,
        owner_id: UUID | None = None,
    ) -> RevertResult:
        """Undo a completed create/update/delete.

        ``owner_id`` restricts the revert to entries created by that user.
        """
        entry = await ActionAuditEntry.objects.by_id(audit_id).for_update().first(self.session)
        precondition = self._revert_precondition(entry, audit_id, owner_id)
        if precondition is not None or entry is None:
            await self.session.rollback()
            return RevertResult(
                success=False,
                message=precondition.message,
                error_code=precondition.code,
                audit_id=audit_id,
            )
        before_data = dict(entry.before_data or {})
        action_type = entry.action_type
        collection = entry.target_collection or ""
        record_id = entry.target_record_id or ""
        try:
            restored = await self._restore(action_type, collection, record_id, before_data)
            audit.transition_status(entry, audit.STATUS_REVERTED)
            entry.reverted_by = actor.user_id
            entry.revert_reason = reason
            self.session.add(entry)
            bookkeeping = self._revert_entry(entry, actor, reason, restored)
            self.session.add(bookkeeping)
            await self.session.commit()
        except Exception as exc:
            logger.exception(
                "action.revert.failed",
                extra={"audit_id": str(audit_id), "action_type": action_type},
            )
            await self.session.rollback()
            return RevertResult(
                success=False,
                message=f"Revert failed: {exc}",
                error_code=RevertFailed.code,
                audit_id=audit_id,
            )

        self.publisher.publish(
            ActionEvent(
                event_type=EVENT_REVERT,
                audit_id=audit_id,
                user_id=actor.user_id,
                collection=collection or None,
                record_id=record_id or None,
                payload={"reverted_action_type": action_type, "reason": reason},
            ),
        )
        logger.info(
            "action.revert.completed",
            extra={
                "audit_id": str(audit_id),
                "revert_entry_id": str(bookkeeping.id),
                "reverted_by": str(actor.user_id),
            },
        )
        return RevertResult(
            success=True,
            message=f"Reverted {action_type} on {collection}/{record_id}",
            audit_id=audit_id,
            revert_entry_id=bookkeeping.id,
            reverted_data=restored,
        )

    @staticmethod
    def _revert_precondition(
        entry: ActionAuditEntry | None,
        audit_id: UUID,
        owner_id: UUID | None,
    ) -> GovernanceError | None:
        if entry is None:
            return AuditEntryNotFound("Audit entry not found", audit_id=audit_id)
        if owner_id is not None and entry.user_id != owner_id:
            return PermissionDenied("You can only revert your own actions", audit_id=audit_id)
        if entry.status == audit.STATUS_REVERTED:
            return RevertFailed("This action has already been reverted", audit_id=audit_id)
        if not entry.is_revertible:
            return RevertFailed("This action cannot be reverted", audit_id=audit_id)
        if entry.before_data is None:
            return RevertFailed("No previous state recorded for this action", audit_id=audit_id)
        return None

    async def _restore(
        self,
        action_type: str,
        collection: str,
        record_id: str,
        before_data: dict[str, Any],
    ) -> dict[str, Any] | None:
        if action_type == "update":
            changes = {key: value for key, value in before_data.items() if key != "id"}
            return await self.data_store.update_row(collection, record_id, changes)
        if action_type == "create":
            if not await self.data_store.delete_row(collection, record_id):
                raise RecordNotFound(f"Record {collection}/{record_id} no longer exists")
            return None
        if action_type == "delete":
            return await self.data_store.insert_row(collection, before_data)
        raise RevertFailed(f"Cannot revert {action_type} actions")

    @staticmethod
    def _revert_entry(
        entry: ActionAuditEntry,
        actor: ActorContext,
        reason: str | None,
        restored: dict[str, Any] | None,
    ) -> ActionAuditEntry:
        bookkeeping = ActionAuditEntry(
            user_id=actor.user_id,
            user_role=actor.user_role,
            session_id=actor.session_id,
            ip_address=actor.ip_address,
            user_agent=actor.user_agent,
            action_type=audit.REVERT_ACTION_TYPE,
            action_label=f"Revert: {entry.action_label}".strip(),
            target=entry.target,
            target_collection=entry.target_collection,
            target_record_id=entry.target_record_id,
            action_params={"reason": reason},
            before_data=entry.after_data,
            after_data=restored,
            reverts_entry_id=entry.id,
        )
        return audit.transition_status(bookkeeping, audit.STATUS_COMPLETED)
