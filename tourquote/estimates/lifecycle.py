"""Estimate lifecycle state machine.

States: draft → pending → sent → {approved → completed, cancelled}, plus the
revision loop sent/pending → pending. Every transition is a conditional
``UPDATE ... WHERE status IN (allowed)``; a write that matches no row is a
state conflict, never a silent no-op. Side effects run as post-commit hooks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tourquote.catalog.repository import to_entry
from tourquote.db.connection import SessionScope, get_session
from tourquote.db.models import CatalogItemModel, ChatSessionModel, EstimateModel
from tourquote.errors import NotFoundError, StateConflictError
from tourquote.estimates.hooks import (
    ESTIMATE_COMPLETED,
    ESTIMATE_RESPONDED,
    ESTIMATE_SENT,
    ESTIMATE_SUBMITTED,
    ESTIMATE_UPDATED,
    PostCommitHooks,
)
from tourquote.matching.filters import reindex_days
from tourquote.models import (
    CatalogItem,
    CustomerResponse,
    EstimateStatus,
    PlaceholderItem,
    RevisionEntry,
    dump_items,
    load_items,
)

logger = structlog.get_logger(__name__)

# Target status -> statuses it may be entered from
TRANSITIONS: dict[str, dict[EstimateStatus, frozenset[EstimateStatus]]] = {
    "submit": {EstimateStatus.PENDING: frozenset({EstimateStatus.DRAFT})},
    "send": {EstimateStatus.SENT: frozenset({EstimateStatus.PENDING})},
    "approve": {EstimateStatus.APPROVED: frozenset({EstimateStatus.SENT, EstimateStatus.PENDING})},
    "decline": {EstimateStatus.CANCELLED: frozenset({EstimateStatus.SENT, EstimateStatus.PENDING})},
    "revise": {EstimateStatus.PENDING: frozenset({EstimateStatus.SENT, EstimateStatus.PENDING})},
    "complete": {EstimateStatus.COMPLETED: frozenset({EstimateStatus.APPROVED})},
}

EDITABLE = frozenset({EstimateStatus.DRAFT, EstimateStatus.PENDING})


def _now() -> datetime:
    return datetime.now(timezone.utc)


def compute_totals(items: list[PlaceholderItem | CatalogItem]) -> Decimal:
    return sum((item.subtotal for item in items), Decimal("0"))


def estimate_payload(estimate: EstimateModel, **extra: Any) -> dict[str, Any]:
    """Summary passed to hooks, bus subscribers and API responses."""
    items = load_items(estimate.items)
    payload: dict[str, Any] = {
        "id": estimate.id,
        "session_id": estimate.session_id,
        "title": estimate.title,
        "status": estimate.status,
        "share_token": estimate.share_token,
        "customer_name": estimate.customer_name,
        "customer_email": estimate.customer_email,
        "items": dump_items(items),
        "placeholder_count": sum(1 for i in items if isinstance(i, PlaceholderItem)),
        "total_amount": str(estimate.total_amount),
    }
    payload.update(extra)
    return payload


def inquiry_payload(chat: ChatSessionModel) -> dict[str, Any]:
    """Hook payload for a session submitted before any estimate was generated."""
    return {
        "id": None,
        "session_id": chat.id,
        "title": f"Inquiry - {chat.customer_name or 'Guest'}",
        "status": EstimateStatus.PENDING.value,
        "share_token": None,
        "customer_name": chat.customer_name,
        "customer_email": chat.customer_email,
        "items": [],
        "placeholder_count": 0,
        "total_amount": "0",
    }


@dataclass
class SubmissionResult:
    already_submitted: bool
    status: str | None
    estimate_id: int | None = None
    warning: str | None = None


@dataclass
class ResponseResult:
    status: str
    revision_number: int | None = None
    warnings: list[str] = field(default_factory=list)


class EstimateLifecycle:
    """Lifecycle transitions for estimates and their sessions."""

    def __init__(
        self,
        hooks: PostCommitHooks | None = None,
        session_scope: SessionScope = get_session,
    ) -> None:
        self.hooks = hooks or PostCommitHooks()
        self.session_scope = session_scope

    async def _transition(
        self,
        session: AsyncSession,
        estimate_id: int,
        action: str,
        expected_version: int | None = None,
        **values: Any,
    ) -> EstimateStatus:
        """Apply one conditional status transition inside ``session``.

        Args:
            expected_version: Also require the version read by the caller,
                for transitions whose new values derive from that read

        Raises:
            NotFoundError: If the estimate does not exist
            StateConflictError: If its current status does not allow ``action``,
                or it changed since ``expected_version`` was read
        """
        ((target, allowed),) = TRANSITIONS[action].items()
        conditions = [
            EstimateModel.id == estimate_id,
            EstimateModel.status.in_([s.value for s in allowed]),
        ]
        if expected_version is not None:
            conditions.append(EstimateModel.version == expected_version)
        result = await session.execute(
            update(EstimateModel)
            .where(*conditions)
            .values(
                status=target.value,
                version=EstimateModel.version + 1,
                updated_at=_now(),
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = await session.scalar(
                select(EstimateModel.status).where(EstimateModel.id == estimate_id)
            )
            if current is None:
                raise NotFoundError(f"Estimate {estimate_id} not found")
            if EstimateStatus(current) in allowed:
                raise StateConflictError(
                    f"Estimate {estimate_id} was modified concurrently; retry {action}",
                    current_status=current,
                )
            raise StateConflictError(
                f"Cannot {action} estimate {estimate_id} from status '{current}'",
                current_status=current,
            )
        logger.info(
            "estimate_transition", estimate_id=estimate_id, action=action, status=target.value
        )
        return target

    async def _load_estimate(self, session: AsyncSession, estimate_id: int) -> EstimateModel:
        estimate = await session.scalar(
            select(EstimateModel)
            .where(EstimateModel.id == estimate_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if estimate is None:
            raise NotFoundError(f"Estimate {estimate_id} not found")
        return estimate

    async def _session_estimate_id(self, session: AsyncSession, session_id: str) -> int:
        chat = await session.get(ChatSessionModel, session_id)
        if chat is None:
            raise NotFoundError(f"Session {session_id} not found")
        if chat.estimate_id is None:
            raise NotFoundError(f"Session {session_id} has no estimate")
        return chat.estimate_id

    async def submit_to_expert(self, session_id: str) -> SubmissionResult:
        """Hand the session's estimate to a human expert, at most once.

        The ``is_completed`` false→true flip is the guard: only the caller
        whose conditional update matched the row moves a draft estimate to
        pending and runs the notification hooks. Every other caller gets
        ``already_submitted=True`` and no side effects.

        A session without an estimate is submitted as a plain inquiry: the
        flag still flips and the hooks receive an inquiry payload.

        Raises:
            NotFoundError: If the session does not exist
        """
        async with self.session_scope() as session:
            chat = await session.get(ChatSessionModel, session_id)
            if chat is None:
                raise NotFoundError(f"Session {session_id} not found")
            estimate_id = chat.estimate_id

            flipped = await session.execute(
                update(ChatSessionModel)
                .where(
                    ChatSessionModel.id == session_id,
                    ChatSessionModel.is_completed.is_(False),
                )
                .values(is_completed=True, completed_at=_now())
                .execution_options(synchronize_session=False)
            )
            if flipped.rowcount == 0:
                status = EstimateStatus.PENDING.value
                if estimate_id is not None:
                    status = await session.scalar(
                        select(EstimateModel.status).where(EstimateModel.id == estimate_id)
                    )
                logger.info(
                    "submission_already_sent", session_id=session_id, estimate_id=estimate_id
                )
                return SubmissionResult(
                    already_submitted=True, status=status, estimate_id=estimate_id
                )

            if estimate_id is None:
                payload = inquiry_payload(chat)
            else:
                await session.execute(
                    update(EstimateModel)
                    .where(
                        EstimateModel.id == estimate_id,
                        EstimateModel.status == EstimateStatus.DRAFT.value,
                    )
                    .values(
                        status=EstimateStatus.PENDING.value,
                        version=EstimateModel.version + 1,
                        updated_at=_now(),
                    )
                    .execution_options(synchronize_session=False)
                )
                estimate = await self._load_estimate(session, estimate_id)
                payload = estimate_payload(estimate)

        warnings = await self.hooks.run(ESTIMATE_SUBMITTED, payload)
        logger.info(
            "submission_sent",
            session_id=session_id,
            estimate_id=estimate_id,
            warnings=len(warnings),
        )
        return SubmissionResult(
            already_submitted=False,
            status=payload["status"],
            estimate_id=estimate_id,
            warning="; ".join(warnings) if warnings else None,
        )

    async def respond_to_estimate(
        self,
        session_id: str,
        response: str | CustomerResponse,
        revision_details: dict[str, Any] | str | None = None,
    ) -> ResponseResult:
        """Record the customer's answer to an estimate.

        ``approved`` → approved, ``declined`` → cancelled, ``revision`` →
        pending with one new revision-log entry. Items are never touched.

        Raises:
            ValueError: If ``response`` is not a known response kind
            NotFoundError: If the session or its estimate does not exist
            StateConflictError: If the estimate is not sent or pending, or a
                concurrent revision was recorded first
        """
        kind = CustomerResponse(response)

        async with self.session_scope() as session:
            estimate_id = await self._session_estimate_id(session, session_id)
            revision_number = None

            if kind == CustomerResponse.REVISION:
                estimate = await self._load_estimate(session, estimate_id)
                allowed = TRANSITIONS["revise"][EstimateStatus.PENDING]
                if EstimateStatus(estimate.status) not in allowed:
                    raise StateConflictError(
                        f"Cannot revise estimate {estimate_id} from status '{estimate.status}'",
                        current_status=estimate.status,
                    )
                if isinstance(revision_details, str):
                    note, details = revision_details, {}
                else:
                    details = dict(revision_details or {})
                    note = details.pop("note", None)
                history = list(estimate.revision_history or [])
                entry = RevisionEntry(
                    revision_number=len(history) + 1,
                    requested_at=_now(),
                    note=note,
                    details=details,
                )
                revision_number = entry.revision_number
                status = await self._transition(
                    session,
                    estimate_id,
                    "revise",
                    expected_version=estimate.version,
                    revision_history=history + [entry.model_dump(mode="json")],
                    responded_at=_now(),
                )
            else:
                action = "approve" if kind == CustomerResponse.APPROVED else "decline"
                status = await self._transition(
                    session, estimate_id, action, responded_at=_now()
                )

            estimate = await self._load_estimate(session, estimate_id)
            payload = estimate_payload(
                estimate, response=kind.value, revision_number=revision_number
            )

        warnings = await self.hooks.run(ESTIMATE_RESPONDED, payload)
        return ResponseResult(
            status=status.value, revision_number=revision_number, warnings=warnings
        )

    async def send_estimate(self, estimate_id: int) -> str:
        """Dispatch a pending estimate to the customer (pending → sent)."""
        async with self.session_scope() as session:
            status = await self._transition(session, estimate_id, "send", sent_at=_now())
            payload = estimate_payload(await self._load_estimate(session, estimate_id))
        await self.hooks.run(ESTIMATE_SENT, payload)
        return status.value

    async def complete_estimate(self, estimate_id: int) -> str:
        """Close an approved estimate once the tour is booked (approved → completed)."""
        async with self.session_scope() as session:
            status = await self._transition(session, estimate_id, "complete")
            payload = estimate_payload(await self._load_estimate(session, estimate_id))
        await self.hooks.run(ESTIMATE_COMPLETED, payload)
        return status.value

    async def link_session_identity(self, session_id: str, user_id: str) -> None:
        """Attach an authenticated identity to a guest session.

        Succeeds only if the identity slot is empty or already holds
        ``user_id``.

        Raises:
            NotFoundError: If the session does not exist
            StateConflictError: If the session belongs to another identity
        """
        async with self.session_scope() as session:
            result = await session.execute(
                update(ChatSessionModel)
                .where(
                    ChatSessionModel.id == session_id,
                    or_(
                        ChatSessionModel.user_id.is_(None),
                        ChatSessionModel.user_id == user_id,
                    ),
                )
                .values(user_id=user_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                exists = await session.scalar(
                    select(ChatSessionModel.id).where(ChatSessionModel.id == session_id)
                )
                if exists is None:
                    raise NotFoundError(f"Session {session_id} not found")
                raise StateConflictError(f"Session {session_id} is linked to another identity")
        logger.info("session_identity_linked", session_id=session_id)

    async def _edit_items(
        self, session: AsyncSession, estimate: EstimateModel, items: list
    ) -> None:
        items = reindex_days(items)
        total = compute_totals(items)
        result = await session.execute(
            update(EstimateModel)
            .where(
                EstimateModel.id == estimate.id,
                EstimateModel.status.in_([s.value for s in EDITABLE]),
                EstimateModel.version == estimate.version,
            )
            .values(
                items=dump_items(items),
                subtotal=total,
                total_amount=total,
                version=estimate.version + 1,
                updated_at=_now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = await session.scalar(
                select(EstimateModel.status).where(EstimateModel.id == estimate.id)
            )
            raise StateConflictError(
                f"Estimate {estimate.id} changed while being edited; reload and retry",
                current_status=current,
            )

    def _check_editable(self, estimate: EstimateModel) -> None:
        if EstimateStatus(estimate.status) not in EDITABLE:
            raise StateConflictError(
                f"Estimate {estimate.id} cannot be edited in status '{estimate.status}'",
                current_status=estimate.status,
            )

    async def resolve_placeholder(
        self, estimate_id: int, item_id: str, catalog_id: int
    ) -> dict[str, Any]:
        """Replace a placeholder with a catalog item chosen by an expert.

        The item keeps its identity, day and position; generation metadata
        is left as generated.

        Raises:
            NotFoundError: If the estimate, item or catalog entry does not exist
            StateConflictError: If the item is not a placeholder or the
                estimate is no longer editable
        """
        async with self.session_scope() as session:
            estimate = await self._load_estimate(session, estimate_id)
            self._check_editable(estimate)

            items = load_items(estimate.items)
            index = next((i for i, item in enumerate(items) if item.id == item_id), None)
            if index is None:
                raise NotFoundError(f"Item {item_id} not found in estimate {estimate_id}")
            placeholder = items[index]
            if not isinstance(placeholder, PlaceholderItem):
                raise StateConflictError(f"Item {item_id} is already resolved")

            row = await session.get(CatalogItemModel, catalog_id)
            if row is None or not row.is_active:
                raise NotFoundError(f"Catalog item {catalog_id} not found")

            pax = max(estimate.adults + estimate.children + estimate.infants, 1)
            resolved = CatalogItem.from_entry(
                to_entry(row),
                day=placeholder.day,
                order_index=placeholder.order_index,
                quantity=pax,
                note=placeholder.note,
            ).model_copy(update={"id": placeholder.id})
            items[index] = resolved

            await self._edit_items(session, estimate, items)
            payload = estimate_payload(await self._load_estimate(session, estimate_id))

        await self.hooks.run(ESTIMATE_UPDATED, payload)
        return payload

    async def remove_item(self, estimate_id: int, item_id: str) -> dict[str, Any]:
        """Remove one item and close the gap in its day's ordering."""
        async with self.session_scope() as session:
            estimate = await self._load_estimate(session, estimate_id)
            self._check_editable(estimate)

            items = load_items(estimate.items)
            remaining = [item for item in items if item.id != item_id]
            if len(remaining) == len(items):
                raise NotFoundError(f"Item {item_id} not found in estimate {estimate_id}")

            await self._edit_items(session, estimate, remaining)
            payload = estimate_payload(await self._load_estimate(session, estimate_id))

        await self.hooks.run(ESTIMATE_UPDATED, payload)
        return payload

    async def get_estimate(self, estimate_id: int) -> dict[str, Any]:
        async with self.session_scope() as session:
            estimate = await session.get(EstimateModel, estimate_id)
            if estimate is None:
                raise NotFoundError(f"Estimate {estimate_id} not found")
            return estimate_payload(
                estimate,
                revision_history=list(estimate.revision_history or []),
                generation_metadata=estimate.generation_metadata,
                valid_until=estimate.valid_until.isoformat() if estimate.valid_until else None,
            )
