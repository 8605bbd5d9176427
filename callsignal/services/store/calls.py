"""Call record store: persistence plus change notification."""
import logging
from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from callsignal.core.errors import WriteConflictError, WriteFailureError
from callsignal.db.models import Call
from callsignal.services.calls.models import CallRecord, CallStatus, CallType
from callsignal.services.store.events import ChangeEvent, ChangeKind
from callsignal.services.store.feed import ChangeFeed

logger = logging.getLogger(__name__)

CALLS_TABLE = "calls"

_WRITABLE_FIELDS = {"status", "started_at", "ended_at"}


def call_to_dict(call: Call) -> Dict[str, Any]:
    """Serialize a call row into a change-event payload."""
    return {
        "id": call.id,
        "caller_id": call.caller_id,
        "receiver_id": call.receiver_id,
        "status": call.status,
        "call_type": call.call_type,
        "started_at": call.started_at,
        "ended_at": call.ended_at,
        "created_at": call.created_at,
    }


class CallRecordStore:
    """Persists call records and publishes every committed change."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], feed: ChangeFeed):
        self.session_factory = session_factory
        self.feed = feed

    async def create_call(
        self,
        caller_id: str,
        receiver_id: str,
        call_type: CallType = CallType.VOICE,
    ) -> CallRecord:
        """Insert a pending call and notify subscribers."""
        try:
            async with self.session_factory() as db:
                call = Call(
                    caller_id=caller_id,
                    receiver_id=receiver_id,
                    status=CallStatus.PENDING.value,
                    call_type=CallType(call_type).value,
                )
                db.add(call)
                await db.commit()
                await db.refresh(call)
                payload = call_to_dict(call)
        except SQLAlchemyError as e:
            logger.error(f"[CALL STORE] Failed to create call {caller_id} -> {receiver_id}: {e}")
            raise WriteFailureError(f"Failed to create call: {e}") from e

        logger.info(f"[CALL STORE] Created call {payload['id']} - {caller_id} -> {receiver_id}")
        self.feed.publish(ChangeEvent(kind=ChangeKind.INSERT, table=CALLS_TABLE, record=payload))
        return CallRecord.model_validate(payload)

    async def get_call(self, call_id: str) -> Optional[CallRecord]:
        """Get a call by id."""
        async with self.session_factory() as db:
            call = await db.get(Call, call_id)
            return CallRecord.model_validate(call_to_dict(call)) if call else None

    async def update_call(
        self,
        call_id: str,
        fields: Dict[str, Any],
        expected_status: Optional[CallStatus] = None,
    ) -> CallRecord:
        """
        Apply a partial update, optionally guarded by the current status.

        Raises:
            WriteConflictError: the record is gone or its status no longer
                matches ``expected_status``.
            WriteFailureError: the database rejected the write.
        """
        unknown = set(fields) - _WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not writable: {sorted(unknown)}")

        values = {
            key: value.value if isinstance(value, CallStatus) else value
            for key, value in fields.items()
        }

        try:
            async with self.session_factory() as db:
                stmt = update(Call).where(Call.id == call_id)
                if expected_status is not None:
                    stmt = stmt.where(Call.status == CallStatus(expected_status).value)
                result = await db.execute(stmt.values(**values))

                if result.rowcount == 0:
                    await db.rollback()
                    current = await db.get(Call, call_id)
                    actual = current.status if current else None
                    logger.info(
                        f"[CALL STORE] Conditional update lost - call: {call_id}, "
                        f"expected: {expected_status}, actual: {actual}"
                    )
                    raise WriteConflictError(
                        call_id,
                        expected_status=str(expected_status) if expected_status else None,
                        actual_status=actual,
                    )

                await db.commit()
                call = await db.get(Call, call_id, populate_existing=True)
                payload = call_to_dict(call)
        except SQLAlchemyError as e:
            logger.error(f"[CALL STORE] Update failed for call {call_id}: {e}")
            raise WriteFailureError(f"Failed to update call {call_id}: {e}") from e

        logger.info(f"[CALL STORE] Updated call {call_id} - {values}")
        self.feed.publish(ChangeEvent(kind=ChangeKind.UPDATE, table=CALLS_TABLE, record=payload))
        return CallRecord.model_validate(payload)

    async def end_call(self, call_id: str) -> CallRecord:
        """Hang up an accepted call."""
        return await self.update_call(
            call_id,
            {"status": CallStatus.ENDED, "ended_at": datetime.utcnow()},
            expected_status=CallStatus.ACCEPTED,
        )

    async def mark_missed(self, call_id: str) -> CallRecord:
        """Mark a still-pending call as missed."""
        return await self.update_call(
            call_id,
            {"status": CallStatus.MISSED, "ended_at": datetime.utcnow()},
            expected_status=CallStatus.PENDING,
        )

    async def count_calls(self, receiver_id: str, status: CallStatus = CallStatus.PENDING) -> int:
        """Count calls for a receiver in the given status."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(func.count(Call.id)).where(
                    Call.receiver_id == receiver_id,
                    Call.status == CallStatus(status).value,
                )
            )
            return result.scalar() or 0
