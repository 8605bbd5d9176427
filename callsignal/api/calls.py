"""Caller-side call record endpoints."""
import logging
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from callsignal.core.dependencies import get_call_store
from callsignal.core.errors import WriteConflictError, WriteFailureError
from callsignal.services.calls.models import CallRecord, CallType
from callsignal.services.store.calls import CallRecordStore

router = APIRouter()
logger = logging.getLogger(__name__)


class CreateCallRequest(BaseModel):
    """Request body for placing a call."""
    caller_id: str
    receiver_id: str
    call_type: CallType = CallType.VOICE


@router.post("/api/calls", response_model=CallRecord)
async def create_call(
    body: CreateCallRequest,
    store: CallRecordStore = Depends(get_call_store),
):
    """Place a call: inserts a pending record the receiver is notified of."""
    logger.info(f"[CALLS API] Create call {body.caller_id} -> {body.receiver_id}")
    try:
        return await store.create_call(body.caller_id, body.receiver_id, body.call_type)
    except WriteFailureError as e:
        raise HTTPException(status_code=503, detail=str(e))


async def _transition(call_id: str, action, verb: str) -> CallRecord:
    try:
        return await action(call_id)
    except WriteConflictError as e:
        logger.info(f"[CALLS API] Cannot {verb} call {call_id}: {e}")
        status_code = 404 if e.actual_status is None else 409
        raise HTTPException(status_code=status_code, detail=str(e))
    except WriteFailureError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/api/calls/{call_id}/end", response_model=CallRecord)
async def end_call(call_id: str, store: CallRecordStore = Depends(get_call_store)):
    """Hang up an accepted call."""
    return await _transition(call_id, store.end_call, "end")


@router.post("/api/calls/{call_id}/miss", response_model=CallRecord)
async def miss_call(call_id: str, store: CallRecordStore = Depends(get_call_store)):
    """Mark an unanswered call as missed (driven by an external ring timer)."""
    return await _transition(call_id, store.mark_missed, "miss")
