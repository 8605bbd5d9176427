"""Receiver-side session endpoints: incoming call, quality and counters."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Response

from callsignal.core.dependencies import get_registry, get_session
from callsignal.core.errors import NoActiveCallError, WriteFailureError
from callsignal.services.call_session.manager import SessionRegistry
from callsignal.services.call_session.session import CallSession
from callsignal.services.calls.models import CallRecord, IncomingCall
from callsignal.services.notifications.counts import NotificationCounts
from callsignal.services.quality.models import QualitySnapshot

router = APIRouter(prefix="/api/sessions")
logger = logging.getLogger(__name__)


@router.post("/{party_id}", status_code=201)
async def open_session(party_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Open (or reuse) the session for a party."""
    session = await registry.open(party_id)
    return {"party_id": session.party_id, "open": True}


@router.delete("/{party_id}", status_code=204)
async def close_session(party_id: str, registry: SessionRegistry = Depends(get_registry)):
    """Close a party's session, cancelling its timers."""
    if not registry.close(party_id):
        raise HTTPException(status_code=404, detail=f"No open session for party {party_id}")
    return Response(status_code=204)


@router.get("/{party_id}/incoming-call", response_model=Optional[IncomingCall])
async def get_incoming_call(session: CallSession = Depends(get_session)):
    """The call currently ringing for this party, or null."""
    await session.settle()
    return session.controller.current_incoming_call


async def _settle_call(session: CallSession, action, verb: str) -> dict:
    await session.settle()
    try:
        record: Optional[CallRecord] = await action()
    except NoActiveCallError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except WriteFailureError as e:
        logger.error(f"[SESSIONS API] {verb} failed for party {session.party_id}: {e}")
        raise HTTPException(status_code=503, detail=f"Failed to {verb} call, please retry")
    return {"handled_elsewhere": record is None, "call": record}


@router.post("/{party_id}/incoming-call/accept")
async def accept_call(session: CallSession = Depends(get_session)):
    """Accept the ringing call."""
    return await _settle_call(session, session.accept, "accept")


@router.post("/{party_id}/incoming-call/reject")
async def reject_call(session: CallSession = Depends(get_session)):
    """Reject the ringing call."""
    return await _settle_call(session, session.reject, "reject")


@router.post("/{party_id}/incoming-call/clear", status_code=204)
async def clear_call(session: CallSession = Depends(get_session)):
    """Dismiss the ringing call locally without writing anything."""
    session.clear()
    return Response(status_code=204)


@router.get("/{party_id}/quality", response_model=QualitySnapshot)
async def get_quality(session: CallSession = Depends(get_session)):
    """Latest connection quality snapshot."""
    return session.quality.snapshot


@router.get("/{party_id}/notification-counts", response_model=NotificationCounts)
async def get_notification_counts(session: CallSession = Depends(get_session)):
    """Unread messages and pending calls for this party."""
    await session.settle()
    return session.counts.counts
