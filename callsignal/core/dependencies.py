"""FastAPI dependencies."""
from fastapi import HTTPException, Request

from callsignal.services.call_session.manager import SessionRegistry
from callsignal.services.call_session.session import CallSession
from callsignal.services.store.calls import CallRecordStore
from callsignal.services.store.messages import MessageStore
from callsignal.services.store.profiles import ProfileRepository


def get_registry(request: Request) -> SessionRegistry:
    """Get the session registry owned by the running app."""
    return request.app.state.registry


def get_call_store(request: Request) -> CallRecordStore:
    """Get the call record store owned by the running app."""
    return request.app.state.registry.store


def get_session(party_id: str, request: Request) -> CallSession:
    """Get an open session, or 404."""
    session = get_registry(request).get(party_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"No open session for party {party_id}")
    return session


def get_profiles(request: Request) -> ProfileRepository:
    return request.app.state.registry.profiles


def get_messages(request: Request) -> MessageStore:
    return request.app.state.registry.messages
