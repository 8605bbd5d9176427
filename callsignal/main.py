"""Main FastAPI application."""
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI

from callsignal.core.logging import setup_logging
from callsignal.db.database import build_engine, build_session_factory, engine, init_db
from callsignal.api import calls, directory, health, sessions
from callsignal.services.call_session.manager import SessionRegistry
from callsignal.services.ringback.audio import AudioBackend, InMemoryAudioBackend
from callsignal.services.store.calls import CallRecordStore
from callsignal.services.store.feed import ChangeFeed
from callsignal.services.store.messages import MessageStore
from callsignal.services.store.profiles import ProfileRepository
from callsignal.services.cache import BoundedCache
from callsignal.core.config import settings


def create_app(
    database_url: Optional[str] = None,
    audio_backend: Optional[AudioBackend] = None,
) -> FastAPI:
    """Build the application; ``database_url`` overrides the configured database."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        # Startup
        setup_logging()
        app_engine = build_engine(database_url) if database_url else engine
        await init_db(app_engine)

        session_factory = build_session_factory(app_engine)
        feed = ChangeFeed()
        app.state.registry = SessionRegistry(
            store=CallRecordStore(session_factory, feed),
            profiles=ProfileRepository(
                session_factory,
                BoundedCache(max_size=settings.profile_cache_size, ttl=settings.profile_cache_ttl),
            ),
            messages=MessageStore(session_factory, feed),
            feed=feed,
            audio_backend=audio_backend or InMemoryAudioBackend(settings.ringback_sample_rate),
        )
        yield
        # Shutdown
        app.state.registry.close_all()
        if app_engine is not engine:
            await app_engine.dispose()

    app = FastAPI(
        title="Call Signal",
        description="Incoming call signaling, ringback and connection quality",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(health.router, tags=["health"])
    app.include_router(calls.router, tags=["calls"])
    app.include_router(sessions.router, tags=["sessions"])
    app.include_router(directory.router, tags=["directory"])
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "callsignal.main:app",
        host=settings.host,
        port=settings.port,
    )
