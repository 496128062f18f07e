from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from app.routers import sync
from app.core.config import settings
from app.core.errors import ApiError, OfflineDataUnavailableError, StoreNotReadyError

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application...")

    # Initialize the local store
    from app.database.store import LocalStore
    import app.database.store as store_module
    store_module.local_store = LocalStore()
    await store_module.local_store.initialize()
    logger.info("✓ Local store initialized")

    # Initialize EventBus
    from app.services.event_bus import EventBus, EventType
    import app.services.event_bus as event_bus_module
    event_bus_module.event_bus = EventBus()
    event_bus = event_bus_module.event_bus
    logger.info("✓ EventBus initialized")

    # Session and remote API client
    from app.core.session import InMemorySession
    from app.core.api_client import ApiClient
    session = InMemorySession()
    api_client = ApiClient(session)

    async def publish_session_expired():
        await event_bus.publish(EventType.SESSION_EXPIRED, {})

    session.on_expired(publish_session_expired)

    # Connectivity monitoring
    from app.core.connectivity import ConnectivityMonitor
    import app.core.connectivity as connectivity_module
    connectivity_module.connectivity_monitor = ConnectivityMonitor()
    monitor = connectivity_module.connectivity_monitor

    async def publish_connectivity_change(online: bool):
        await event_bus.publish(EventType.CONNECTIVITY_CHANGED, {"online": online})

    monitor.on_change(publish_connectivity_change)

    # Entity services and the sync coordinator
    from app.services.sync_service import SyncService, build_services
    import app.services.sync_service as sync_service_module
    services = build_services(api_client, store_module.local_store, session, monitor, event_bus)
    sync_service_module.sync_service = SyncService(
        store_module.local_store,
        [services[name] for name in ("task_hazard", "risk_assessment", "approval", "asset")],
        monitor,
    )
    app.state.session = session
    app.state.services = services
    logger.info("✓ Sync services initialized")

    if settings.AUTO_SYNC_ENABLED:
        await monitor.start_monitoring()
        sync_service_module.sync_service.start_auto_sync()
        logger.info("✓ Auto-sync started")

    logger.info("Application startup complete")

    yield

    # Cleanup on shutdown
    logger.info("Application shutdown initiated...")

    sync_service_module.sync_service.stop_auto_sync()
    await monitor.stop_monitoring()
    logger.info("✓ Auto-sync stopped")

    await api_client.close()
    await store_module.local_store.close()
    logger.info("✓ Local store closed")

    logger.info("Application shutdown complete")


app = FastAPI(
    title="Field Safety Sync",
    description="Offline cache and sync control API for the field-safety client",
    version="1.0.0",
    lifespan=lifespan
)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status or 503, content=exc.to_dict())


@app.exception_handler(OfflineDataUnavailableError)
@app.exception_handler(StoreNotReadyError)
async def unavailable_handler(request: Request, exc):
    return JSONResponse(status_code=503, content={"message": exc.message, "kind": exc.kind.value})


app.include_router(sync.router)           # Sync: /sync/* (status and manual triggers)


@app.get("/")
def read_root():
    return {
        "message": "Field Safety Sync API",
        "version": "1.0.0",
        "modules": {
            "sync": "/sync/* (offline queue status and manual sync)"
        },
        "docs": "/docs",
        "redoc": "/redoc"
    }


@app.get("/health")
def health_check():
    return {"status": "healthy"}
