import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .backend_client import create_backend_client
from .categories import probe_descendant_resolver
from .core.config import get_settings
from .core.db import create_engine_from_settings, create_session_factory, create_tables
from .routes_admin import router as admin_router
from .routes_storefront import router as storefront_router

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    backend = create_backend_client(settings)
    engine = create_engine_from_settings(settings)
    await create_tables(engine)

    app.state.backend = backend
    app.state.session_factory = create_session_factory(engine)
    app.state.resolver = await probe_descendant_resolver(backend, settings.subcategory_rpc_name)
    logger.info(f"Storefront backend ready (backend={settings.rest_url})")

    try:
        yield
    finally:
        await backend.aclose()
        await engine.dispose()
        logger.info("Storefront backend stopped")


app = FastAPI(title="Storefront Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(storefront_router)
app.include_router(admin_router)


@app.get("/health")
async def healthcheck():
    return {"ok": True}
