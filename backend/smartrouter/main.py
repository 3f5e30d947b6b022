from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from smartrouter.api.routes import router as api_router
from smartrouter.config import Settings
from smartrouter.core.service import SmartRouter
from smartrouter.database import create_engine_and_sessions, init_db
from smartrouter.observability.logger import get_logger, setup_logging
from smartrouter.tools.registry import ToolRegistry

settings = Settings()
setup_logging(settings.debug)
log = get_logger("main")

# Shared application state, read by the API routes
app_state = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("smartrouter_starting", mode=settings.mode)

    # 1. Database
    engine, session_factory = create_engine_and_sessions(settings.resolved_database_url)
    await init_db(engine)
    log.info("database_initialized")

    # 2. Router and tools
    router = SmartRouter(settings, session_factory)
    router.ctx.alert_listeners.append(
        lambda alert: log.warning("quota_alert", provider=alert.provider, level=alert.level, message=alert.message)
    )
    await router.start()
    tools = ToolRegistry(router)
    log.info("tools_available", tools=sorted(tools.get_tool_names()))

    app_state.update({
        "router": router,
        "tools": tools,
        "session_factory": session_factory,
    })
    log.info("smartrouter_ready", providers=[p.id for p in router.registry.all()])

    yield

    # Shutdown
    log.info("smartrouter_shutting_down")
    await router.stop()
    app_state.clear()
    await engine.dispose()


app = FastAPI(title="SmartRouter", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)
