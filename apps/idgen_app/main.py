"""
ID Generation App

Features:
- k-ordered 63-bit IDs from a round-robin pool of Redis counter nodes
- Batch generation from a single atomic allocation
- Per-backend health checks
- Prometheus metrics at /metrics
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException
from prometheus_fastapi_instrumentator import Instrumentator

from apps.idgen_app.dependencies import get_id_generator, get_service_manager
from apps.idgen_app.schemas import BackendHealth, GenerateRequest, HealthResponse, IdBatchResponse, IdResponse
from common.enums import HealthStatus
from services.config.config_service import get_config_service
from services.id_generator.exceptions import InvalidBatchSizeError, InvalidLogicalShardIdError
from services.id_generator.generator import IdGenerator
from services.id_generator.models import Id

settings = get_config_service().get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    # Startup
    manager = get_service_manager()
    manager.initialize()

    yield

    # Shutdown
    manager.cleanup()
    manager.logger.info("ID generation service stopped")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="k-ordered unique ID generation backed by Redis",
    version="1.0.0",
    lifespan=lifespan,
)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)


@app.get("/health", response_model=HealthResponse)
def health_check(generator: IdGenerator = Depends(get_id_generator)):
    """Ping every backend. Healthy while at least one backend answers."""
    backends = [
        BackendHealth(
            backend=repr(backend),
            status=HealthStatus.HEALTHY if backend.ping() else HealthStatus.UNHEALTHY,
        )
        for backend in generator.pool.backends
    ]
    any_healthy = any(backend.status == HealthStatus.HEALTHY for backend in backends)

    return HealthResponse(
        status=HealthStatus.HEALTHY if any_healthy else HealthStatus.UNHEALTHY,
        backends=backends,
        script_sha=generator.script_sha,
    )


@app.get("/ids/one", response_model=IdResponse)
def generate_one(generator: IdGenerator = Depends(get_id_generator)):
    """Generate a single ID."""
    generated = _run(generator.generate_one)
    return IdResponse(id=generated.value, timestamp_millis=generated.timestamp_millis)


@app.post("/ids", response_model=IdBatchResponse)
def generate_batch(request: GenerateRequest, generator: IdGenerator = Depends(get_id_generator)):
    """
    Generate a batch of IDs from one allocation.

    The backend may grant fewer IDs than requested when its sequence wraps,
    so callers must read ``count`` rather than assume the size asked for.
    """
    ids: list[Id] = _run(lambda: generator.generate_batch(request.count))
    return IdBatchResponse(
        ids=[generated.value for generated in ids],
        timestamp_millis=ids[0].timestamp_millis,
        count=len(ids),
    )


def _run(generate):
    try:
        result = generate()
    except InvalidBatchSizeError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
    except InvalidLogicalShardIdError as e:
        raise HTTPException(status_code=500, detail=f"Backend misconfigured: {e}") from None

    if not result:
        raise HTTPException(status_code=503, detail="No ID available now, try again later")
    return result


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
