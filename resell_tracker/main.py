from prometheus_fastapi_instrumentator import Instrumentator

from resell_tracker.core.config import settings
from resell_tracker.core.logging import configure_logging
from . import app as application

configure_logging(settings.LOG_LEVEL)
app = application
instrumentator = Instrumentator()
instrumentator.instrument(app).expose(app)


@app.get("/health")
async def health() -> dict[str, bool]:
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
