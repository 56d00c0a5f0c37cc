import logging

from fastapi import FastAPI

from services.memory_integration import MemoryIntegration
from services.memory_router import memory_router
from utils.config import Settings
from utils.logging_config import setup_logging

settings = Settings()
setup_logging(settings.LOG_LEVEL)

logger = logging.getLogger("uvicorn.error")
app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG)
app.include_router(memory_router)


@app.get("/health")
def health(): return {"ok": True}


@app.on_event("startup")
async def startup_event():
    """Build and connect the memory services"""
    memory = MemoryIntegration(settings)
    try:
        await memory.initialize()
    except Exception as e:
        logger.critical(f"Memory services are not available: {e}")
        raise
    app.state.memory = memory
    logger.info("Memory services ready")


@app.on_event("shutdown")
async def shutdown_event():
    memory = getattr(app.state, "memory", None)
    if memory is not None:
        await memory.close()
        logger.info("Memory services stopped")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app:app", host=settings.HOST, port=settings.PORT)
