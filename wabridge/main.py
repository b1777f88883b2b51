from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from wabridge.api.routes import router
from wabridge.core.bridge import build_bridge
from wabridge.observability.logging import log
from wabridge.settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ConfigError propagates: a half-configured bridge must not come up
    bridge = build_bridge(settings)
    app.state.bridge = bridge
    await bridge.start()
    log("server_started", port=settings.PORT, publicBaseUrl=settings.public_base_url())
    try:
        yield
    finally:
        await bridge.stop()
        app.state.bridge = None
        log("server_stopped")


app = FastAPI(title="WhatsApp Bridge", lifespan=lifespan)

origins = [x.strip() for x in settings.CORS_ORIGINS.split(",") if x.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.get("/health")
def health():
    return {"status": "ok"}


def run():
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)


if __name__ == "__main__":
    run()
