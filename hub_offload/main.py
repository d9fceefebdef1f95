from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from hub_offload.core.config import settings
from hub_offload.core.logging_config import configure_logging
from hub_offload.api import cron

configure_logging()


class ProxyHeadersMiddleware(BaseHTTPMiddleware):
    """Force HTTPS scheme from proxy headers"""
    async def dispatch(self, request: Request, call_next):
        # Trust X-Forwarded-Proto from the hosting proxy
        if request.headers.get("x-forwarded-proto", "") == "https":
            request.scope["scheme"] = "https"
        return await call_next(request)


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc"
)

# Add proxy headers middleware FIRST (before CORS)
app.add_middleware(ProxyHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(cron.router, prefix="/api", tags=["cron"])


@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.VERSION,
        "status": "operational"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
