from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
import logging, uuid

from .config import settings
from .logging_conf import REQUEST_ID, configure_logging
from .storage import SESSIONS

configure_logging()
log = logging.getLogger(__name__)

app = FastAPI(title="RefractCalc Refraction Engine")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.allow_origin] if settings.allow_origin != "*" else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        token = REQUEST_ID.set(request_id)
        try:
            response = await call_next(request)
        finally:
            REQUEST_ID.reset(token)
        log.info(f"{request.method} {request.url.path} -> {response.status_code}",
                 extra={"request_id": request_id})
        response.headers["X-Request-ID"] = request_id
        return response

app.add_middleware(RequestIdMiddleware)

# Include routers
from .routes.sessions import router as sessions_router
from .routes.calculate import router as calculate_router
app.include_router(sessions_router, prefix="/sessions", tags=["sessions"])
app.include_router(calculate_router, prefix="/calculate", tags=["calculate"])

@app.get("/")
def root():
    return {"ok": True, "service": "refractcalc", "sessions": len(SESSIONS)}

@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "refractcalc", "version": "1.0.0"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("refractcalc.main:app", host="0.0.0.0", port=8000)
