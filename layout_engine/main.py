from fastapi import FastAPI
import logging
from fastapi.middleware.cors import CORSMiddleware

from layout_engine import __version__
from layout_engine.solvers.registry import available_strategies

app = FastAPI(title="Spacegraph Layout API",
              description="Batch layout, strategy selection and connection routing for 3D node graphs",
              version=__version__)

# Configure logging to show info-level logs from routers and solvers
logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/")
async def root():
    return {"message": "Welcome to the Spacegraph Layout API"}


@app.get("/health")
async def health():
    """Service status, available strategies and routes."""
    return {
        "status": "ok",
        "service": "spacegraph-layout",
        "version": __version__,
        "strategies": available_strategies(),
        "routes": [
            "/api/layouts/compute",
            "/api/layouts/select",
            "/api/layouts/route"
        ]
    }

# Import routers
from .routers import layouts
app.include_router(layouts.router, prefix="/api/layouts", tags=["layouts"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("layout_engine.main:app", host="0.0.0.0", port=8000, reload=True)
