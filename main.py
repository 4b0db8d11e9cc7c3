from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

import models  # noqa: F401  註冊所有資料表
from config import get_settings
from database import Base, engine
from api import ledgers, stakes, credits

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: 在應用啟動時建立資料庫表
    Base.metadata.create_all(bind=engine)
    yield
    # Shutdown: 如果需要清理資源可以加在這裡


app = FastAPI(
    title="Pooled Betting Ledger API",
    description="Timed betting rounds with a pooled prize, an operator fee pool and per-winner payouts",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure this properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(ledgers.router)
app.include_router(stakes.router)
app.include_router(credits.router)


@app.get("/")
def root():
    return {"message": "Pooled Betting Ledger API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
