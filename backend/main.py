from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from database import SessionLocal, engine, Base
from llm_service import llm_service
from poet_engine import PoetEngine
from routes import poet_router
from stores import CycleStore, PoetStateStore


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Cycle history and poet state live in the database, so a restart only
    # needs the tables and a poet-state row to exist.
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        PoetEngine(CycleStore(db), PoetStateStore(db), llm_service.ask).ensure_state()
    finally:
        db.close()
    yield


app = FastAPI(
    title="Evolving Poet API",
    description="Self-continuing poem generation cycles",
    version="1.0.0",
    lifespan=lifespan,
)


# CORS settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:8000",
        "http://127.0.0.1:8000",
        "null",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(poet_router)


@app.middleware("http")
async def utf8_charset_middleware(request: Request, call_next):
    response = await call_next(request)
    ct = response.headers.get("content-type", "")
    if "application/json" in ct and "charset" not in ct:
        response.headers["content-type"] = ct + "; charset=utf-8"
    return response


@app.get("/")
async def root():
    return {
        "message": "Evolving Poet API",
        "version": "1.0.0",
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
