from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from coaching_engine.api.insights import router as insights_router
from coaching_engine.api.interactions import router as interactions_router
from coaching_engine.api.records import router as records_router
from coaching_engine.core.errors import MalformedInputError
from coaching_engine.db.session import create_tables

app = FastAPI(title="Coaching Insight Engine")


@app.on_event("startup")
def on_startup() -> None:
    create_tables()


@app.exception_handler(MalformedInputError)
def malformed_input_handler(_: Request, exc: MalformedInputError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc), "entity": exc.entity, "errors": exc.errors})


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(records_router)
app.include_router(insights_router)
app.include_router(interactions_router)
