# server.py
from typing import Optional

from fastapi import FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from companion import config
from companion.backend import Backend
from companion.exceptions import (
    ProcessingFailed,
    ProjectNotFound,
    StoreUnavailable,
    UpdateNotFound,
)
from companion.models import ProjectCreationInput, ProjectMetaPatch

logger = config.logger

app = FastAPI(title="Project Companion")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS or ["*"],  # empty = allow all
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_backend: Optional[Backend] = None


def get_backend() -> Backend:
    global _backend
    if _backend is None:
        _backend = Backend()
    return _backend


def set_backend(backend: Optional[Backend]) -> None:
    global _backend
    _backend = backend


class RequestBody(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UpdateIn(RequestBody):
    text: str = Field(min_length=1)


class CommentIn(RequestBody):
    text: str = Field(min_length=1)
    author: str = "You"


class TagsIn(RequestBody):
    update_text: str = Field(min_length=1)


# -----------------------
# Error mapping
# -----------------------

@app.exception_handler(ProjectNotFound)
@app.exception_handler(UpdateNotFound)
async def _not_found(_request: Request, exc: Exception):
    return JSONResponse(status_code=404, content={"message": str(exc)})


@app.exception_handler(StoreUnavailable)
async def _store_unavailable(_request: Request, exc: StoreUnavailable):
    logger.error(f"Store unavailable: {exc}")
    return JSONResponse(status_code=503, content={"message": "Database connection failed"})


@app.exception_handler(ProcessingFailed)
async def _processing_failed(_request: Request, exc: ProcessingFailed):
    return JSONResponse(status_code=502, content={"message": f"AI processing failed: {exc}"})


@app.exception_handler(ValueError)
async def _bad_request(_request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"message": str(exc)})


# -----------------------
# Routes
# -----------------------

@app.get("/api/health")
def health():
    try:
        return get_backend().handle_health()
    except StoreUnavailable:
        return JSONResponse(status_code=503, content={"status": "error", "message": "Database connection failed"})


@app.get("/api/projects")
def list_projects():
    return get_backend().handle_list_projects()


@app.post("/api/projects", status_code=201)
def create_project(body: ProjectCreationInput):
    return get_backend().handle_create_project(body)


@app.get("/api/projects/{project_id}")
def get_project(project_id: str):
    return get_backend().handle_get_project(project_id)


@app.patch("/api/projects/{project_id}")
def update_project(project_id: str, body: ProjectMetaPatch):
    return get_backend().handle_update_project(project_id, body)


@app.delete("/api/projects/{project_id}", status_code=204)
def delete_project(project_id: str):
    get_backend().handle_delete_project(project_id)
    return Response(status_code=204)


@app.post("/api/projects/{project_id}/updates", status_code=201)
def submit_update(project_id: str, body: UpdateIn):
    return get_backend().handle_submit_update(project_id, body.text)


@app.delete("/api/projects/{project_id}/updates/{update_id}", status_code=204)
def delete_update(project_id: str, update_id: str):
    get_backend().handle_delete_update(project_id, update_id)
    return Response(status_code=204)


@app.post("/api/projects/{project_id}/updates/{update_id}/comments", status_code=201)
def add_comment(project_id: str, update_id: str, body: CommentIn):
    return get_backend().handle_add_comment(project_id, update_id, body.author, body.text)


@app.get("/api/projects/{project_id}/overview")
def project_overview(project_id: str):
    return get_backend().handle_overview(project_id)


@app.get("/api/projects/{project_id}/tasks")
def project_tasks(project_id: str, status: str = Query(default="all", alias="filter"), q: str = ""):
    return get_backend().handle_tasks(project_id, status, q)


@app.get("/api/projects/{project_id}/timeline")
def project_timeline(project_id: str, q: str = "", tags: list[str] = Query(default=[])):
    return get_backend().handle_timeline(project_id, q, tags)


@app.get("/api/momentum")
def momentum():
    return get_backend().handle_momentum()


@app.post("/api/projects/{project_id}/brief")
def project_brief(project_id: str):
    return get_backend().handle_project_brief(project_id)


@app.post("/api/portfolio/brief")
def portfolio_brief():
    return get_backend().handle_portfolio_brief()


@app.post("/api/projects/{project_id}/next-actions/enrich")
def enrich_next_actions(project_id: str):
    return get_backend().handle_enrich_next_actions(project_id)


@app.post("/api/ai/generate-tags")
def generate_tags(body: TagsIn):
    return get_backend().handle_generate_tags(body.update_text)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.SERVER_HOST, port=config.SERVER_PORT)
