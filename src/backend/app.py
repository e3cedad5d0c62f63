from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware

import config
import db
import tree

logger = logging.getLogger(__name__)

app = FastAPI(title="animal-tree-backend")

if config.get_server_config()["https_redirect"]:
    app.add_middleware(HTTPSRedirectMiddleware)


# =============================================================================
# Request/Response Models
# =============================================================================

class AnimalCreateRequest(BaseModel):
    parent: int = Field(description="ID of the existing parent animal")
    label: str = Field(default="", description="Label for the new animal")


class AnimalMoveRequest(BaseModel):
    # Client field name; holds the new parent's id.
    currentId: int = Field(description="ID of the new parent animal")


# =============================================================================
# Startup & errors
# =============================================================================

_root_id: Optional[int] = None


def _get_root_id() -> int:
    """Return the root id, looking it up once per process."""
    global _root_id
    if _root_id is None:
        root_id = db.get_root_id()
        if root_id is None:
            raise tree.TreeInvariantError("Tree has no root node.")
        _root_id = root_id
    return _root_id


@app.on_event("startup")
def bootstrap_tree() -> None:
    """Create the schema and root before the first request is served."""
    global _root_id
    db.ensure_schema()
    _root_id = db.bootstrap_root(config.get_tree_config()["root_label"])
    logger.info(f"Animal tree ready, root id {_root_id}")


@app.exception_handler(db.TreeError)
async def tree_error_handler(request: Request, exc: db.TreeError) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(status_code=400, content=exc.message)


# =============================================================================
# Core Endpoints
# =============================================================================

@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/tree")
def get_tree() -> list[dict[str, Any]]:
    """Get the full tree as a one-element list holding the rendered root."""
    root = tree.build_tree(db.fetch_closure())
    logger.debug(f"Materialized tree with {tree.count_nodes(root)} animals")
    return [tree.render_tree(root)]


@app.post("/api/tree")
def add_animal(payload: AnimalCreateRequest) -> Response:
    """Add an animal under an existing parent."""
    db.insert_animal(parent_id=payload.parent, label=payload.label)
    return Response(status_code=200)


@app.delete("/api/tree/{animal_id}")
def delete_animal(animal_id: int) -> Response:
    """Delete a leaf animal. The root and animals with children are rejected."""
    db.delete_animal(animal_id, root_id=_get_root_id())
    return Response(status_code=200)


@app.put("/api/tree/{animal_id}")
def move_animal(animal_id: int, payload: AnimalMoveRequest) -> Response:
    """Reparent an animal under ``currentId``."""
    db.reparent_animal(
        animal_id,
        payload.currentId,
        check_cycles=config.get_tree_config()["check_cycles"],
    )
    return Response(status_code=200)


def main() -> None:
    import uvicorn

    logging.basicConfig(
        level=config.get_log_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    server = config.get_server_config()
    uvicorn.run(
        app,
        host=server["host"],
        port=server["port"],
        ssl_certfile=server["ssl_certfile"],
        ssl_keyfile=server["ssl_keyfile"],
    )


if __name__ == "__main__":
    main()
