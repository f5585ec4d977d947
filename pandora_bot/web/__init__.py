"""Browser view for listing and editing stored factoids."""
from __future__ import annotations

import argparse
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import BaseModel, Field
import uvicorn

from ..client import DataClient
from ..config import SettingsLoader
from ..errors import ConflictError, PandoraError, ValidationError
from ..factoids import MAX_FACTOID_FETCH, FactoidStore
from ..models import Factoid

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

jinja_env = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(["html", "xml"]),
)


class ResponseSummary(BaseModel):
    key: int
    response: str
    date_created: Optional[datetime] = None
    date_edited: Optional[datetime] = None


class FactoidSummary(BaseModel):
    id: int
    trigger: str
    protected: bool = False
    date_created: Optional[datetime] = None
    date_edited: Optional[datetime] = None
    responses: List[ResponseSummary] = Field(default_factory=list)

    @classmethod
    def from_factoid(cls, factoid: Factoid) -> "FactoidSummary":
        return cls(
            id=factoid.id,
            trigger=factoid.trigger,
            protected=factoid.protected,
            date_created=factoid.date_created,
            date_edited=factoid.date_edited,
            responses=[
                ResponseSummary(
                    key=key,
                    response=item.response,
                    date_created=item.date_created,
                    date_edited=item.date_edited,
                )
                for key, item in sorted(factoid.responses.items())
            ],
        )


def _render(name: str, status_code: int = 200, **context: Any) -> HTMLResponse:
    template = jinja_env.get_template(name)
    return HTMLResponse(template.render(**context), status_code=status_code)


def _not_found() -> HTMLResponse:
    return _render("notfound.html", status_code=404, active_page="")


def apply_edit_form(factoid: Factoid, form: Dict[str, str], now: datetime) -> Factoid:
    """Copy non-empty ``trigger`` and ``res_<key>_response`` fields onto ``factoid``.

    Blank fields leave the stored value alone.
    """

    trigger = (form.get("trigger") or "").strip()
    if trigger and trigger != factoid.trigger:
        factoid.trigger = trigger
    for key, item in factoid.responses.items():
        value = (form.get(f"res_{key}_response") or "").strip()
        if value and value != item.response:
            item.response = value
            item.date_edited = now
    return factoid


def create_app(store: FactoidStore, page_size: int = 50) -> FastAPI:
    app = FastAPI(title="Pandora factoids")
    page_size = max(1, min(page_size, MAX_FACTOID_FETCH))

    @app.get("/", response_class=HTMLResponse)
    async def home() -> HTMLResponse:
        return _render("home.html", active_page="home", total=store.count())

    @app.get("/health", response_class=HTMLResponse)
    async def healthcheck() -> HTMLResponse:
        status = "closed" if store.engine.closed else "ok"
        return HTMLResponse(f"pandora-web: {status}")

    @app.get("/factoids", response_class=HTMLResponse)
    async def factoids(from_id: int = Query(0, ge=0)) -> HTMLResponse:
        page = store.range(from_id, page_size)
        next_id = page[-1].id + 1 if len(page) >= page_size else None
        return _render(
            "factoids.html",
            active_page="factoids",
            factoids=page,
            from_id=from_id,
            next_id=next_id,
        )

    @app.get("/api/factoids", response_model=List[FactoidSummary])
    async def api_factoids(
        from_id: int = Query(0, ge=0),
        count: int = Query(page_size, ge=1, le=MAX_FACTOID_FETCH),
    ) -> List[FactoidSummary]:
        return [FactoidSummary.from_factoid(item) for item in store.range(from_id, count)]

    @app.get("/api/factoids/{factoid_id}", response_model=FactoidSummary)
    async def api_factoid(factoid_id: int) -> FactoidSummary:
        factoid = store.get_by_id(factoid_id) if factoid_id >= 0 else None
        if factoid is None:
            raise HTTPException(status_code=404, detail="factoid not found")
        return FactoidSummary.from_factoid(factoid)

    @app.get("/factoids/{factoid_id}/edit", response_class=HTMLResponse)
    async def edit_factoid(factoid_id: int) -> HTMLResponse:
        factoid = store.get_by_id(factoid_id) if factoid_id >= 0 else None
        if factoid is None:
            return _not_found()
        return _render("factoid_edit.html", active_page="factoids", factoid=factoid, error=None)

    @app.post("/factoids/{factoid_id}/edit")
    async def edit_factoid_post(factoid_id: int, request: Request):
        factoid = store.get_by_id(factoid_id) if factoid_id >= 0 else None
        if factoid is None:
            return _not_found()
        form = await request.form()
        fields = {key: str(value) for key, value in form.items()}
        apply_edit_form(factoid, fields, store.now())
        try:
            store.put(factoid_id, factoid)
        except (ConflictError, ValidationError) as exc:
            logger.info("Rejected edit of factoid %d: %s", factoid_id, exc)
            return _render(
                "factoid_edit.html",
                status_code=400,
                active_page="factoids",
                factoid=factoid,
                error=str(exc),
            )
        except PandoraError:
            logger.exception("Failed to save factoid %d", factoid_id)
            raise HTTPException(status_code=503, detail="storage unavailable")
        return RedirectResponse("/factoids", status_code=303)

    return app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Serve the factoid edit view.")
    parser.add_argument("--config", type=Path, help="Path to a settings YAML file.")
    parser.add_argument("--db", type=Path, help="Override the factoid database path.")
    parser.add_argument("--host", type=str, help="Interface to bind (default from settings).")
    parser.add_argument("--port", type=int, help="Port to bind (default from settings).")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")
    return parser


def main() -> None:
    args = build_parser().parse_args()
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.INFO))
    settings = SettingsLoader(args.config).load()
    client = DataClient.from_settings(settings)
    if args.db is not None:
        client.path = args.db
    with client:
        app = create_app(client.factoids, page_size=settings.web_page_size)
        uvicorn.run(app, host=args.host or settings.web_host, port=args.port or settings.web_port)


__all__ = ["FactoidSummary", "apply_edit_form", "create_app", "main"]
