from __future__ import annotations

import errno
import logging
import math
import os
import socket
from typing import Optional

import numpy as np
import pandas as pd
from fastapi import FastAPI, Query
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse

from api.schemas import ErrorResponse, PublishedDefaultsResponse, QuarterDataResponse
from core.data import DATA_DIR, DEFAULT_EXCEL_PATH, DOCS_DIR, PROJECT_DIR, STATIC_DATA_PATH, load_quarter_data, load_static_dataset
from core.preferences import load_published_defaults


app = FastAPI(title="Quarter Chart API", version="0.1.0")
logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = int(os.environ.get("PORT", "5179"))
PORT_TRIES = 25
ALLOWED_ORIGINS = [
    o.strip()
    for o in os.environ.get("QUARTER_CHART_ORIGINS", "http://localhost:8501,http://127.0.0.1:8501").split(",")
    if o.strip()
]
NO_STORE = {"cache-control": "no-store"}

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)


def _json(data: object, status_code: int = 200) -> JSONResponse:
    """Return JSON with safe encoding for pandas/numpy objects."""

    def _safe_float(value: object) -> float | None:
        try:
            out = float(value)  # type: ignore[arg-type]
        except Exception:
            return None
        if math.isnan(out) or math.isinf(out):
            return None
        return out

    return JSONResponse(
        status_code=status_code,
        headers=NO_STORE,
        content=jsonable_encoder(
            data,
            custom_encoder={
                type(pd.NA): lambda _: None,
                np.integer: int,
                float: _safe_float,
                np.floating: _safe_float,
                np.bool_: bool,
                np.ndarray: lambda arr: arr.tolist(),
            },
        ),
    )


def _error(message: str, status_code: int = 500) -> JSONResponse:
    return _json(ErrorResponse(error=message).model_dump(), status_code=status_code)


def _not_built_html() -> str:
    return f"""<!doctype html>
<html>
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>Quarter Chart (not built)</title>
    <style>body{{font-family:system-ui,Segoe UI,Roboto,Arial,sans-serif;margin:24px;}}</style>
  </head>
  <body>
    <h1>UI not built</h1>
    <p>Run <code>quarter-chart-pages</code> in <code>{PROJECT_DIR}</code>, then reload this page.</p>
  </body>
</html>"""


@app.get("/", response_class=HTMLResponse)
@app.get("/index.html", response_class=HTMLResponse)
def index():
    # Re-read on every request so a rebuilt page shows up without a restart.
    path = DOCS_DIR / "index.html"
    try:
        return HTMLResponse(path.read_text(encoding="utf-8"), headers=NO_STORE)
    except FileNotFoundError:
        return HTMLResponse(_not_built_html(), headers=NO_STORE)


@app.get("/api/quarter_data", responses={500: {"model": ErrorResponse}})
def quarter_data(excelPath: Optional[str] = Query(default=None)):
    try:
        excel_path = (excelPath or "").strip() or DEFAULT_EXCEL_PATH
        dataset = load_quarter_data(excel_path)
        return _json(QuarterDataResponse(**dataset.to_dict()).model_dump())
    except Exception as exc:
        logger.exception("quarter_data failed")
        return _error(str(exc))


@app.get("/data.json", responses={404: {"model": ErrorResponse}})
def static_data():
    try:
        dataset = load_static_dataset(STATIC_DATA_PATH)
    except FileNotFoundError as exc:
        return _error(str(exc), status_code=404)
    except Exception as exc:
        logger.exception("static_data failed")
        return _error(str(exc))
    return _json(dataset.to_dict())


@app.get("/published-defaults.json", responses={404: {"model": ErrorResponse}})
def published_defaults():
    path = DATA_DIR / "published-defaults.json"
    if not path.is_file():
        return _error(f"no published defaults at {path}", status_code=404)
    defaults = load_published_defaults(path)
    return _json(PublishedDefaultsResponse(**defaults.to_dict()).model_dump())


def find_free_port(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, tries: int = PORT_TRIES) -> int:
    for candidate in range(port, port + tries + 1):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((host, candidate))
            except OSError as exc:
                if exc.errno == errno.EADDRINUSE:
                    continue
                raise
            return candidate
    raise OSError(errno.EADDRINUSE, f"no free port in {port}..{port + tries}")


def run() -> None:
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    port = find_free_port()
    logger.info("Web preview running: http://%s:%d/", DEFAULT_HOST, port)
    logger.info("API: http://%s:%d/api/quarter_data?excelPath=%s", DEFAULT_HOST, port, DEFAULT_EXCEL_PATH)
    logger.info("Tip: set PORT env var to force a port (e.g. PORT=5180).")
    uvicorn.run(app, host=DEFAULT_HOST, port=port)


if __name__ == "__main__":
    run()
