"""Run the Loomtrack API with werkzeug's threaded server."""

from __future__ import annotations

import logging
import os
from contextlib import suppress

from dotenv import load_dotenv
from werkzeug.serving import make_server

from app import create_app

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


def _server_address() -> tuple[str, int]:
    host = os.environ.get("LOOMTRACK_HOST") or DEFAULT_HOST
    raw_port = os.environ.get("LOOMTRACK_PORT") or str(DEFAULT_PORT)
    try:
        port = int(raw_port)
    except ValueError as exc:
        raise RuntimeError(f"LOOMTRACK_PORT must be an integer, got {raw_port!r}") from exc
    return host, port


def run_server() -> None:
    load_dotenv()
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = create_app()
    host, port = _server_address()
    server = make_server(host, port, app, threaded=True)
    app.logger.info("Serving Loomtrack on http://%s:%s", host, port)

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        app.logger.info("Shutting down")
    finally:
        with suppress(Exception):
            server.server_close()


if __name__ == "__main__":
    run_server()
