"""
Development server: python -m api
Production deployments run create_app() under a WSGI server instead.
"""
import logging
import os

from . import create_app

app = create_app()

if __name__ == "__main__":
    port = int(os.getenv("PORT", os.getenv("FLASK_RUN_PORT", "8000")))
    host = os.getenv("FLASK_RUN_HOST", "127.0.0.1")
    logging.getLogger(__name__).info("Blog API listening on http://%s:%d (%s)",
                                     host, port, app.config["APP_ENV"])
    app.run(host=host, port=port, debug=app.config.get("DEBUG", False))
