import os

from flask import Flask
from supabase import create_client

from .main.routes import main_bp
from .realtime import ChangeFeed, get_change_feed


def create_app():
    app = Flask(
        __name__,
        template_folder="../templates",
    )
    app.secret_key = os.environ["SECRET_KEY"]

    supabase = create_client(
        os.environ["SUPABASE_URL"],
        os.environ["SUPABASE_SERVICE_KEY"],
    )
    app.config["SUPABASE"] = supabase
    app.config["SUPABASE_URL"] = os.environ["SUPABASE_URL"]

    app.config["REPORT_TIMEZONE"] = os.environ.get("REPORT_TIMEZONE", "UTC")
    app.config["OPENAI_API_KEY"] = os.environ.get("OPENAI_API_KEY")
    app.config["OPENAI_VISION_MODEL"] = os.environ.get("OPENAI_VISION_MODEL")
    app.config["WKHTMLTOPDF_CMD"] = os.environ.get("WKHTMLTOPDF_CMD")
    app.config["CHANGES_WEBHOOK_SECRET"] = os.environ.get("CHANGES_WEBHOOK_SECRET")
    app.config["CHANGE_FEED"] = ChangeFeed()

    app.register_blueprint(main_bp)

    return app


__all__ = ["create_app", "get_change_feed"]
