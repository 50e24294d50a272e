from __future__ import annotations

import logging

import click
from flask import Flask
from werkzeug.exceptions import HTTPException

from panchayat.core.auth import auth_bp
from panchayat.core.config import Config
from panchayat.core.extensions import db, login_manager, migrate
from panchayat.core.models import StaffUser, seed_demo_data
from panchayat.core.utils import http_error, json_error
from panchayat.warish import warish_bp
from panchayat.warish.collaborators import init_warish


def create_app(config_object: type[Config] | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)
    if not app.debug and not app.testing:
        logging.basicConfig(
            level=app.config.get("LOG_LEVEL", "INFO"),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    init_warish(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(warish_bp)

    register_cli(app)
    register_error_handlers(app)
    return app


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def http_exception(error: HTTPException):
        return http_error(error)

    @login_manager.unauthorized_handler
    def unauthorized():
        return json_error("Unauthorized", "Login required", 401)


def register_cli(app: Flask) -> None:
    @app.cli.command("seed-demo")
    @click.option("--reset", is_flag=True, help="Delete existing data before seed.")
    def seed_demo(reset: bool) -> None:
        """Seed demo staff accounts and one submitted application."""
        if reset:
            db.drop_all()
            db.create_all()
        if not StaffUser.query.first():
            seed_demo_data(db.session)
            click.echo("Demo data seeded.")
        else:
            click.echo("Seed skipped: existing staff accounts found.")

    @app.cli.command("warish-latest-memo")
    @click.option("--year", type=int, required=True, help="Year whose memo numbers are inspected.")
    def warish_latest_memo(year: int) -> None:
        """Print the highest memo sequence used in a year."""
        from panchayat.warish.errors import WarishError
        from panchayat.warish.services import latest_memo_sequence

        try:
            sequence = latest_memo_sequence(year)
        except WarishError as exc:
            raise click.BadParameter(exc.message, param_hint="--year") from exc
        click.echo(f"year={year} latest_memo_sequence={sequence} next={sequence + 1}")


@login_manager.user_loader
def load_user(user_id: str) -> StaffUser | None:
    return db.session.get(StaffUser, int(user_id))
