import logging

from flask import Flask

from app.api import api_bp
from app.config import Config
from app.extensions import db, migrate
from app.jobs.scheduler import start_scheduler
from app.library import library_bp
from app.services.enhancement_jobs import fail_orphaned_jobs
from app.services.library import initialize_library


def create_app(config_object=Config):
    app = Flask(__name__, template_folder="../templates")
    app.config.from_object(config_object)
    app.logger.setLevel(
        getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    )

    db.init_app(app)
    migrate.init_app(app, db)

    app.register_blueprint(api_bp)
    app.register_blueprint(library_bp)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        seeded = initialize_library()
        db.session.commit()
        print(
            "Initialized Markshelf database"
            + (" with default bookmarks." if seeded else ".")
        )

    with app.app_context():
        db.create_all()
        if fail_orphaned_jobs():
            app.logger.warning("marked interrupted enhancement jobs as failed")
        if app.config.get("SEED_DEFAULTS", True):
            initialize_library()
        db.session.commit()

    start_scheduler(app)
    return app
