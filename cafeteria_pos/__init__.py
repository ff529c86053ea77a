"""Flask application factory."""
from flask import Flask
from sqlalchemy.engine import make_url
from cafeteria_pos.database import init_db


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    # Initialize database
    db_session = init_db(app)

    # Load catalog, stock and recent sales
    from cafeteria_pos.services.pos_service import init_pos
    init_pos(app, db_session)

    # Register CLI commands
    from cafeteria_pos.cli_commands import init_cli_commands
    init_cli_commands(app)

    database_url = make_url(app.config['SQLALCHEMY_DATABASE_URI'])
    app.logger.info(f"DATABASE={database_url.render_as_string(hide_password=True)}")
    app.logger.info(f"TAX_RATE={app.config.get('TAX_RATE')}")

    return app
