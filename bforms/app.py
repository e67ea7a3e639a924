import os
from dotenv import load_dotenv

from flask import Flask
from flask_migrate import Migrate
from sqlalchemy.exc import OperationalError
from werkzeug.exceptions import HTTPException

from bforms.models import db
from bforms.errors import BFormsError
from bforms.utils import api_response

def _database_url():
    database_url = os.environ.get('DATABASE_URL')
    # Heroku-style URLs are not accepted by SQLAlchemy 1.4+
    if database_url and database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    return database_url or 'sqlite:///bforms.db'

def create_app(test_config=None):
    load_dotenv()

    app = Flask(__name__)

    # --- CONFIGURATION ---
    app.config.update(
        SECRET_KEY=os.environ.get('SECRET_KEY', 'bforms-dev-secret-key'),
        SQLALCHEMY_DATABASE_URI=_database_url(),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        JWT_EXPIRES_DAYS=int(os.environ.get('JWT_EXPIRES_DAYS', 7)),
        CLIENT_URL=os.environ.get('CLIENT_URL', 'http://localhost:3000'),
        LOG_LEVEL=os.environ.get('LOG_LEVEL', 'INFO'),

        # Issue tracker
        JIRA_DOMAIN=os.environ.get('JIRA_DOMAIN'),
        JIRA_EMAIL=os.environ.get('JIRA_EMAIL'),
        JIRA_API_TOKEN=os.environ.get('JIRA_API_TOKEN'),
        JIRA_PROJECT_KEY=os.environ.get('JIRA_PROJECT_KEY'),

        # CRM
        SF_LOGIN_URL=os.environ.get('SF_LOGIN_URL', 'https://login.salesforce.com'),
        SF_CLIENT_ID=os.environ.get('SF_CLIENT_ID'),
        SF_CLIENT_SECRET=os.environ.get('SF_CLIENT_SECRET'),
        SF_USERNAME=os.environ.get('SF_USERNAME'),
        SF_PASSWORD=os.environ.get('SF_PASSWORD'),
        SF_SECURITY_TOKEN=os.environ.get('SF_SECURITY_TOKEN'),
        SF_API_VERSION=os.environ.get('SF_API_VERSION', '59.0'),
    )
    if test_config:
        app.config.update(test_config)

    app.logger.setLevel(app.config['LOG_LEVEL'])

    if app.config['SECRET_KEY'] == 'bforms-dev-secret-key' and not app.testing:
        app.logger.warning("SECRET_KEY not set, using the development key")

    # --- INITIALIZE EXTENSIONS ---
    db.init_app(app)
    Migrate(app, db)

    from bforms.auth import login_manager
    login_manager.init_app(app)

    # --- ERROR HANDLERS ---
    @app.errorhandler(BFormsError)
    def handle_bforms_error(error):
        return api_response(success=False, error=error.message, status=error.status_code)

    @app.errorhandler(OperationalError)
    def handle_database_down(error):
        app.logger.error(f"Database unavailable: {error}")
        db.session.rollback()
        return api_response(success=False, error='Database unavailable', status=503)

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return api_response(success=False, error=error.description, status=error.code)

    @app.errorhandler(Exception)
    def handle_unexpected(error):
        app.logger.exception(f"Unhandled error: {error}")
        db.session.rollback()
        return api_response(success=False, error='Server error', status=500)

    # --- REGISTER BLUEPRINTS ---
    from bforms.auth import auth as auth_blueprint
    from bforms.routes.templates import templates_bp
    from bforms.routes.responses import responses_bp
    from bforms.routes.admin import admin_bp
    from bforms.routes.integrations import integrations_bp

    app.register_blueprint(auth_blueprint)
    app.register_blueprint(templates_bp)
    app.register_blueprint(responses_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(integrations_bp)

    @app.route('/ping')
    def ping():
        return api_response(data='pong')

    with app.app_context():
        try:
            db.create_all()
        except OperationalError as e:
            # Serve anyway; requests will report 503 until the database is back
            app.logger.error(f"Could not create tables: {e}")

    return app
