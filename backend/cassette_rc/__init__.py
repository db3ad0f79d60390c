from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from typing import Optional, Dict, Any
import os

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret-change-me-before-deploying')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')
    app.config['PM_DEFAULT_INTERVAL_DAYS'] = int(os.getenv('PM_DEFAULT_INTERVAL_DAYS', '90'))
    app.config['PM_AUTOSCHEDULE_LOOKAHEAD_DAYS'] = int(os.getenv('PM_AUTOSCHEDULE_LOOKAHEAD_DAYS', '7'))
    app.config['MAX_CASSETTES_PER_ORDER'] = int(os.getenv('MAX_CASSETTES_PER_ORDER', '30'))

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    app.logger.setLevel(app.config['LOG_LEVEL'])

    # Database
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    @app.teardown_appcontext
    def remove_session(exc=None):
        # a fresh identity map per request; nothing read earlier is served again
        SessionLocal.remove()

    from .routes.tickets import so_bp  # service orders
    from .routes.repairs import rpr_bp  # repair center work
    from .routes.preventive_maintenance import pm_bp  # preventive maintenance
    from .routes.cassettes import cst_bp  # cassette lookups
    app.register_blueprint(so_bp, url_prefix='/tickets')
    app.register_blueprint(rpr_bp, url_prefix='/repairs')
    app.register_blueprint(pm_bp, url_prefix='/preventive-maintenance')
    app.register_blueprint(cst_bp, url_prefix='/cassettes')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    from .lifecycles import describe_lifecycles

    @app.route('/lifecycles')
    def lifecycles():
        return describe_lifecycles()

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        # nothing from a failed operation may leak into the next request
        SessionLocal().rollback()
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                    'type': e.__class__.__name__,
                }
            }
            return payload, e.code
        # Unhandled exception
        app.logger.exception('Unhandled exception')
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error',
                'type': 'InternalError',
            }
        }, 500

    return app


def get_db():
    return SessionLocal()
