"""Session & Assessment Engine - Application Factory."""
import logging
import os
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_jwt_extended import JWTManager
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()
jwt = JWTManager()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["200 per day", "50 per hour"]
)

def create_app(config_name: str = None, notification_dispatcher=None,
               enrollment_directory=None, test_config: dict = None) -> Flask:
    """Application factory pattern.

    Collaborators (notification dispatcher, enrollment directory) can be
    injected; otherwise the defaults built from configuration are used.
    ``test_config`` overrides individual settings before extensions start.
    """
    app = Flask(__name__)

    # Load configuration
    from config import get_config
    config_class = get_config(config_name)
    app.config.from_object(config_class)
    if test_config:
        app.config.update(test_config)

    # Trust X-Forwarded-For only from the configured number of proxies
    if app.config.get('PROXY_FIX_X_FOR'):
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=app.config['PROXY_FIX_X_FOR'])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    limiter.init_app(app)

    # Configure CORS
    CORS(app, origins=app.config.get('CORS_ORIGINS', ["*"]))

    # Setup logging
    setup_logging(app)

    # Wire collaborators
    register_collaborators(app, notification_dispatcher, enrollment_directory)

    # Register blueprints
    register_blueprints(app)

    # Register error handlers
    register_error_handlers(app)

    # Setup database
    setup_database(app)

    # Add CLI commands
    register_commands(app)

    # Add health check
    @app.route('/health')
    def health_check():
        return jsonify({
            'status': 'healthy',
            'service': 'Session & Assessment Engine',
            'version': '1.0.0'
        })

    return app

def register_collaborators(app: Flask, notification_dispatcher=None,
                           enrollment_directory=None) -> None:
    """Attach the external collaborators to the application."""
    from session_engine.services.locking import build_lock_registry
    from session_engine.services.notification_service import build_dispatcher
    from session_engine.services.enrollment_service import EnrollmentDirectory

    app.extensions['lock_registry'] = build_lock_registry(app.config)
    app.extensions['notification_dispatcher'] = (
        notification_dispatcher or build_dispatcher(app.config)
    )
    app.extensions['enrollment_directory'] = (
        enrollment_directory or EnrollmentDirectory()
    )

def register_blueprints(app: Flask) -> None:
    """Register all application blueprints."""
    from session_engine.api.attendance import attendance_bp
    from session_engine.api.exams import exams_bp
    from session_engine.api.assignments import assignments_bp

    app.register_blueprint(attendance_bp, url_prefix='/api/attendance')
    app.register_blueprint(exams_bp, url_prefix='/api/exams')
    app.register_blueprint(assignments_bp, url_prefix='/api/assignments')

def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""
    from session_engine.utils.helpers import handle_error, engine_error_response
    from session_engine.utils.errors import EngineError
    from werkzeug.exceptions import HTTPException

    @app.errorhandler(EngineError)
    def handle_engine_error(error):
        db.session.rollback()
        return engine_error_response(error)

    @app.errorhandler(404)
    def not_found(error):
        return handle_error(error, 404)

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return handle_error(error, 500)

    @app.errorhandler(HTTPException)
    def handle_exception(e):
        return handle_error(e, e.code)

    # JWT error handlers
    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        return jsonify({
            'error': True,
            'message': 'Token has expired',
            'status_code': 401
        }), 401

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        return jsonify({
            'error': True,
            'message': 'Invalid token',
            'status_code': 401
        }), 401

    @jwt.unauthorized_loader
    def missing_token_callback(error):
        return jsonify({
            'error': True,
            'message': 'Authorization token required',
            'status_code': 401
        }), 401

def setup_logging(app: Flask) -> None:
    """Setup application logging."""
    level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO'), logging.INFO)

    if not app.debug and not app.testing:
        log_file = app.config.get('LOG_FILE', 'logs/app.log')
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(level)
        app.logger.addHandler(file_handler)

        app.logger.setLevel(level)
        app.logger.info('Session & Assessment Engine startup')
    else:
        app.logger.setLevel(level)

def setup_database(app: Flask) -> None:
    """Import all models so their tables are registered."""
    with app.app_context():
        from session_engine.models import (
            AttendanceSession, AttendanceRecord, RecordModification,
            Exam, Question, Attempt, Answer, Violation,
            Assignment, Submission, SubmissionReview, Enrollment
        )

def register_commands(app: Flask) -> None:
    """Register CLI commands."""
    import click

    @app.cli.command()
    @click.option('--drop', is_flag=True, help='Drop existing tables')
    def init_db(drop):
        """Initialize the database."""
        if drop:
            db.drop_all()
            click.echo('Dropped all tables.')

        db.create_all()
        click.echo('Created all tables.')

    @app.cli.command('close-expired-sessions')
    def close_expired_sessions():
        """Close every open attendance session whose window has passed."""
        from session_engine.services.session_service import SessionService

        closed = SessionService.close_expired_sessions()
        click.echo(f'Closed {len(closed)} expired attendance sessions.')

    @app.cli.command('complete-expired-exams')
    def complete_expired_exams():
        """Complete every ongoing exam whose end time has passed."""
        from session_engine.services.session_service import ExamLifecycleService

        completed = ExamLifecycleService.complete_expired_exams()
        click.echo(f'Completed {len(completed)} expired exams.')

    @app.cli.command('enroll')
    @click.argument('course_id', type=int)
    @click.argument('participant_ids', type=int, nargs=-1)
    def enroll(course_id, participant_ids):
        """Mirror course enrollments into the local directory."""
        from session_engine.services.enrollment_service import EnrollmentDirectory

        added = EnrollmentDirectory.enroll(course_id, participant_ids)
        click.echo(f'Enrolled {added} participants in course {course_id}.')
