from flask import Flask

from commissions.config import DevelopmentConfig
from commissions.errors import CommissionError
from commissions.extensions import db, jwt, cors
from commissions.utils.response_formatter import error_response


def create_app(config_class=DevelopmentConfig):
    app = Flask(__name__)
    app.config.from_object(config_class)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    db.init_app(app)
    jwt.init_app(app)
    origins = [o.strip() for o in app.config.get("CORS_ORIGINS", "").split(",") if o.strip()]
    cors.init_app(app, origins=origins or "*", supports_credentials=True)

    from commissions import models  # noqa: F401  registers the tables
    from commissions.routes import special_request_routes, admin_special_request_routes, notification_routes

    app.register_blueprint(special_request_routes.bp)
    app.register_blueprint(admin_special_request_routes.bp)
    app.register_blueprint(notification_routes.bp)

    register_error_handlers(app)

    with app.app_context():
        db.create_all()

    return app


def register_error_handlers(app):
    @app.errorhandler(CommissionError)
    def handle_commission_error(e):
        if e.status >= 500:
            app.logger.error(f"[{e.code}] {e.message}")
        else:
            app.logger.info(f"[{e.code}] {e.message}")
        return error_response(e.code, e.message, e.details, status=e.status)

    @jwt.unauthorized_loader
    def handle_missing_token(reason):
        return error_response("UNAUTHORIZED", reason, status=401)

    @jwt.invalid_token_loader
    def handle_invalid_token(reason):
        return error_response("UNAUTHORIZED", reason, status=401)
