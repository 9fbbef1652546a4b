# marketplace/main.py
import logging
import time
from typing import Any, Mapping, Optional

from flask import Flask, current_app, g, jsonify, request, send_from_directory
from flask_cors import CORS
from flask_jwt_extended import JWTManager

from marketplace.blueprints.admin import admin_bp
from marketplace.blueprints.auth import auth_bp
from marketplace.blueprints.cart import cart_bp
from marketplace.blueprints.notifications import notifications_bp
from marketplace.blueprints.orders import orders_bp
from marketplace.blueprints.payment import payment_bp
from marketplace.blueprints.products import products_bp
from marketplace.blueprints.users import users_bp
from marketplace.blueprints.wishlist import wishlist_bp
from marketplace.config import Config
from marketplace.database import SessionLocal, close_db, init_db
from marketplace.errors import register_error_handlers
from marketplace.observability import (
    check_database_health,
    configure_logging,
    increment_counter,
    observe_latency,
)
from marketplace.observability.logging_config import ensure_request_id
from marketplace.services.auth_service import AuthService
from marketplace.services.gateway_config import TtlCache
from marketplace.services.mailer import Mailer
from marketplace.services.payment_gateway import MidtransGateway

logger = logging.getLogger(__name__)

BLUEPRINTS = (
    auth_bp,
    users_bp,
    products_bp,
    wishlist_bp,
    cart_bp,
    orders_bp,
    payment_bp,
    admin_bp,
    notifications_bp,
)


def create_app(
    overrides: Optional[Mapping[str, Any]] = None,
    gateway_client: Optional[Any] = None,
    mailer: Optional[Mailer] = None,
) -> Flask:
    app = Flask(__name__)
    Config.configure_app(app, overrides)
    configure_logging(app)

    CORS(
        app,
        resources={r"/api/*": {"origins": list(app.config["CORS_ALLOWED_ORIGINS"]) or "*"}},
        supports_credentials=True,
        expose_headers=[Config.REQUEST_ID_HEADER],
    )
    JWTManager(app)

    gateway = gateway_client or MidtransGateway(
        server_key=app.config["MIDTRANS_SERVER_KEY"],
        client_key=app.config["MIDTRANS_CLIENT_KEY"],
        is_production=app.config["MIDTRANS_IS_PRODUCTION"],
    )
    app.extensions["payment_gateway"] = gateway
    app.extensions["gateway_config_cache"] = TtlCache(
        gateway.public_config, ttl_seconds=app.config["GATEWAY_CONFIG_TTL_SECONDS"]
    )
    app.extensions["mailer"] = mailer or Mailer()

    register_error_handlers(app)
    for blueprint in BLUEPRINTS:
        app.register_blueprint(blueprint)
    _register_request_hooks(app)
    _register_core_routes(app)

    init_db()
    _bootstrap_admin(app)
    logger.info("Application initialised", extra={"env": app.config.get("ENV"), "gateway": gateway.__class__.__name__})
    return app


def _register_request_hooks(app: Flask) -> None:
    @app.before_request
    def before_request_logging():
        g.current_account = None
        g.request_started_at = time.perf_counter()
        g.request_id = ensure_request_id()
        increment_counter(
            "http_requests_total",
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
            },
        )

    @app.after_request
    def after_request_logging(response):
        response.headers[Config.REQUEST_ID_HEADER] = getattr(g, "request_id", "") or ""
        started = getattr(g, "request_started_at", None)
        if started is not None:
            duration_ms = (time.perf_counter() - started) * 1000
            observe_latency(
                "http_request_latency_ms",
                duration_ms,
                labels={
                    "method": request.method,
                    "endpoint": request.endpoint or request.path,
                    "status": str(response.status_code),
                },
            )
        if response.status_code >= 500:
            increment_counter(
                "http_errors_total",
                labels={
                    "method": request.method,
                    "endpoint": request.endpoint or request.path,
                    "status": str(response.status_code),
                },
            )
            logger.error("Request finished with error status %s", response.status_code)
        else:
            logger.info("Request finished", extra={"status_code": response.status_code})
        return response

    @app.teardown_appcontext
    def teardown_db(exception):
        close_db(exception)


def _register_core_routes(app: Flask) -> None:
    @app.route("/health", methods=["GET"])
    def health():
        db_status = check_database_health()
        overall = "UP" if db_status.get("status") == "UP" else "DEGRADED"
        status_code = 200 if overall == "UP" else 503
        return jsonify({
            "status": overall,
            "components": {
                "database": db_status
            }
        }), status_code

    @app.route(f"/{app.config['UPLOAD_SUBDIR']}/<path:filename>", methods=["GET"])
    def uploaded_image(filename):
        return send_from_directory(current_app.config["UPLOAD_DIR"], filename)


def _bootstrap_admin(app: Flask) -> None:
    username = app.config.get("SUPER_ADMIN_USERNAME")
    password = app.config.get("SUPER_ADMIN_PASSWORD")
    if not username or not password:
        return
    session = SessionLocal()
    try:
        AuthService(session, mailer=app.extensions["mailer"]).ensure_bootstrap_admin(
            username, password, app.config.get("SUPER_ADMIN_EMAIL")
        )
    finally:
        session.close()
