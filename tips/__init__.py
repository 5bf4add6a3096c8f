# tips/__init__.py

import os
import logging

from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# Carga variables de entorno (.env)
load_dotenv()

# Extensiones compartidas
db = SQLAlchemy()
migrate = Migrate()

DEV_SECRET_KEY = "tips-testing-key-no-usar-en-produccion-0123456789"


def _require_secret_key(testing: bool = False) -> str:
    """Lee SECRET_KEY de entorno y exige mínimo 32 bytes."""
    secret = os.getenv("SECRET_KEY", "")
    if testing and not secret:
        return DEV_SECRET_KEY
    if not secret or len(secret) < 32:
        raise RuntimeError(
            "SECRET_KEY no configurado o demasiado corto. "
            "Añade una clave segura al .env, por ejemplo:\n"
            "  SECRET_KEY="
            "pZcN3mT0f3Qh7JtBv0r6m2kF9yV1wX8qZ4s3a6g9h2j5l8p1r0t2v4x6z8b0c2"
        )
    return secret


def _configure_logging(app: Flask) -> None:
    """Logging simple y consistente."""
    level = logging.DEBUG if app.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    app.logger.setLevel(level)


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def create_app(test_config=None) -> Flask:
    """Factory principal de la aplicación."""
    app = Flask(__name__, instance_relative_config=True)

    # Asegura carpeta instance/
    os.makedirs(app.instance_path, exist_ok=True)

    # DB por defecto (SQLite en instance/tips.db)
    db_path = os.path.join(app.instance_path, "tips.db")
    default_db_uri = f"sqlite:///{db_path}"
    testing = bool(test_config and test_config.get("TESTING"))

    # -----------------------------
    # Config base
    # -----------------------------
    app.config.from_mapping(
        SECRET_KEY=_require_secret_key(testing),
        SQLALCHEMY_DATABASE_URI=os.getenv("SQLALCHEMY_DATABASE_URI", default_db_uri),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        JSON_SORT_KEYS=False,
        MAX_CONTENT_LENGTH=1 * 1024 * 1024,
        # URL de Firebase Realtime Database; vacío => árbol en memoria
        TIPS_REMOTE_URL=os.getenv("TIPS_REMOTE_URL", ""),
        TIPS_REMOTE_AUTH=os.getenv("TIPS_REMOTE_AUTH", ""),
        REMOTE_TIMEOUT=float(os.getenv("REMOTE_TIMEOUT", "10")),
        TIPS_TIMER_CACHE=os.getenv(
            "TIPS_TIMER_CACHE", os.path.join(app.instance_path, "treatmentTimerEnd.cache")
        ),
        TIPS_START_WORKERS=_env_flag("TIPS_START_WORKERS"),
        DEFAULT_TIMER_SECONDS=float(os.getenv("DEFAULT_TIMER_SECONDS", "900")),
        # reloj inyectable (tests); None => datetime.now
        TIPS_CLOCK=None,
    )
    if test_config:
        app.config.from_mapping(test_config)

    # Inicializa extensiones
    db.init_app(app)
    migrate.init_app(app, db)

    _configure_logging(app)

    # ---------------------------------------------------------
    # MODELOS (importar para que Flask-Migrate los detecte)
    # ---------------------------------------------------------
    try:
        from tips.models.cache import CacheEntry, PendingNotification  # noqa: F401
    except Exception as e:
        app.logger.warning(f"[init] modelos cache: {e}")

    # ---------------------------------------------------------
    # BLUEPRINTS
    # ---------------------------------------------------------
    try:
        from tips.routes.api import api
        app.register_blueprint(api)
    except Exception as e:
        app.logger.warning(f"[init] api routes: {e}")

    # Plan: ciclos, items, unidades
    try:
        from tips.routes.plan import plan
        app.register_blueprint(plan)
    except Exception as e:
        app.logger.warning(f"[init] plan routes: {e}")

    # Registro de consumos + historial
    try:
        from tips.routes.log import log_bp
        app.register_blueprint(log_bp)
    except Exception as e:
        app.logger.warning(f"[init] log routes: {e}")

    # Sala, usuario, recordatorios, temporizador
    try:
        from tips.routes.settings import settings_bp
        app.register_blueprint(settings_bp)
    except Exception as e:
        app.logger.warning(f"[init] settings routes: {e}")

    # ---------------------------------------------------------
    # CLI
    # ---------------------------------------------------------
    try:
        from tips.cli import register_cli
        register_cli(app)
    except Exception as e:
        app.logger.warning(f"[init] CLI: {e}")

    # ---------------------------------------------------------
    # Healthcheck y manejo de errores JSON (básico)
    # ---------------------------------------------------------
    @app.get("/healthz")
    def _healthz():
        return {"status": "ok"}, 200

    @app.errorhandler(400)
    @app.errorhandler(403)
    @app.errorhandler(404)
    @app.errorhandler(405)
    @app.errorhandler(409)
    @app.errorhandler(500)
    def _http_errors(err):
        # Si la petición es JSON, devolvemos JSON consistente
        if request.is_json or request.path.startswith("/api/"):
            code = getattr(err, "code", 500) or 500
            return jsonify(error_code="http_error", message=str(err)), code
        return err

    if app.config["TIPS_START_WORKERS"] and not app.config.get("TESTING"):
        start_workers(app)

    return app


def start_workers(app: Flask):
    """Arranca el store y el ticker de 1 Hz (temporizador + notificaciones)."""
    from tips.services.store import get_store
    from tips.services.timer import TimerTicker

    ticker = app.extensions.get("tips_ticker")
    if ticker is not None:
        return ticker
    with app.app_context():
        db.create_all()
        store = get_store()
    ticker = TimerTicker(store)
    ticker.start()
    app.extensions["tips_ticker"] = ticker
    return ticker
