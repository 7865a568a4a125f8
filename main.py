from app.api.booking.appointments import appointments_bp
from app.api.inventory.inventory import inventory_bp
from app.api.services.catalog import services_bp
from app.api.staff.staff import staff_bp
from app.routes.auth import auth_bp
from app.cli import register_cli
from app.logging_config import setup_logging
from flask import Flask, jsonify
from flask_cors import CORS
from dotenv import load_dotenv
from flasgger import Swagger
from swagger__config import SWAGGER_CONFIG, SWAGGER_TEMPLATE
import logging
import os

load_dotenv()
from app.config import Config, describe_database  # noqa: E402
from app.extensions import db  # noqa: E402

logger = logging.getLogger(__name__)


def create_app(test_config=None):
    app = Flask(__name__)
    try:
        app.config.from_object(Config)
        if test_config:
            app.config.update(test_config)
        # pytest owns log capture during tests
        if not app.config.get("TESTING"):
            setup_logging()
        logger.info("Config loaded: %s items", len(app.config))
        logger.info(
            "Environment: %s | Testing: %s | Database: %s | Timezone: %s",
            os.environ.get("FLASK_ENV") or "production",
            app.config.get("TESTING"),
            describe_database(app.config.get("SQLALCHEMY_DATABASE_URI")),
            app.config.get("BUSINESS_TIMEZONE"),
        )

        CORS(app, origins=app.config.get("CORS_ORIGINS", "*"))
        db.init_app(app)

        # Determine host based on environment
        host = os.environ.get("API_HOST", "127.0.0.1:5000")
        swagger_template = SWAGGER_TEMPLATE.copy()
        swagger_template["host"] = host
        Swagger(app, config=SWAGGER_CONFIG, template=swagger_template)
        logger.info("Swagger initialized - Access at /api/docs")

        blueprints = [
            auth_bp,
            appointments_bp,
            inventory_bp,
            services_bp,
            staff_bp,
        ]

        for bp in blueprints:
            app.register_blueprint(bp)
            logger.debug("Blueprint %s registered", bp.name)

        register_cli(app)

        @app.route("/api/health")
        def health():
            """
            Health check
            ---
            tags:
              - Utility
            responses:
              200:
                description: API is running
            """
            return jsonify({"status": "healthy"}), 200

        logger.info(
            "Registered %d routes", sum(1 for _ in app.url_map.iter_rules())
        )

    except Exception:
        logger.exception("Error during app creation")
        raise

    return app


if __name__ == "__main__":
    # Create a .env containing:
    #       DATABASE_URL=mysql+pymysql://<USER>:<PASSWORD>@<HOST>:<PORT>/grooming
    app = create_app()
    port = int(os.environ.get("PORT", 5000))
    app.run(
        host="0.0.0.0", port=port, debug=os.environ.get("FLASK_ENV") != "production"
    )
