from stringdesk.routes.auth import auth_bp
from stringdesk.api.orders.orders import orders_bp
from stringdesk.api.inventory.strings import strings_bp
from stringdesk.api.payments.payments import payments_bp
from stringdesk.api.packages.packages import packages_bp
from stringdesk.api.vouchers.vouchers import vouchers_bp
from stringdesk.api.loyalty.points import points_bp
from stringdesk.api.loyalty.referrals import referrals_bp
from stringdesk.api.reviews.reviews import reviews_bp
from stringdesk.api.communication.notifications import notifications_bp
from stringdesk.api.admin.orders import admin_orders_bp
from stringdesk.api.admin.payments import admin_payments_bp
from stringdesk.api.admin.catalog import admin_catalog_bp
from stringdesk.api.admin.users import admin_users_bp
from stringdesk.api.admin.cron import cron_bp
from stringdesk.api.admin_dashboard.admin_analytics import admin_analytics_bp
from stringdesk.api.admin_dashboard.admin_reports import admin_reports_bp
from flask import Flask, send_from_directory
from flask_cors import CORS
from dotenv import load_dotenv
from flasgger import Swagger
from sqlalchemy import text
from swagger__config import SWAGGER_CONFIG, SWAGGER_TEMPLATE
import os

load_dotenv()
from stringdesk.config import Config  # noqa: E402
from stringdesk.extensions import db  # noqa: E402
from stringdesk.scheduler import init_scheduler  # noqa: E402


def create_app():
    print("Starting create_app()")
    app = Flask(__name__)
    print(f"Flask app created: {app}")
    try:
        print("Loading config...")
        app.config.from_object(Config)
        app.config["MAX_CONTENT_LENGTH"] = (app.config["MAX_UPLOAD_MB"] + 1) * 1024 * 1024
        print("Config loaded successfully")
        print(f"Config items: {len(app.config)} items loaded")

        print("Initializing CORS...")
        CORS(app)
        print("CORS initialized")

        print("Initializing database...")
        db.init_app(app)
        print("Database initialized")
        print("Initializing Swagger/OpenAPI documentation...")
        host = os.environ.get("API_HOST", "127.0.0.1:5000")
        swagger_template = SWAGGER_TEMPLATE.copy()
        swagger_template["host"] = host

        Swagger(app, config=SWAGGER_CONFIG, template=swagger_template)
        print("Swagger initialized - Access at /api/docs")
        print("Registering blueprints...")

        blueprints = [
            auth_bp,
            strings_bp,
            orders_bp,
            payments_bp,
            packages_bp,
            vouchers_bp,
            points_bp,
            referrals_bp,
            reviews_bp,
            notifications_bp,
            admin_orders_bp,
            admin_payments_bp,
            admin_catalog_bp,
            admin_users_bp,
            cron_bp,
            admin_analytics_bp,
            admin_reports_bp,
        ]

        for bp in blueprints:
            app.register_blueprint(bp)
            print(f"  ✓ {bp.name} registered")

        print("All blueprints registered successfully")
        print("Adding root routes...")

        @app.route("/")
        def home():
            """
            Root endpoint - API status
            ---
            tags:
              - Utility
            responses:
              200:
                description: API is running
            """
            return {"status": "ok", "message": "StringDesk backend is running!"}, 200

        @app.route("/api/health")
        def health():
            """
            Health check including the database connection
            ---
            tags:
              - Utility
            responses:
              200:
                description: Service and database reachable
              503:
                description: Database unreachable
            """
            try:
                db.session.execute(text("SELECT 1"))
                return {"status": "ok", "database": "ok"}, 200
            except Exception as e:
                app.logger.error(f"Health check failed: {e}")
                return {"status": "degraded", "database": "unavailable"}, 503

        @app.route("/uploads/<path:filename>")
        def uploaded_file(filename):
            return send_from_directory(app.config["UPLOAD_DIR"], filename)

        print("Root routes added")

        print("Checking registered routes:")
        route_count = 0
        for rule in app.url_map.iter_rules():
            route_count += 1
            print(
                f"   Route {route_count}: {rule.endpoint} -> {rule.rule} [{list(rule.methods)}]"
            )  # noqa: E501
        print(f"Total routes registered: {route_count}")

        if app.config.get("SCHEDULER_ENABLED") and not app.config.get("TESTING"):
            print("Starting scheduler...")
            init_scheduler(app)

    except Exception as e:
        print(f"Error during app creation: {e}")
        print(f"Error type: {type(e)}")
        import traceback

        print(f"Full traceback: {traceback.format_exc()}")
        raise

    print("create_app() completed successfully")
    return app


print("About to call create_app()")
app = create_app()
print(f"App created: {app}")
print(f"App debug: {app.debug}")

expected_port = os.environ.get("PORT", "NOT SET")
print(f"PORT environment variable: {expected_port}")


if __name__ == "__main__":
    # Create a .env containing:
    #       MYSQL_PUBLIC_URL=mysql+pymysql://<USER>:<PASSWORD>@<HOST>:<PORT>/stringdesk
    #       SECRET_KEY=<random string>
    port = int(os.environ.get("PORT", 5000))
    app.run(
        host="0.0.0.0", port=port, debug=os.environ.get("FLASK_ENV") != "production"
    )
