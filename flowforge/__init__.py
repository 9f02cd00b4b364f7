from flask import Flask, jsonify
from flask_cors import CORS
from datetime import datetime
from sqlalchemy import text
from flowforge.config import Config
from flowforge.database import db, init_db


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    # CORS: editor dev servers plus CORS_ORIGINS
    allowed_origins = [
        'http://localhost:5173',
        'http://localhost:3000',
    ]
    env_origins = app.config.get('CORS_ORIGINS', '')
    if env_origins:
        allowed_origins.extend([origin.strip() for origin in env_origins.split(',')])

    CORS(app,
         resources={r"/api/*": {"origins": allowed_origins}},
         supports_credentials=False,
         allow_headers=["Content-Type", "Authorization"],
         methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"])

    db.init_app(app)
    init_db(app)

    from flowforge.routes import flows
    app.register_blueprint(flows.flows_bp)

    from flowforge.routes import plugins
    app.register_blueprint(plugins.plugins_bp)

    @app.route('/health')
    def health():
        try:
            db.session.execute(text('SELECT 1'))
            return jsonify({
                'status': 'healthy',
                'timestamp': datetime.utcnow().isoformat()
            }), 200
        except Exception as e:
            return jsonify({
                'status': 'unhealthy',
                'error': str(e),
                'timestamp': datetime.utcnow().isoformat()
            }), 503

    return app
