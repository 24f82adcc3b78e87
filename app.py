# app.py
from flask import Flask, jsonify, request, g
from flask_cors import CORS
import logging
import time
import sys

from config import Config
from database import get_supabase, make_session_factory
from routes.personal_routes import personal_bp
from sync.cloud import CloudAdapter
from sync.dispatch import SyncDispatcher
from sync.local_store import LocalStore, SqlBlobStorage
from sync.service import PersonalStoreService
from sync.transport import SupabaseTransport

# Configure logging to output to stdout
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)


def build_service(database_url=None):
    """Wire the on-device store, the Supabase-backed cloud adapter and the background dispatcher."""
    local_store = LocalStore(SqlBlobStorage(make_session_factory(database_url)))

    try:
        logger.info("Initializing Supabase connection...")
        cloud = CloudAdapter(SupabaseTransport(get_supabase()))
        logger.info("Successfully connected to Supabase")
    except Exception as e:
        # Annotations keep working offline; the cloud is best effort
        logger.error(f"Error connecting to Supabase, running local-only: {str(e)}")
        cloud = None

    return PersonalStoreService(
        local_store,
        cloud=cloud,
        dispatcher=SyncDispatcher.background(),
    )


def create_app(service=None, auth_resolver=None):
    app = Flask(__name__)

    app.json.sort_keys = False  # Preserve order of keys in JSON responses
    app.json.compact = True
    app.config['MAX_CONTENT_LENGTH'] = 1 * 1024 * 1024
    app.config['AUTH_RESOLVER'] = auth_resolver

    CORS(app, resources={
        r"/api/*": {
            "origins": "*",
            "methods": ["GET", "POST", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization"],
            "expose_headers": ["Content-Type", "Authorization"],
            "supports_credentials": True
        }
    })

    # Ensure URLs with or without trailing slashes are handled the same way
    app.url_map.strict_slashes = False

    app.extensions['personal_store'] = service or build_service()
    app.register_blueprint(personal_bp)

    @app.before_request
    def before_request():
        g.start_time = time.time()

    @app.after_request
    def after_request(response):
        duration = time.time() - g.get('start_time', time.time())
        logger.info(f"Request to {request.path} took {duration:.2f} seconds")
        return response

    @app.route('/health', methods=['GET'])
    def health():
        """Health check endpoint that also verifies the on-device store"""
        service = app.extensions['personal_store']
        try:
            store = service.load()
            return jsonify({
                'status': 'healthy',
                'cloud': 'configured' if service.cloud is not None else 'local-only',
                'signed_in': service.user_id is not None,
                'entries': len(store.bookmarks) + len(store.highlights) + len(store.notes),
                'timestamp': time.time()
            })
        except Exception as e:
            logger.error(f"Health check failed: {str(e)}")
            return jsonify({
                'status': 'unhealthy',
                'error': str(e),
                'timestamp': time.time()
            }), 500

    return app


if __name__ == '__main__':
    print("Starting personal sync server...")
    create_app().run(debug=True, port=Config.PORT)
