# Feedback Pipeline
# Feedback intake: AI classification, storage, stats and urgency alerts

import sys
import os

# Add parent directory to path for shared imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from flask import Flask, request, jsonify, render_template

from shared import (
    create_db_engine,
    init_db,
    seed_feedback,
    get_recent_feedback,
    get_grouped_counts,
    RECENT_FEEDBACK_LIMIT
)

from feedback.classifier import AnthropicGenerator
from feedback.pipeline import FeedbackWorkflow
from feedback.workflow import WorkflowHost

SERVICE_NAME = 'Feedback Pipeline'
VERSION = '1.0'

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, POST, OPTIONS',
    'Access-Control-Allow-Headers': 'Content-Type'
}


def parse_feedback_item(data):
    """Return (source, content) if data is a valid submission, else None"""
    if not isinstance(data, dict):
        return None
    source = data.get('source')
    content = data.get('content')
    if not isinstance(source, str) or not source.strip():
        return None
    if not isinstance(content, str) or not content.strip():
        return None
    return source, content


def create_app(engine=None, generate=None, executor=None, max_attempts=None, retry_delay=None):
    """Build the Flask app.

    The store engine, text generator and run executor can be injected; by
    default they come from shared.config.
    """
    app = Flask(__name__)

    engine = engine or create_db_engine()
    init_db(engine)
    generate = generate or AnthropicGenerator()

    host_options = {}
    if max_attempts is not None:
        host_options['max_attempts'] = max_attempts
    if retry_delay is not None:
        host_options['retry_delay'] = retry_delay

    host = WorkflowHost(engine, FeedbackWorkflow(engine, generate), executor=executor, **host_options)
    host.resume_pending()

    app.extensions['feedback_engine'] = engine
    app.extensions['feedback_host'] = host

    @app.before_request
    def preflight():
        """Answer CORS preflight for any path"""
        if request.method == 'OPTIONS':
            return '', 200

    @app.after_request
    def add_cors_headers(response):
        response.headers.update(CORS_HEADERS)
        return response

    @app.errorhandler(404)
    @app.errorhandler(405)
    def not_found(error):
        return 'Not Found', 404, {'Content-Type': 'text/plain'}

    @app.route('/api/feedback', methods=['POST'])
    def submit_feedback():
        """Accept feedback and start a pipeline run.

        Accepts:
            - source: Where the feedback came from (Discord, GitHub, ...)
            - content: The feedback text

        Returns:
            - success: True
            - workflowId: Run id, see /api/workflows/<id>
        """
        item = parse_feedback_item(request.get_json(force=True, silent=True))
        if item is None:
            return jsonify({'error': 'Invalid request body'}), 400

        source, content = item
        try:
            workflow_id = host.create({'source': source, 'content': content})
        except Exception as e:
            return jsonify({
                'error': 'Internal server error',
                'details': str(e)
            }), 500

        return jsonify({
            'success': True,
            'workflowId': workflow_id
        }), 202

    @app.route('/api/feedback', methods=['GET'])
    def list_feedback():
        """The most recent feedback, newest first"""
        try:
            return jsonify(get_recent_feedback(engine, limit=RECENT_FEEDBACK_LIMIT))
        except Exception as e:
            return jsonify({
                'error': 'Internal server error',
                'details': str(e)
            }), 500

    @app.route('/api/stats', methods=['GET'])
    def stats():
        """Feedback counts by category, sentiment and urgency"""
        try:
            return jsonify(get_grouped_counts(engine))
        except Exception as e:
            return jsonify({
                'error': 'Internal server error',
                'details': str(e)
            }), 500

    @app.route('/api/workflows/<run_id>', methods=['GET'])
    def workflow_status(run_id):
        """Status and result of one pipeline run"""
        try:
            status = host.get_status(run_id)
        except Exception as e:
            return jsonify({
                'error': 'Internal server error',
                'details': str(e)
            }), 500

        if status is None:
            return jsonify({'error': 'Workflow not found'}), 404
        return jsonify(status)

    @app.route('/', methods=['GET'])
    def dashboard():
        return render_template('dashboard.html')

    @app.route('/health', methods=['GET'])
    def health():
        """Health check endpoint"""
        return jsonify({
            'status': 'healthy',
            'service': SERVICE_NAME,
            'version': VERSION
        })

    @app.cli.command('init-db')
    def init_db_command():
        """Create the database tables."""
        init_db(engine)
        print('Database initialised')

    @app.cli.command('seed-db')
    def seed_db_command():
        """Load demo feedback into the database."""
        count = seed_feedback(engine)
        print(f'Seeded {count} feedback records')

    return app


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 8080))
    create_app().run(host='0.0.0.0', port=port)
