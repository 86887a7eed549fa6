"""
HTTP API for producers of delayed jobs.

This module provides a Flask-based REST API that schedules jobs for
future execution, retracts them, and reports on the delayed backlog.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from flask import Flask, jsonify, request

from . import __version__
from .api import DelayedScheduler
from .delayed_queue import DelayedQueue, RedisDelayedQueue
from .types import ScheduleValidationError

logger = logging.getLogger(__name__)


def _parse_due_at(value: Any) -> Any:
    """Accept ISO 8601 strings in addition to epoch seconds."""
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError as e:
            raise ScheduleValidationError(f"Invalid due time {value!r}: {e}") from e
    return value


def create_app(config: Optional[Dict[str, Any]] = None, delayed_queue: Optional[DelayedQueue] = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config: Optional configuration dictionary
        delayed_queue: Store to use instead of the Redis queue at REDIS_URL

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)

    # Default configuration
    app.config.update({
        'TESTING': False,
        'REDIS_URL': 'redis://localhost:6379/0',
        'RESQUE_NAMESPACE': 'resque',
    })

    # Apply custom config
    if config:
        app.config.update(config)

    @asynccontextmanager
    async def open_scheduler() -> AsyncIterator[DelayedScheduler]:
        # Each async view runs on its own event loop, so Redis clients are per request
        if delayed_queue is not None:
            yield DelayedScheduler(delayed_queue)
            return
        store = RedisDelayedQueue.from_url(
            app.config['REDIS_URL'], namespace=app.config['RESQUE_NAMESPACE']
        )
        try:
            yield DelayedScheduler(store)
        finally:
            await store.close()

    @app.route('/health', methods=['GET'])
    def health():
        """Health check endpoint."""
        return jsonify({
            'status': 'healthy',
            'service': 'delayed-scheduler',
            'version': __version__,
            'timestamp': datetime.now(timezone.utc).isoformat()
        })

    @app.route('/schedule', methods=['POST'])
    async def schedule_job():
        """
        Schedule a job to be enqueued later.

        Request body (exactly one of "at" and "in"):
        {
            "queue": "emails",
            "class": "Welcome",
            "args": [1],
            "at": 1707818400 | "2024-02-13T10:00:00Z",
            "in": 30
        }

        Response:
        {
            "type": "schedule_response",
            "status": "scheduled",
            "due_at": 1707818400
        }
        """
        data = request.get_json(silent=True)
        if not data:
            return jsonify({'error': 'Empty request body'}), 400
        if not isinstance(data, dict):
            return jsonify({'error': 'Request body must be a JSON object'}), 400

        try:
            async with open_scheduler() as scheduler:
                if 'at' in data:
                    due_at = await scheduler.schedule_at(
                        _parse_due_at(data['at']), data.get('queue'), data.get('class'),
                        data.get('args', [])
                    )
                elif 'in' in data:
                    due_at = await scheduler.schedule_in(
                        data['in'], data.get('queue'), data.get('class'), data.get('args', [])
                    )
                else:
                    return jsonify({'error': "Either 'at' or 'in' is required"}), 400
        except ScheduleValidationError as e:
            logger.error(f"Invalid job data: {e}")
            return jsonify({'error': f'Invalid job data: {e}'}), 400
        except Exception as e:
            logger.error(f"Error scheduling job: {e}", exc_info=True)
            return jsonify({'error': str(e)}), 500

        logger.info(f"Scheduled {data.get('class')} in {data.get('queue')} at {due_at}")
        return jsonify({
            'type': 'schedule_response',
            'status': 'scheduled',
            'due_at': due_at
        }), 201

    @app.route('/schedule', methods=['DELETE'])
    async def remove_jobs():
        """
        Retract scheduled jobs that are not yet due.

        Request body:
        {
            "queue": "emails",
            "class": "Welcome",
            "args": [1],
            "at": 1707818400    (optional, limits removal to one timestamp)
        }
        """
        data = request.get_json(silent=True)
        if not data:
            return jsonify({'error': 'Empty request body'}), 400
        if not isinstance(data, dict):
            return jsonify({'error': 'Request body must be a JSON object'}), 400

        try:
            async with open_scheduler() as scheduler:
                if 'at' in data:
                    removed = await scheduler.remove_from_timestamp(
                        _parse_due_at(data['at']), data.get('queue'), data.get('class'),
                        data.get('args', [])
                    )
                else:
                    removed = await scheduler.remove_matching(
                        data.get('class'), data.get('args', []), data.get('queue')
                    )
        except ScheduleValidationError as e:
            logger.error(f"Invalid job data: {e}")
            return jsonify({'error': f'Invalid job data: {e}'}), 400
        except Exception as e:
            logger.error(f"Error removing jobs: {e}", exc_info=True)
            return jsonify({'error': str(e)}), 500

        logger.info(f"Removed {removed} delayed jobs")
        return jsonify({'removed': removed}), 200

    @app.route('/stats', methods=['GET'])
    async def stats():
        """Report the size of the delayed backlog."""
        async with open_scheduler() as scheduler:
            timestamps = await scheduler.delayed_queue.timestamps()
            size = await scheduler.size()
        return jsonify({
            'delayed_jobs': size,
            'timestamps': len(timestamps),
            'next_due_at': timestamps[0] if timestamps else None
        })

    @app.errorhandler(404)
    def not_found(error):
        """Handle 404 errors."""
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        """Handle 500 errors."""
        logger.error(f"Internal server error: {error}")
        return jsonify({'error': 'Internal server error'}), 500

    return app


def run_server(host: str = '0.0.0.0', port: int = 8001, debug: bool = False):
    """
    Run the producer HTTP server.

    Args:
        host: Host to bind to
        port: Port to listen on
        debug: Enable debug mode
    """
    logging.basicConfig(
        level=logging.INFO,
        format='[%(asctime)s] %(levelname)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logger.info("=" * 50)
    logger.info("  Delayed Job Scheduler API")
    logger.info("=" * 50)
    logger.info(f"Starting server on {host}:{port}")
    logger.info("Endpoints:")
    logger.info(f"  POST   {host}:{port}/schedule - Schedule a delayed job")
    logger.info(f"  DELETE {host}:{port}/schedule - Remove delayed jobs")
    logger.info(f"  GET    {host}:{port}/stats    - Delayed backlog stats")
    logger.info(f"  GET    {host}:{port}/health   - Health check")

    app = create_app()
    app.run(host=host, port=port, debug=debug)


if __name__ == '__main__':
    run_server()
