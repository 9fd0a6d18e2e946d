"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for neural network training.

This module provides endpoints for:
- Creating, importing and exporting networks
- Running forward passes
- Online training with real-time loss updates via WebSockets
- Persisting networks to/from SQLite database

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for async background training tasks
- SQLite for network persistence

Configuration comes from the environment:
- LOG_LEVEL: logging level (default INFO)
- FLASK_ENV: 'production' quiets third-party logs and disables debug
- PORT: listening port (default 8000)
- MODEL_DIR: directory of the SQLite store (default 'models')
- NETWORK_MAX_AGE_DAYS: age after which saved networks are cleaned up (default 2)
- NETWORK_CLEANUP: '0' disables the background cleanup task
"""

import os
import sys
import uuid
import logging
from typing import Dict, Any, List, Optional

import gevent
import numpy as np
from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

from neuronet.activations import (
    DEFAULT_ACTIVATION,
    available_activations,
    get_activation,
)
from neuronet.errors import NetworkError
from neuronet.network import Network
from neuronet.model_persistence import (
    DEFAULT_MODEL_DIR,
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
    delete_old_networks
)

# ============================================================================
# LOGGING SETUP
# ============================================================================

def configure_logging() -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep important logs
    - In development: Show more detailed logs for debugging
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    is_production = os.getenv('FLASK_ENV') == 'production'

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if is_production:
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('neuronet').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# CONFIGURATION
# ============================================================================

MODEL_DIR = os.getenv('MODEL_DIR', DEFAULT_MODEL_DIR)
NETWORK_MAX_AGE_DAYS = float(os.getenv('NETWORK_MAX_AGE_DAYS', '2'))
CLEANUP_ENABLED = os.getenv('NETWORK_CLEANUP', '1') != '0'
MAX_TRAINING_STEPS = 100000

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})

is_production = os.getenv('FLASK_ENV') == 'production'

# SocketIO enables real-time communication (WebSockets) for training updates
socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not is_production,
    engineio_logger=not is_production,
    ping_timeout=60,
    ping_interval=25
)

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}


def register_network(network_id: str, net: Network, activation: str,
                     trained: bool = False, loss: Optional[float] = None) -> Dict[str, Any]:
    """
    Attach the activation pair and delta buffers, then track the network.

    Raises:
        ValueError: If the activation name is unknown
    """
    net.set_funcs(*get_activation(activation))
    net.init_learn()
    info = {
        'network': net,
        'activation': activation,
        'trained': trained,
        'loss': loss
    }
    active_networks[network_id] = info
    return info


def describe_network(network_id: str, info: Dict[str, Any]) -> Dict[str, Any]:
    net = info['network']
    return {
        'network_id': network_id,
        'name': net.name,
        'summary': str(net),
        'topology': [[size, bias] for size, bias in net.topology],
        'activation': info['activation'],
        'trained': info['trained'],
        'loss': info['loss']
    }


def reload_saved_networks() -> None:
    """
    Reload all saved networks from the database into memory.

    Called at startup so networks saved before a restart are available
    again, with their activation pair re-attached.
    """
    saved_networks = list_saved_networks(MODEL_DIR)

    if not saved_networks:
        logger.info("No saved networks to reload")
        return

    loaded_count = 0
    for net_info in saved_networks:
        network_id = net_info['network_id']
        net = load_network(network_id, MODEL_DIR)
        if net is None:
            logger.warning(f"Failed to load network {network_id}")
            continue
        try:
            register_network(
                network_id,
                net,
                net_info['activation'] or DEFAULT_ACTIVATION,
                trained=net_info['trained'],
                loss=net_info['loss']
            )
            loaded_count += 1
        except ValueError as e:
            logger.warning(f"Skipping network {network_id}: {e}")

    logger.info(f"Reloaded {loaded_count} network(s) from database")


reload_saved_networks()

# Training jobs can't continue after a restart, so start fresh
training_jobs.clear()


# ============================================================================
# BACKGROUND TASKS
# ============================================================================

# Flag to ensure cleanup task only starts once
_cleanup_task_started = False


def sync_active_networks() -> None:
    """Drop in-memory networks whose database row no longer exists."""
    saved_ids = {net['network_id'] for net in list_saved_networks(MODEL_DIR)}
    networks_to_remove = [
        nid for nid, info in active_networks.items()
        if info['trained'] and nid not in saved_ids
    ]
    for nid in networks_to_remove:
        del active_networks[nid]
        logger.info(f"Removed network {nid} from memory (deleted from database)")


def cleanup_finished_training_jobs() -> None:
    """
    Remove completed or failed training jobs from memory.

    This prevents the training_jobs dictionary from growing indefinitely.
    """
    finished_statuses = {'completed', 'failed'}
    jobs_to_remove = [
        job_id for job_id, job_info in training_jobs.items()
        if job_info.get('status') in finished_statuses
    ]

    for job_id in jobs_to_remove:
        del training_jobs[job_id]

    if jobs_to_remove:
        logger.info(f"Cleaned up {len(jobs_to_remove)} finished training job(s)")


def cleanup_old_networks_task() -> None:
    """
    Background task that runs immediately on startup, then every 24 hours to:
    - Delete networks older than NETWORK_MAX_AGE_DAYS from the database
    - Sync in-memory networks with the database
    - Remove completed/failed training jobs from memory
    """
    while True:
        try:
            deleted_count = delete_old_networks(
                days=NETWORK_MAX_AGE_DAYS, model_dir=MODEL_DIR
            )

            if deleted_count > 0:
                logger.info(f"Cleanup completed: deleted {deleted_count} network(s)")
                sync_active_networks()
            elif deleted_count == 0:
                logger.info("Cleanup completed: no old networks found to delete")
            else:
                logger.error("Cleanup returned error code")

            cleanup_finished_training_jobs()

            logger.info("Next cleanup scheduled in 24 hours")
            gevent.sleep(86400)

        except Exception as e:
            logger.exception(f"Error during network cleanup: {e}")
            gevent.sleep(3600)


def start_cleanup_task() -> None:
    """
    Start the background cleanup task.

    Idempotent: calling it multiple times has no effect.
    """
    global _cleanup_task_started

    if _cleanup_task_started:
        logger.debug("Cleanup task already started, skipping")
        return

    _cleanup_task_started = True
    logger.info("Starting cleanup task (runs immediately, then every 24 hours)")
    gevent.spawn(cleanup_old_networks_task)


if CLEANUP_ENABLED:
    start_cleanup_task()


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def array_to_float_list(array) -> List[float]:
    """Convert a numpy array to a list of floats (for JSON serialization)."""
    return [float(val) for val in np.asarray(array).flatten()]


def parse_vector(data: Dict[str, Any], key: str, expected: int) -> List[float]:
    """
    Read a list of numbers from a request body.

    Raises:
        ValueError: If the field is missing, not numeric or of the wrong length
    """
    values = data.get(key)
    if not isinstance(values, list) or not all(
        isinstance(v, (int, float)) and not isinstance(v, bool) for v in values
    ):
        raise ValueError(f'{key} must be a list of numbers')
    if len(values) != expected:
        raise ValueError(f'{key} must have {expected} values, got {len(values)}')
    return [float(v) for v in values]


def has_active_job(network_id: str) -> bool:
    """Whether a pending or running job already trains this network."""
    return any(
        job['network_id'] == network_id and job.get('status') in ('pending', 'training')
        for job in training_jobs.values()
    )


def network_not_found(network_id: str, action: str):
    logger.warning(f"{action} requested for non-existent network: {network_id}")
    return jsonify({'error': 'Network not found'}), 404


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """Return server status and statistics."""
    active_statuses = ('pending', 'training')
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in active_statuses
    )

    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'training_jobs': active_training
    }), 200


@app.route('/api/activations', methods=['GET'])
def list_activations():
    return jsonify({
        'activations': available_activations(),
        'default': DEFAULT_ACTIVATION
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new neural network.

    Request body (all optional):
        {
            'topology': [[2, true], [3, true], [2, false]],
            'activation': 'tanh3',
            'name': 'demo',
            'seed': 42
        }

    Returns:
        JSON with network_id, summary, topology and status
    """
    data = request.get_json(silent=True) or {}
    topology = data.get('topology', [[2, True], [3, True], [2, False]])
    activation = data.get('activation', DEFAULT_ACTIVATION)
    name = data.get('name', '')
    seed = data.get('seed')

    if not isinstance(topology, list) or not topology:
        logger.warning(f"Invalid topology requested: {topology}")
        return jsonify({
            'error': 'Invalid topology. Must describe at least 1 layer.'
        }), 400
    if not isinstance(name, str):
        return jsonify({'error': 'name must be a string'}), 400
    if seed is not None and (isinstance(seed, bool) or not isinstance(seed, int) or seed < 0):
        return jsonify({'error': 'seed must be a non-negative integer'}), 400

    network_id = str(uuid.uuid4())

    try:
        net = Network(topology, name=name, seed=seed)
        info = register_network(network_id, net, activation)
    except ValueError as e:
        logger.warning(f"Rejected network creation: {e}")
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.exception(f"Error creating network: {e}")
        return jsonify({'error': f'Failed to create network: {str(e)}'}), 500

    logger.info(f"Created network {network_id}: {net}")

    result = describe_network(network_id, info)
    result['status'] = 'created'
    return jsonify(result), 201


@app.route('/api/networks/import', methods=['POST'])
def import_network():
    """
    Create a network from a previously exported document.

    Request body:
        {'document': {...}, 'activation': 'tanh3'}
    """
    data = request.get_json(silent=True) or {}
    activation = data.get('activation', DEFAULT_ACTIVATION)

    try:
        net = Network.from_document(data.get('document'))
        network_id = str(uuid.uuid4())
        info = register_network(network_id, net, activation)
    except (NetworkError, ValueError) as e:
        logger.warning(f"Rejected network import: {e}")
        return jsonify({'error': str(e)}), 400

    logger.info(f"Imported network {network_id}: {net}")

    result = describe_network(network_id, info)
    result['status'] = 'imported'
    return jsonify(result), 201


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List all available networks (both in-memory and saved to disk)."""
    in_memory = []
    for nid, info in active_networks.items():
        entry = describe_network(nid, info)
        entry['status'] = 'in_memory'
        in_memory.append(entry)

    in_memory_ids = set(active_networks.keys())
    saved_only = []
    for net in list_saved_networks(MODEL_DIR):
        if net['network_id'] not in in_memory_ids:
            net['status'] = 'saved'
            saved_only.append(net)

    logger.debug(f"Listing networks: {len(in_memory)} in memory, {len(saved_only)} saved")

    return jsonify({'networks': in_memory + saved_only}), 200


@app.route('/api/networks/<network_id>', methods=['GET'])
def get_network(network_id: str):
    if network_id not in active_networks:
        return network_not_found(network_id, 'Details')

    return jsonify(describe_network(network_id, active_networks[network_id])), 200


@app.route('/api/networks/<network_id>/export', methods=['GET'])
def export_network(network_id: str):
    """Return the persisted document (layers and weights) of a network."""
    if network_id not in active_networks:
        return network_not_found(network_id, 'Export')

    net = active_networks[network_id]['network']
    return jsonify(net.to_document()), 200


@app.route('/api/networks/<network_id>/forward', methods=['POST'])
def forward_network(network_id: str):
    """
    Run a forward pass.

    Request body:
        {'input': [0.2, 0.8]}

    Returns:
        JSON with the network output
    """
    if network_id not in active_networks:
        return network_not_found(network_id, 'Forward pass')

    net = active_networks[network_id]['network']
    data = request.get_json(silent=True) or {}

    try:
        inputs = parse_vector(data, 'input', net.input_size)
        output = net.forward_pass(inputs)
    except (NetworkError, ValueError) as e:
        return jsonify({'error': str(e)}), 400

    return jsonify({
        'network_id': network_id,
        'output': array_to_float_list(output)
    }), 200


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start online training of a network on one sample in the background.

    Request body:
        {
            'input': [0.2, 0.8],
            'target': [0.6, 0.4],
            'learning_ratio': 0.3,   # optional
            'steps': 2               # optional
        }

    Returns:
        JSON with job_id, network_id, and status
    """
    if network_id not in active_networks:
        return network_not_found(network_id, 'Training')

    net = active_networks[network_id]['network']
    data = request.get_json(silent=True) or {}
    learning_ratio = data.get('learning_ratio', 0.3)
    steps = data.get('steps', 1)

    try:
        inputs = parse_vector(data, 'input', net.input_size)
        targets = parse_vector(data, 'target', net.output_size)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    if isinstance(steps, bool) or not isinstance(steps, int) or not 1 <= steps <= MAX_TRAINING_STEPS:
        return jsonify({
            'error': f'steps must be an integer between 1 and {MAX_TRAINING_STEPS}'
        }), 400
    if isinstance(learning_ratio, bool) or not isinstance(learning_ratio, (int, float)) \
            or learning_ratio < 0:
        return jsonify({'error': 'learning_ratio must be a non-negative number'}), 400

    if has_active_job(network_id):
        logger.warning(f"Training already running for network {network_id}")
        return jsonify({'error': 'Network already has an active training job'}), 409

    job_id = str(uuid.uuid4())

    training_jobs[job_id] = {
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'steps': steps
    }

    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"steps={steps}, learning_ratio={learning_ratio}"
    )

    # Run training in background so we can return immediately
    socketio.start_background_task(
        train_network_task,
        network_id, job_id, inputs, targets, float(learning_ratio), steps
    )

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started'
    }), 202


def train_network_task(
    network_id: str,
    job_id: str,
    inputs: List[float],
    targets: List[float],
    learning_ratio: float,
    steps: int
) -> None:
    """
    Background task that trains a network with repeated single-sample steps.

    Sends a 'training_update' event with the loss after every step.
    """
    job = training_jobs[job_id]

    try:
        info = active_networks[network_id]
        net = info['network']
        output = np.zeros(net.output_size)

        logger.info(f"Starting training for job {job_id}")

        loss = None
        for step in range(1, steps + 1):
            # Other greenlets may have touched the network since the last step
            net.learning_ratio = learning_ratio
            loss = net.adjust_weights(inputs, targets, output)
            progress = step / steps * 100

            job['status'] = 'training'
            job['progress'] = progress
            job['loss'] = loss

            socketio.emit('training_update', {
                'job_id': job_id,
                'network_id': network_id,
                'step': step,
                'total_steps': steps,
                'loss': loss,
                'output': array_to_float_list(output),
                'progress': progress
            })

            # Let other greenlets (HTTP requests) run between steps
            gevent.sleep(0)

        info['trained'] = True
        info['loss'] = loss

        job['status'] = 'completed'
        job['progress'] = 100
        job['output'] = array_to_float_list(output)

        save_network(
            net,
            network_id,
            model_dir=MODEL_DIR,
            activation=info['activation'],
            trained=True,
            loss=loss
        )

        logger.info(f"Training completed for job {job_id}: loss {loss:.6f}")

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'completed',
            'loss': loss,
            'output': job['output'],
            'progress': 100
        })
        gevent.sleep(0)

    except Exception as e:
        logger.exception(f"Training failed for job {job_id}: {e}")

        job['status'] = 'failed'
        job['error'] = str(e)

        socketio.emit('training_error', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'failed',
            'error': str(e)
        })
        gevent.sleep(0)


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    """Get the current status of a training job."""
    if job_id in training_jobs:
        return jsonify(training_jobs[job_id]), 200

    logger.warning(f"Status requested for non-existent job: {job_id}")
    return jsonify({'error': 'Training job not found'}), 404


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from both memory and disk."""
    deleted_from_memory = False
    if network_id in active_networks:
        del active_networks[network_id]
        deleted_from_memory = True

    deleted_from_disk = delete_network(network_id, MODEL_DIR)

    if not deleted_from_memory and not deleted_from_disk:
        return network_not_found(network_id, 'Delete')

    logger.info(f"Deleted network {network_id}: memory={deleted_from_memory}, disk={deleted_from_disk}")

    return jsonify({
        'network_id': network_id,
        'deleted_from_memory': deleted_from_memory,
        'deleted_from_disk': deleted_from_disk
    }), 200


@app.route('/api/networks', methods=['DELETE'])
def delete_all_networks():
    """Delete all networks from both memory and disk."""
    in_memory_ids = list(active_networks.keys())
    saved_ids = [net['network_id'] for net in list_saved_networks(MODEL_DIR)]
    all_network_ids = list(set(in_memory_ids + saved_ids))

    deleted_from_memory_count = 0
    deleted_from_disk_count = 0

    for network_id in all_network_ids:
        if network_id in active_networks:
            del active_networks[network_id]
            deleted_from_memory_count += 1

        if network_id in saved_ids and delete_network(network_id, MODEL_DIR):
            deleted_from_disk_count += 1

    logger.info(
        f"Deleted all networks: {len(all_network_ids)} total, "
        f"{deleted_from_memory_count} from memory, {deleted_from_disk_count} from disk"
    )

    return jsonify({
        'deleted_count': len(all_network_ids),
        'deleted_from_memory': deleted_from_memory_count,
        'deleted_from_disk': deleted_from_disk_count,
        'message': f'Successfully deleted {len(all_network_ids)} network(s)'
    }), 200


@app.route('/api/networks/cleanup', methods=['POST'])
def cleanup_old_networks_endpoint():
    """
    Manually trigger cleanup of networks older than specified days.

    Request body (optional):
        {'days': 2}  # defaults to NETWORK_MAX_AGE_DAYS

    Returns:
        JSON with deleted_count, days, and message
    """
    data = request.get_json(silent=True) or {}
    days = data.get('days', NETWORK_MAX_AGE_DAYS)

    if isinstance(days, bool) or not isinstance(days, (int, float)) or days < 0:
        return jsonify({'error': 'days must be a non-negative number'}), 400

    try:
        deleted_count = delete_old_networks(days=days, model_dir=MODEL_DIR)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    if deleted_count == -1:
        return jsonify({'error': 'Error occurred during cleanup'}), 500

    if deleted_count > 0:
        sync_active_networks()

    logger.info(f"Manual cleanup: deleted {deleted_count} network(s) older than {days} day(s)")

    return jsonify({
        'deleted_count': deleted_count,
        'days': days,
        'message': f'Successfully deleted {deleted_count} network(s) older than {days} day(s)'
    }), 200


# ============================================================================
# SERVER STARTUP
# ============================================================================

def main() -> None:
    port = int(os.environ.get('PORT', 8000))
    logger.info(f"Starting server at http://localhost:{port}/")

    start_cleanup_task()

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not is_production,
            use_reloader=False
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        else:
            raise


if __name__ == '__main__':
    main()
