"""
test_model_persistence.py
~~~~~~~~~~~~~~~~~~~~~~~~~~

Unit tests for SQLite-based model persistence.
"""

import os
import sqlite3

import numpy as np
import pytest

from neuronet.activations import get_activation
from neuronet.network import Network
from neuronet.model_persistence import (
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
    get_network_metadata,
    delete_old_networks,
    ModelDatabase
)


def age_network(db_dir, network_id, modifier):
    """Move a network's created_at back in time, e.g. modifier='-3 days'."""
    conn = sqlite3.connect(os.path.join(db_dir, "networks.db"))
    cursor = conn.cursor()
    cursor.execute('''
        UPDATE networks
        SET created_at = datetime('now', ?)
        WHERE network_id = ?
    ''', (modifier, network_id))
    conn.commit()
    conn.close()


@pytest.fixture
def trained_network(simple_network):
    """Create a simple network with some training applied."""
    simple_network.set_funcs(*get_activation('sigmoid'))
    simple_network.learning_ratio = 0.1
    simple_network.init_learn()

    rng = np.random.default_rng(0)
    for i in range(10):
        x = rng.standard_normal(3)
        y = np.zeros(2)
        y[i % 2] = 1.0
        simple_network.adjust_weights(x, y)

    return simple_network


@pytest.mark.unit
class TestModelPersistence:
    """Test basic model persistence operations."""

    def test_save_network_creates_database(self, simple_network, temp_db_dir):
        """Test that saving a network creates the database file."""
        success = save_network(
            simple_network,
            "test_network_1",
            model_dir=temp_db_dir,
            trained=False
        )

        assert success is True
        assert os.path.exists(f"{temp_db_dir}/networks.db")

    def test_save_network_with_metadata(self, trained_network, temp_db_dir):
        """Test that network metadata is saved correctly."""
        network_id = "trained_network_1"

        success = save_network(
            trained_network,
            network_id,
            model_dir=temp_db_dir,
            activation='sigmoid',
            trained=True,
            loss=0.05
        )

        assert success is True

        metadata = get_network_metadata(network_id, temp_db_dir)
        assert metadata is not None
        assert metadata['network_id'] == network_id
        assert metadata['trained'] is True
        assert metadata['loss'] == 0.05
        assert metadata['activation'] == 'sigmoid'
        assert metadata['architecture'] == [3, 4, 2]
        assert metadata['topology'] == [[3, False], [4, False], [2, False]]

    def test_load_network_returns_network(self, simple_network, temp_db_dir):
        """Test that loading a network returns a valid Network object."""
        save_network(simple_network, "test_network_2", model_dir=temp_db_dir)
        loaded_network = load_network("test_network_2", temp_db_dir)

        assert loaded_network is not None
        assert isinstance(loaded_network, Network)
        assert loaded_network.topology == simple_network.topology

    def test_load_nonexistent_network(self, temp_db_dir):
        """Test that loading a non-existent network returns None."""
        assert load_network("nonexistent", temp_db_dir) is None

    def test_load_preserves_weights(self, trained_network, temp_db_dir):
        """Test that saved weights are preserved after loading."""
        save_network(trained_network, "test_network_3", model_dir=temp_db_dir)
        loaded_network = load_network("test_network_3", temp_db_dir)

        for original, loaded in zip(trained_network.layers, loaded_network.layers):
            assert np.array_equal(original.weights, loaded.weights)
            assert original.bias == loaded.bias

    def test_loaded_network_is_trainable(self, trained_network, temp_db_dir):
        """Test that a loaded network trains once functions are re-attached."""
        save_network(trained_network, "retrain", model_dir=temp_db_dir, activation='sigmoid')
        loaded = load_network("retrain", temp_db_dir)
        metadata = get_network_metadata("retrain", temp_db_dir)

        loaded.set_funcs(*get_activation(metadata['activation']))
        loaded.learning_ratio = 0.1
        loaded.init_learn()

        assert loaded.adjust_weights([0.1, 0.2, 0.3], [1.0, 0.0]) >= 0.0

    def test_corrupt_row_returns_none(self, simple_network, temp_db_dir):
        """Test that an unreadable document is reported as a failed load."""
        save_network(simple_network, "corrupt", model_dir=temp_db_dir)
        conn = sqlite3.connect(os.path.join(temp_db_dir, "networks.db"))
        conn.execute(
            "UPDATE networks SET network_data = '{\"layers\": []}' WHERE network_id = 'corrupt'"
        )
        conn.commit()
        conn.close()

        assert load_network("corrupt", temp_db_dir) is None

    def test_list_saved_networks_empty(self, temp_db_dir):
        """Test listing networks when database is empty."""
        assert list_saved_networks(temp_db_dir) == []

    def test_list_saved_networks(self, simple_network, temp_db_dir):
        """Test that listing networks returns correct metadata."""
        save_network(simple_network, "net1", model_dir=temp_db_dir, trained=True, loss=0.1)
        save_network(simple_network, "net2", model_dir=temp_db_dir, trained=False)

        networks = list_saved_networks(temp_db_dir)

        assert len(networks) == 2
        assert any(net['network_id'] == "net1" for net in networks)
        assert any(net['network_id'] == "net2" for net in networks)

    def test_list_saved_networks_includes_metadata(self, biased_network, temp_db_dir):
        """Test that listed networks include all expected metadata fields."""
        save_network(
            biased_network,
            "metadata_test",
            model_dir=temp_db_dir,
            activation='sigmoid',
            trained=True,
            loss=0.25
        )

        network = list_saved_networks(temp_db_dir)[0]

        assert network['network_id'] == "metadata_test"
        assert network['name'] == 'demo'
        assert network['architecture'] == [2, 3, 2]
        assert network['trained'] is True
        assert network['loss'] == 0.25
        assert network['weights_shape'] == [[3, 3], [4, 2], [2, 0]]
        assert 'created_at' in network
        assert 'updated_at' in network

    def test_delete_network_success(self, simple_network, temp_db_dir):
        """Test successful network deletion."""
        save_network(simple_network, "delete_test", model_dir=temp_db_dir)
        assert load_network("delete_test", temp_db_dir) is not None

        assert delete_network("delete_test", temp_db_dir) is True
        assert load_network("delete_test", temp_db_dir) is None

    def test_delete_nonexistent_network(self, temp_db_dir):
        """Test that deleting a non-existent network returns False."""
        ModelDatabase(db_path=f'{temp_db_dir}/networks.db')

        assert delete_network("nonexistent", temp_db_dir) is False

    def test_save_untrained_network(self, simple_network, temp_db_dir):
        """Test saving a network that hasn't been trained."""
        success = save_network(
            simple_network,
            "untrained_test",
            model_dir=temp_db_dir,
            trained=False,
            loss=None
        )

        assert success is True

        metadata = get_network_metadata("untrained_test", temp_db_dir)
        assert metadata['trained'] is False
        assert metadata['loss'] is None

    def test_negative_loss_rejected(self, simple_network, temp_db_dir):
        """Test that a negative loss is a validation error."""
        assert save_network(simple_network, "bad", model_dir=temp_db_dir, loss=-1.0) is False
        assert get_network_metadata("bad", temp_db_dir) is None

    def test_database_method_raises_on_negative_loss(self, simple_network, temp_db_dir):
        db = ModelDatabase(db_path=os.path.join(temp_db_dir, "networks.db"))

        with pytest.raises(ValueError):
            db.save_network_to_db(simple_network, "bad", loss=-0.5)

    @pytest.mark.parametrize('network_id', ['', None, 42])
    def test_invalid_network_id(self, simple_network, temp_db_dir, network_id):
        """Test that ids must be non-empty strings."""
        assert save_network(simple_network, network_id, model_dir=temp_db_dir) is False
        assert load_network(network_id, temp_db_dir) is None

    def test_update_network(self, simple_network, temp_db_dir):
        """Test that saving a network with the same ID updates it."""
        network_id = "update_test"

        save_network(simple_network, network_id, model_dir=temp_db_dir, trained=False)
        assert get_network_metadata(network_id, temp_db_dir)['trained'] is False

        save_network(
            simple_network,
            network_id,
            model_dir=temp_db_dir,
            trained=True,
            loss=0.12
        )

        metadata = get_network_metadata(network_id, temp_db_dir)
        assert metadata['trained'] is True
        assert metadata['loss'] == 0.12
        assert len(list_saved_networks(temp_db_dir)) == 1


@pytest.mark.integration
class TestPersistenceIntegration:
    """Integration tests for model persistence."""

    def test_save_load_train_cycle(self, simple_network, temp_db_dir):
        """Test complete cycle: save, load, train, save again."""
        network_id = "cycle_test"

        save_network(simple_network, network_id, model_dir=temp_db_dir, trained=False)

        loaded_network = load_network(network_id, temp_db_dir)
        loaded_network.set_funcs(*get_activation('tanh'))
        loaded_network.learning_ratio = 0.1
        loaded_network.init_learn()

        loss = None
        for _ in range(5):
            loss = loaded_network.adjust_weights([0.5, -0.5, 0.1], [0.2, -0.3])

        save_network(
            loaded_network,
            network_id,
            model_dir=temp_db_dir,
            activation='tanh',
            trained=True,
            loss=loss
        )

        final_network = load_network(network_id, temp_db_dir)
        metadata = get_network_metadata(network_id, temp_db_dir)

        assert final_network is not None
        assert metadata['trained'] is True
        assert metadata['loss'] == pytest.approx(loss)
        for trained, final in zip(loaded_network.layers, final_network.layers):
            assert np.array_equal(trained.weights, final.weights)

    def test_multiple_networks_coexist(self, temp_db_dir):
        """Test that multiple networks can coexist in the database."""
        networks_to_create = [
            ([784, 30, 10], "mnist_network"),
            ([3, 4, 2], "simple_network"),
            ([(10, True), (20, True), (20, True), 10], "deep_network")
        ]

        for topology, network_id in networks_to_create:
            save_network(Network(topology), network_id, model_dir=temp_db_dir)

        assert len(list_saved_networks(temp_db_dir)) == len(networks_to_create)

        for topology, network_id in networks_to_create:
            loaded = load_network(network_id, temp_db_dir)
            assert loaded is not None
            assert loaded.topology == Network(topology).topology

    def test_sequential_operations_safe(self, simple_network, temp_db_dir):
        """Test that the database handles many operations in a row."""
        network_ids = [f"concurrent_{i}" for i in range(5)]

        for network_id in network_ids:
            save_network(simple_network, network_id, model_dir=temp_db_dir)

        loaded_networks = [load_network(nid, temp_db_dir) for nid in network_ids]
        assert all(net is not None for net in loaded_networks)

        for network_id in network_ids:
            assert delete_network(network_id, temp_db_dir) is True

        assert len(list_saved_networks(temp_db_dir)) == 0


class TestDeleteOldNetworks:
    """Tests for automatic cleanup of old networks."""

    def test_delete_old_networks_basic(self, simple_network, temp_db_dir):
        """Test basic delete_old_networks functionality."""
        save_network(simple_network, "test_network", model_dir=temp_db_dir)
        age_network(temp_db_dir, "test_network", '-3 days')

        deleted_count = delete_old_networks(days=2, model_dir=temp_db_dir)

        assert deleted_count == 1
        assert load_network("test_network", temp_db_dir) is None

    def test_delete_old_networks_preserves_recent(self, simple_network, temp_db_dir):
        """Test that recent networks are not deleted."""
        save_network(simple_network, "recent_network", model_dir=temp_db_dir)

        deleted_count = delete_old_networks(days=2, model_dir=temp_db_dir)

        assert deleted_count == 0
        assert load_network("recent_network", temp_db_dir) is not None

    def test_delete_old_networks_mixed_ages(self, simple_network, temp_db_dir):
        """Test with a mix of old and recent networks."""
        old_ids = ["old_1", "old_2"]
        recent_ids = ["recent_1", "recent_2"]

        for network_id in old_ids + recent_ids:
            save_network(simple_network, network_id, model_dir=temp_db_dir)
        for network_id in old_ids:
            age_network(temp_db_dir, network_id, '-3 days')

        deleted_count = delete_old_networks(days=2, model_dir=temp_db_dir)

        assert deleted_count == len(old_ids)
        for network_id in old_ids:
            assert load_network(network_id, temp_db_dir) is None
        for network_id in recent_ids:
            assert load_network(network_id, temp_db_dir) is not None

    def test_resave_keeps_creation_time(self, simple_network, temp_db_dir):
        """Test that updating an old network does not reset its age."""
        save_network(simple_network, "old", model_dir=temp_db_dir)
        age_network(temp_db_dir, "old", '-5 days')

        save_network(simple_network, "old", model_dir=temp_db_dir, loss=0.1)

        assert delete_old_networks(days=2, model_dir=temp_db_dir) == 1

    def test_delete_old_networks_custom_days(self, simple_network, temp_db_dir):
        """Test delete_old_networks with different day thresholds."""
        save_network(simple_network, "test_network", model_dir=temp_db_dir)
        age_network(temp_db_dir, "test_network", '-5 days')

        assert delete_old_networks(days=7, model_dir=temp_db_dir) == 0
        assert load_network("test_network", temp_db_dir) is not None

        assert delete_old_networks(days=3, model_dir=temp_db_dir) == 1
        assert load_network("test_network", temp_db_dir) is None

    def test_delete_old_networks_empty_db(self, temp_db_dir):
        """Test delete_old_networks on empty database."""
        assert delete_old_networks(days=2, model_dir=temp_db_dir) == 0

    def test_delete_old_networks_negative_days(self, temp_db_dir):
        """Test that negative days raises ValueError."""
        with pytest.raises(ValueError) as exc_info:
            delete_old_networks(days=-1, model_dir=temp_db_dir)
        assert "non-negative" in str(exc_info.value)

    def test_delete_old_networks_zero_days(self, simple_network, temp_db_dir):
        """Test delete_old_networks with days=0."""
        save_network(simple_network, "test_network", model_dir=temp_db_dir)
        age_network(temp_db_dir, "test_network", '-1 hour')

        assert delete_old_networks(days=0, model_dir=temp_db_dir) == 1
        assert load_network("test_network", temp_db_dir) is None

    def test_model_database_delete_old_networks_method(self, temp_db_dir):
        """Test ModelDatabase.delete_old_networks_from_db directly."""
        db = ModelDatabase(db_path=os.path.join(temp_db_dir, "networks.db"))
        db.save_network_to_db(Network([3, 4, 2]), "test_network", trained=False)
        age_network(temp_db_dir, "test_network", '-3 days')

        assert db.delete_old_networks_from_db(days=2) == 1
        assert db.load_network_from_db("test_network") is None
