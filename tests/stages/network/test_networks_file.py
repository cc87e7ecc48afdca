"""
test_networks_file.py - Networks file persistence

Tests:
- Save/load returns field-for-field equal networks and charts
- Chart keys survive the JSON string-key conversion
- Missing and malformed files
"""

import json

import pytest

from lnsim.network.models import AutoMineMode, Network, Status, node_from_dict
from lnsim.network.persistence import (
    NETWORKS_FILE_VERSION,
    NetworksFile,
    dump_networks,
    read_networks,
)


class TestNetworksFile:
    """Test networks file round trip."""

    def test_save_then_load_is_equal(self, network, tmp_path):
        network.auto_mine_mode = AutoMineMode.AUTO_1M
        network.lightning[0].status = Status.STARTED
        charts = {1: {'offset': {'x': 0, 'y': 0}, 'nodes': {'alice': {'x': 10}}}}
        original = NetworksFile(networks=[network], charts=charts)

        path = dump_networks(original, tmp_path / 'networks' / 'networks.json')
        loaded = read_networks(path)

        assert loaded == original
        assert loaded.charts[1] == charts[1]
        assert type(loaded.networks[0].tap[0]) is type(network.tap[0])

    def test_chart_keys_written_as_strings(self, network, tmp_path):
        path = dump_networks(NetworksFile(networks=[network], charts={1: {}}), tmp_path / 'n.json')

        with open(path) as f:
            data = json.load(f)

        assert data['version'] == NETWORKS_FILE_VERSION
        assert list(data['charts']) == ['1']
        assert data['networks'][0]['nodes']['tap'][0]['lndName'] == 'alice'

    def test_no_temp_file_left_behind(self, network, tmp_path):
        dump_networks(NetworksFile(networks=[network]), tmp_path / 'n.json')

        assert [p.name for p in tmp_path.iterdir()] == ['n.json']

    def test_missing_file_is_empty(self, tmp_path):
        loaded = read_networks(tmp_path / 'nothing.json')

        assert loaded.networks == []
        assert loaded.charts == {}
        assert loaded.version == NETWORKS_FILE_VERSION

    def test_invalid_json(self, tmp_path):
        path = tmp_path / 'n.json'
        path.write_text('{not json')

        with pytest.raises(ValueError, match="Invalid JSON"):
            read_networks(path)

    def test_missing_version(self):
        with pytest.raises(ValueError, match="version"):
            NetworksFile.from_dict({'networks': []})


class TestModels:
    """Test model dictionary forms."""

    def test_network_dict_round_trip(self, network):
        assert Network.from_dict(network.to_dict()) == network

    def test_unknown_node_kind(self, network):
        data = network.lightning[0].to_dict()
        data['kind'] = 'dragon'

        with pytest.raises(ValueError):
            node_from_dict(data)
