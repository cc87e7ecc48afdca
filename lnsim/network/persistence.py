"""
persistence.py - Networks file codec

The networks file is a versioned JSON document holding every network and
its chart layout:

    {
      "version": "1.0.0",
      "networks": [ {...network...} ],
      "charts": { "1": {...opaque chart...} }
    }

Chart layouts are opaque to the core: they are stored and returned
untouched. JSON object keys are strings, so chart keys are converted back
to network ids on load.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from lnsim.network.models import Network

NETWORKS_FILE_VERSION = "1.0.0"


@dataclass
class NetworksFile:
    """Persisted topology: networks plus their chart layouts."""
    version: str = NETWORKS_FILE_VERSION
    networks: List[Network] = field(default_factory=list)
    charts: Dict[int, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': self.version,
            'networks': [n.to_dict() for n in self.networks],
            'charts': {str(k): v for k, v in self.charts.items()},
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'NetworksFile':
        if not isinstance(data, dict):
            raise ValueError(f"Networks file must contain a JSON object, got {type(data)}")
        if 'version' not in data:
            raise ValueError("Missing required field: version")

        return NetworksFile(
            version=str(data['version']),
            networks=[Network.from_dict(n) for n in data.get('networks', [])],
            charts={int(k): v for k, v in (data.get('charts') or {}).items()},
        )


def dump_networks(networks_file: NetworksFile, path) -> Path:
    """
    Write a networks file.

    The file is written to a temporary sibling first and then renamed, so
    a crash never leaves a truncated file behind.

    Returns:
        Path written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path = path.with_suffix(path.suffix + '.tmp')
    with open(tmp_path, 'w') as f:
        json.dump(networks_file.to_dict(), f, indent=2)
    tmp_path.replace(path)
    return path


def read_networks(path) -> NetworksFile:
    """
    Read a networks file.

    A missing file yields an empty NetworksFile.

    Raises:
        ValueError: If the file content is invalid
    """
    path = Path(path)
    if not path.exists():
        return NetworksFile()

    with open(path, 'r') as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in networks file {path}: {e}")

    return NetworksFile.from_dict(data)
