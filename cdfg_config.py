#!/usr/bin/env python3
"""
CDFG Generation Settings

Settings are plain defaults that can be overridden from a JSON file:

    {
        "output_file": "CDFG_BB.dot",
        "graph_title": "CDFG for Module",
        "cluster_order": "name",
        "data_flow_color": "red"
    }

Unknown keys are ignored. Command line flags override values from the file.
"""

import json
from dataclasses import dataclass, asdict, fields
from typing import Dict, Optional, Any


DEFAULT_OUTPUT_FILE = "CDFG_BB.dot"
DEFAULT_GRAPH_TITLE = "CDFG for Module"

# Clusters in module order, or sorted by function name
CLUSTER_ORDERS = ('module', 'name')


@dataclass
class CDFGConfig:
    """Settings for building and writing one CDFG."""
    output_file: str = DEFAULT_OUTPUT_FILE
    graph_title: str = DEFAULT_GRAPH_TITLE
    node_shape: str = "record"
    control_flow_color: str = "black"
    data_flow_color: str = "red"
    cluster_order: str = "module"
    synthetic_label_prefix: str = "BB_"
    synthetic_label_start: int = 0
    render_format: Optional[str] = None   # e.g. "svg"; None disables rendering

    def __post_init__(self):
        if self.cluster_order not in CLUSTER_ORDERS:
            raise ValueError(
                f"Invalid cluster_order '{self.cluster_order}'. "
                f"Expected one of: {', '.join(CLUSTER_ORDERS)}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CDFGConfig':
        """Create a config from a parsed JSON dictionary."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def with_overrides(self, **overrides) -> 'CDFGConfig':
        """Return a copy with every non-None override applied."""
        data = self.to_dict()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return CDFGConfig.from_dict(data)


def load_cdfg_config(json_path: Optional[str] = None) -> CDFGConfig:
    """
    Load settings from a JSON file.

    Args:
        json_path: Path to JSON file. If None, returns the defaults.

    Raises:
        FileNotFoundError: If JSON file doesn't exist.
        json.JSONDecodeError: If JSON is malformed.
        ValueError: If a setting has an invalid value.
    """
    if json_path is None:
        return CDFGConfig()

    with open(json_path, 'r') as f:
        data = json.load(f)

    return CDFGConfig.from_dict(data)
