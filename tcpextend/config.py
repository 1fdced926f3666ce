# tcpextend/config.py
from __future__ import annotations

import dataclasses
import functools
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from .state import ExplicitRoles, FirstSeenRoles, PortHeuristicRoles

ROLE_MODES = ("first-seen", "port", "explicit")
OUTPUT_FORMATS = ("csv", "jsonl", "text")


@dataclass
class Config:
    """
    Example YAML:

        roles: port
        server_ports: [80, 443, 8080]
        relative_seq: true
        output_format: csv
        only_flagged: false
        log_level: INFO
        log_dir: logs
        client_ports:        # only used with roles: explicit
          0: 51234
    """
    roles: str = "first-seen"
    server_ports: List[int] = field(default_factory=list)
    client_ports: Dict[Any, int] = field(default_factory=dict)
    relative_seq: bool = True
    output_format: str = "csv"
    only_flagged: bool = False
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    def validate(self) -> "Config":
        if self.roles not in ROLE_MODES:
            raise ValueError(f"roles must be one of {ROLE_MODES}, got {self.roles!r}")
        if self.output_format not in OUTPUT_FORMATS:
            raise ValueError(f"output_format must be one of {OUTPUT_FORMATS}, got {self.output_format!r}")
        for p in self.server_ports:
            if not 0 <= int(p) <= 65535:
                raise ValueError(f"server port out of range: {p}")
        if self.roles == "explicit" and not self.client_ports:
            raise ValueError("roles: explicit requires a client_ports mapping")
        return self

    def build_roles(self):
        if self.roles == "port":
            return PortHeuristicRoles(self.server_ports)
        if self.roles == "explicit":
            return ExplicitRoles(self.client_ports)
        return FirstSeenRoles()


@functools.lru_cache(maxsize=32)
def _load_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_config(path: Optional[str] = None, **overrides) -> Config:
    """Read a YAML config (optional) and apply non-None overrides on top."""
    doc = dict(_load_yaml(path)) if path else {}
    if not isinstance(doc, dict):
        raise ValueError(f"Config {path} must be a mapping")
    known = {f.name for f in dataclasses.fields(Config)}
    unknown = set(doc) - known
    if unknown:
        raise ValueError(f"Unknown config keys in {path}: {sorted(unknown)}")
    doc.update({k: v for k, v in overrides.items() if v is not None})
    doc["server_ports"] = [int(p) for p in doc.get("server_ports") or []]
    doc["client_ports"] = {k: int(v) for k, v in (doc.get("client_ports") or {}).items()}
    return Config(**doc).validate()
