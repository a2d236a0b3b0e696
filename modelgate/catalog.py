"""
Datasource catalog.

Datasources are declared in YAML:

    datasources:
      - id: warehouse
        name: Sales Warehouse
        engine: duckdb
        dialect: duckdb
        config:
          database: ./warehouse.duckdb
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml

logger = logging.getLogger(__name__)


def load_catalog(path: Union[str, Path]) -> dict:
    path = Path(path)
    if not path.exists():
        logger.warning(f"Datasource catalog not found: {path}")
        return {"datasources": []}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {"datasources": []}


def get_datasource_defs(catalog: dict) -> List[Dict[str, Any]]:
    defs = []
    for d in catalog.get("datasources", []) or []:
        if "id" not in d:
            raise ValueError(f"Datasource entry without id: {d}")
        defs.append(d)
    return defs
