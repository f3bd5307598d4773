import json
import logging

from pathlib import Path
from typing import Any, Dict, Optional

BASE = Path(__file__).parent.parent
CONFIG = BASE / "config"


def _read_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logging.error(f"Required: `{path.name}` in the `{path.parent}` directory.")
        raise FileNotFoundError(path)
    return json.loads(path.read_text())


def load_tax_tables(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Base-year tax tables. `null` bracket bounds stay None here; the tax
    calculator turns them into an unbounded top bracket.
    """
    return _read_json(path or CONFIG / "tax_tables.json")


def load_profile(path: Optional[Path] = None) -> Dict[str, Any]:
    return _read_json(path or CONFIG / "profile.json")
