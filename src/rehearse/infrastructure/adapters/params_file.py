"""
ParameterSet stored as YAML or JSON.
"""

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from rehearse.domain.params import ParameterSet

from .history_file import HistoryFileError

logger = logging.getLogger(__name__)


def load_params(path: Path) -> ParameterSet:
    """
    Load a ParameterSet. The file may hold the full model or only a
    "weights" list / {"w0": ...} mapping.

    Raises:
        HistoryFileError: unreadable or unparsable file.
        InvariantViolation: parameters break a bound.
    """
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise HistoryFileError(f"Cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise HistoryFileError(f"Cannot parse {path}: {e}") from e

    if isinstance(data, list):
        data = {"weights": data}
    if not isinstance(data, dict):
        raise HistoryFileError(f"{path} must hold a mapping or a list of weights")
    try:
        return ParameterSet(**data)
    except ValidationError as e:
        raise HistoryFileError(f"Invalid parameters in {path}: {e}") from e


def dump_params(params: ParameterSet, path: Path) -> None:
    path = Path(path)
    data = params.model_dump(mode="json")
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, sort_keys=False)
    logger.info(f"Wrote parameters to {path}")
