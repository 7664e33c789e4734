"""
Save and load models as self-describing JSON records.

Only the config and parameter values are stored; traces and gradient
accumulators are not. JSON float text is Python's shortest round-trip repr,
so a loaded model reproduces the saved model's outputs bit for bit.
"""
import json
import logging
import os
import tempfile
from pathlib import Path

import numpy as np

from .config import TRMConfig
from .errors import ConfigError, PersistenceError
from .model import TRMModel
from .network import Activation, Layer, Network

logger = logging.getLogger(__name__)

FORMAT = "tiny-trm"
VERSION = 1


def serialize(model: TRMModel) -> dict:
    return {
        "format": FORMAT,
        "version": VERSION,
        "config": model.config.to_dict(),
        "layers": [
            {
                "activation": layer.activation.value,
                "weights": layer.W.tolist(),
                "bias": layer.b.tolist(),
            }
            for layer in model.network.layers
        ],
    }


def _layer_from_record(i: int, rec) -> Layer:
    if not isinstance(rec, dict):
        raise PersistenceError(f"Layer {i} record must be a mapping")
    try:
        activation = Activation(rec["activation"])
        W = np.array(rec["weights"], dtype=float)
        b = np.array(rec["bias"], dtype=float)
    except KeyError as e:
        raise PersistenceError(f"Layer {i} is missing field {e}") from e
    except (ValueError, TypeError) as e:
        raise PersistenceError(f"Layer {i} is malformed: {e}") from e

    if W.ndim != 2 or b.ndim != 1 or b.shape[0] != W.shape[0]:
        raise PersistenceError(
            f"Layer {i} has inconsistent shapes: weights {W.shape}, bias {b.shape}"
        )
    if not (np.all(np.isfinite(W)) and np.all(np.isfinite(b))):
        raise PersistenceError(f"Layer {i} contains non-finite values")

    layer = Layer(W.shape[1], W.shape[0], activation, rng=np.random.default_rng(0))
    layer.W = W
    layer.b = b
    layer.dLdW = np.zeros_like(W)
    layer.dLdb = np.zeros_like(b)
    return layer


def deserialize(record) -> TRMModel:
    if not isinstance(record, dict):
        raise PersistenceError(f"Model record must be a mapping, got {type(record).__name__}")
    if record.get("format") != FORMAT:
        raise PersistenceError(f"Not a {FORMAT} record (format={record.get('format')!r})")
    if record.get("version") != VERSION:
        raise PersistenceError(
            f"Unsupported record version {record.get('version')!r}, expected {VERSION}"
        )
    try:
        config = TRMConfig.from_dict(record["config"])
    except KeyError as e:
        raise PersistenceError("Record has no config") from e
    except (ConfigError, TypeError, AttributeError) as e:
        raise PersistenceError(f"Record config is invalid: {e}") from e

    layers = record.get("layers")
    if not isinstance(layers, list) or len(layers) != config.layer_count:
        raise PersistenceError(
            f"Record must hold {config.layer_count} layers, got "
            f"{len(layers) if isinstance(layers, list) else type(layers).__name__}"
        )
    built = [_layer_from_record(i, rec) for i, rec in enumerate(layers)]
    for i, layer in enumerate(built):
        last = i == len(built) - 1
        expected = config.output_activation if last else config.hidden_activation
        if layer.activation.value != expected:
            raise PersistenceError(
                f"Layer {i} activation {layer.activation.value!r} does not match "
                f"the config's {'output' if last else 'hidden'}_activation {expected!r}"
            )
    try:
        network = Network(built)
        return TRMModel(config, network=network)
    except PersistenceError:
        raise
    except ValueError as e:
        # layer chain or network/config width mismatch
        raise PersistenceError(f"Record layers do not fit the config: {e}") from e


def dumps(model: TRMModel) -> str:
    return json.dumps(serialize(model))


def loads(text: str) -> TRMModel:
    try:
        record = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise PersistenceError(f"Model record is not valid JSON: {e}") from e
    return deserialize(record)


def save(model: TRMModel, path) -> Path:
    """Write the model atomically: temp file in the same directory, then rename."""
    path = Path(path)
    directory = path.parent if str(path.parent) else Path(".")
    directory.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=directory, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(dumps(model))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
    logger.info(f"Saved model ({model.num_parameters} parameters) to {path}")
    return path


def load(path) -> TRMModel:
    path = Path(path)
    with open(path) as f:
        try:
            text = f.read()
        except UnicodeDecodeError as e:
            raise PersistenceError(f"{path} is not a text model file: {e}") from e
    model = loads(text)
    logger.info(f"Loaded model ({model.num_parameters} parameters) from {path}")
    return model
