"""
Tiny Recursive Model (TRM): a small shared network that reasons by iteration
(think/act cycles) rather than depth, trained with hand-written backprop.
"""
from .api import evaluate, forward, new, train_one_example
from .config import TRMConfig, TrainingConfig, load_config
from .errors import ConfigError, DimensionMismatchError, NotReadyError, PersistenceError, TRMError
from .loss import LossKind, MeanAbsoluteLoss, MeanSquaredLoss, make_loss
from .model import Invocation, StateGradient, Step, TRMModel
from .network import Activation, Layer, Network
from .persistence import deserialize, load, save, serialize
from .trainer import Trainer, TrainingMetrics, accuracy

__version__ = "0.1.0"
