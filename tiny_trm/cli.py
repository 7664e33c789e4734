"""
Command line entry point.

    tiny-trm train --task copy --dim 5 --epochs 1000 --lr 0.01 --output model.trm
    tiny-trm eval --model model.trm --input 0.1,0.2,0.3,0.4,0.5
"""
import argparse
import logging
import sys
from dataclasses import replace
from datetime import datetime

import numpy as np

from . import persistence
from .config import TRMConfig, TrainingConfig, load_config
from .errors import TRMError
from .model import TRMModel
from .tasks import make_task
from .trainer import Trainer, accuracy, evaluate

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tiny-trm", description="Tiny Recursive Model training and inference"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    train = sub.add_parser("train", help="Train a TRM model")
    train.add_argument("--config", type=str, default=None, help="YAML config file")
    train.add_argument("-l", "--layers", type=int, default=None, help="layers in the shared network")
    train.add_argument("--h-cycles", type=int, default=None, help="outer cycles (H)")
    train.add_argument("--l-cycles", type=int, default=None, help="think steps per cycle (L)")
    train.add_argument("--hidden-dim", type=int, default=None)
    train.add_argument("--latent-dim", type=int, default=None)
    train.add_argument("--task", choices=["copy", "sequence"], default="copy")
    train.add_argument("--dim", type=int, default=5, help="vector size (copy) or sequence length")
    train.add_argument("--examples", type=int, default=100)
    train.add_argument("--lr", type=float, default=None)
    train.add_argument("-e", "--epochs", type=int, default=None)
    train.add_argument("--loss", choices=["mse", "mae"], default=None)
    train.add_argument("--seed", type=int, default=42)
    train.add_argument("-o", "--output", type=str, default="model.trm")
    train.add_argument("--plot", action="store_true", help="save loss/prediction plots to outputs/")

    ev = sub.add_parser("eval", help="Evaluate a trained model")
    ev.add_argument("-m", "--model", type=str, required=True)
    ev.add_argument("-i", "--input", type=str, default=None, help="comma separated input vector")
    ev.add_argument("--task", choices=["copy", "sequence"], default="copy")
    ev.add_argument("--examples", type=int, default=20)
    ev.add_argument("--loss", choices=["mse", "mae"], default="mse")
    ev.add_argument("--tolerance", type=float, default=0.1)
    ev.add_argument("--seed", type=int, default=7)
    return parser


def _overrides(args, names) -> dict:
    return {field: getattr(args, arg) for arg, field in names.items() if getattr(args, arg) is not None}


def cmd_train(args) -> int:
    if args.config:
        model_cfg, train_cfg = load_config(args.config)
    else:
        model_cfg, train_cfg = TRMConfig(), TrainingConfig()

    task = make_task(args.task, args.examples, args.dim, seed=args.seed)
    model_over = {"input_dim": task.input_dim, "output_dim": task.output_dim}
    if args.task == "sequence" and not args.config:
        # next-term targets are unbounded, tanh cannot reach them
        model_over["output_activation"] = "identity"
    model_over.update(
        _overrides(
            args,
            {"layers": "layer_count", "h_cycles": "h_cycles", "l_cycles": "l_cycles",
             "hidden_dim": "hidden_dim", "latent_dim": "latent_dim"},
        )
    )
    model_cfg = replace(model_cfg, **model_over)
    train_cfg = replace(train_cfg, **_overrides(args, {"lr": "learning_rate", "epochs": "epochs", "loss": "loss"}))

    model = TRMModel(model_cfg, seed=args.seed)
    train_set, val_set = task.split(0.8)

    run_name = None
    if args.plot:
        from .plotting import new_run_name

        run_name = new_run_name()

    print("Training TRM model...")
    print(f"  Layers: {model_cfg.layer_count}")
    print(f"  H-cycles: {model_cfg.h_cycles}")
    print(f"  L-cycles: {model_cfg.l_cycles}")
    print(f"  Learning rate: {train_cfg.learning_rate}")
    print(f"  Epochs: {train_cfg.epochs}")
    print(f"  Parameters: {model.num_parameters}")
    print(f"  Network: {model.network.equation}")

    trainer = Trainer(model, train_cfg, run_name=run_name)
    metrics = trainer.train(train_set, val_set)

    val_loss = trainer.evaluate(val_set)
    val_acc = trainer.accuracy(val_set)
    print("=== After training ===")
    print(f"initial loss:        {metrics.initial_loss:.6f}")
    print(f"final loss:          {metrics.final_loss:.6f}")
    print(f"validation loss:     {val_loss:.6f}")
    print(f"validation accuracy: {val_acc:.1%}")

    persistence.save(model, args.output)
    print(f"model saved to {args.output}")

    if args.plot:
        from .plotting import plot_losses, plot_path, plot_prediction

        run_ts = datetime.now().strftime("%m_%d_%Y_%H_%M_%S")
        x0, t0 = val_set[0]
        loss_png = plot_path(run_name, "loss", run_ts=run_ts)
        pred_png = plot_path(run_name, "predictions", run_ts=run_ts)
        print(f"saved {plot_losses(metrics, loss_png)}")
        print(f"saved {plot_prediction(model.forward(x0, record=False), t0, pred_png)}")
    return 0


def cmd_eval(args) -> int:
    model = persistence.load(args.model)
    cfg = model.config
    print(f"Evaluating model: {args.model} ({model.num_parameters} parameters)")

    if args.input is not None:
        try:
            x = np.array([float(v) for v in args.input.split(",")])
        except ValueError as e:
            raise TRMError(f"Could not parse --input: {e}") from e
        y = model.forward(x, record=False)
        print("output: " + ",".join(f"{v:.6f}" for v in y))
        return 0

    task = make_task(args.task, args.examples, cfg.input_dim, seed=args.seed)
    if task.output_dim != cfg.output_dim:
        raise TRMError(
            f"Task '{args.task}' produces {task.output_dim}-dim targets, model outputs {cfg.output_dim}"
        )
    examples = task.examples()
    print(f"loss ({args.loss}): {evaluate(model, examples, args.loss):.6f}")
    print(f"accuracy (tol {args.tolerance}): {accuracy(model, examples, args.tolerance):.1%}")
    return 0


def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        format="%(asctime)s - %(levelname)s - %(name)s -   %(message)s",
        datefmt="%m/%d/%Y %H:%M:%S",
        level=logging.DEBUG if args.verbose else logging.INFO,
    )
    try:
        if args.command == "train":
            return cmd_train(args)
        return cmd_eval(args)
    except (TRMError, OSError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
