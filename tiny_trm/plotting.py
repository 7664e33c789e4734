import os
from datetime import datetime

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import petname

OUTPUT_DIR = "outputs"


def new_run_name() -> str:
    return petname.Generate(2, "_")


def plot_path(run_name: str, plot_type: str, output_dir: str = OUTPUT_DIR, run_ts: str = None) -> str:
    """outputs/[timestamp]_[run name]_[plot type].png"""
    run_ts = run_ts or datetime.now().strftime("%m_%d_%Y_%H_%M_%S")
    os.makedirs(output_dir, exist_ok=True)
    return os.path.join(output_dir, f"{run_ts}_{run_name}_{plot_type}.png")


def plot_losses(metrics, path: str) -> str:
    """Train loss per epoch (epoch 0 = before training) plus validation points."""
    plt.figure(figsize=(8, 5))
    plt.plot(range(len(metrics.losses)), metrics.losses, label="Train loss")
    if metrics.val_losses:
        epochs, values = zip(*metrics.val_losses)
        # val entries are recorded after the epoch finishes
        plt.plot([e + 1 for e in epochs], values, "o-", markersize=3, label="Validation loss")
    plt.xlabel("Epoch")
    plt.ylabel("Loss")
    plt.title("Train and validation loss")
    plt.legend()
    plt.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.savefig(path, dpi=150, bbox_inches="tight")
    plt.close()
    return path


def plot_prediction(prediction, target, path: str) -> str:
    """Ground truth vs prediction bars, and residuals."""
    prediction = np.ravel(prediction)
    target = np.ravel(target)
    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(10, 5))
    x_pos = np.arange(len(target))
    width = 0.35
    ax1.bar(x_pos - width / 2, target, width, label="Ground truth", color="steelblue")
    ax1.bar(x_pos + width / 2, prediction, width, label="Predicted", color="coral", alpha=0.9)
    ax1.set_xlabel("Output index")
    ax1.set_ylabel("Value")
    ax1.set_title("Ground truth vs predicted")
    ax1.set_xticks(x_pos)
    ax1.legend()
    ax1.grid(True, alpha=0.3, axis="y")

    ax2.bar(x_pos, target - prediction, color="gray", alpha=0.8)
    ax2.axhline(0, color="k", linewidth=0.5)
    ax2.set_xlabel("Output index")
    ax2.set_ylabel("target - prediction")
    ax2.set_title("Residuals\nTarget - Predicted")
    ax2.set_xticks(x_pos)
    ax2.grid(True, alpha=0.3, axis="y")
    plt.tight_layout()
    fig.savefig(path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    return path
