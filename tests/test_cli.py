import numpy as np

import tiny_trm
from tiny_trm import persistence
from tiny_trm.cli import main

SMALL = ["--dim", "3", "--examples", "10", "--hidden-dim", "4", "--latent-dim", "3",
         "--h-cycles", "1", "--l-cycles", "1", "--epochs", "2"]


def test_train_then_eval(tmp_path, capsys):
    path = tmp_path / "model.trm"
    assert main(["train", *SMALL, "-o", str(path)]) == 0
    assert path.exists()
    out = capsys.readouterr().out
    assert "final loss" in out
    assert "validation accuracy" in out

    model = persistence.load(path)
    assert model.config.input_dim == 3
    assert model.config.h_cycles == 1

    assert main(["eval", "-m", str(path), "--input", "0.1,0.2,0.3"]) == 0
    line = [l for l in capsys.readouterr().out.splitlines() if l.startswith("output:")][0]
    values = np.array([float(v) for v in line.split(":")[1].split(",")])
    np.testing.assert_allclose(values, model.forward([0.1, 0.2, 0.3]), atol=1e-6)

    assert main(["eval", "-m", str(path), "--examples", "5"]) == 0
    assert "accuracy" in capsys.readouterr().out


def test_train_sequence_task(tmp_path):
    path = tmp_path / "seq.trm"
    assert main(["train", *SMALL, "--task", "sequence", "-o", str(path)]) == 0
    model = persistence.load(path)
    assert model.config.output_dim == 1
    assert model.config.output_activation == "identity"


def test_train_from_yaml_config(tmp_path):
    cfg = tmp_path / "run.yaml"
    cfg.write_text("model:\n  hidden_dim: 5\n  latent_dim: 2\n  h_cycles: 1\n  l_cycles: 2\ntraining:\n  epochs: 1\n")
    path = tmp_path / "model.trm"
    assert main(["train", "--config", str(cfg), "--dim", "3", "--examples", "10", "-o", str(path)]) == 0
    model = persistence.load(path)
    assert (model.config.hidden_dim, model.config.l_cycles) == (5, 2)


def test_train_with_plots(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert main(["train", *SMALL, "--plot", "-o", "model.trm"]) == 0
    plots = sorted(p.name for p in (tmp_path / "outputs").iterdir())
    assert len(plots) == 2
    assert plots[0].endswith("_loss.png")
    assert plots[1].endswith("_predictions.png")


def test_eval_missing_model(tmp_path):
    assert main(["eval", "-m", str(tmp_path / "missing.trm")]) == 1


def test_eval_wrong_input_size(tmp_path):
    path = tmp_path / "model.trm"
    main(["train", *SMALL, "-o", str(path)])
    assert main(["eval", "-m", str(path), "--input", "0.1,0.2"]) == 1


def test_eval_corrupt_model(tmp_path):
    path = tmp_path / "model.trm"
    path.write_text('{"format": "tiny-trm", "version": 7}')
    assert main(["eval", "-m", str(path)]) == 1


def test_invalid_config_flag(tmp_path):
    assert main(["train", *SMALL, "--h-cycles", "0", "-o", str(tmp_path / "m.trm")]) == 1


def test_too_few_examples_to_split(tmp_path):
    args = ["train", "--dim", "3", "--examples", "1", "--epochs", "1"]
    assert main([*args, "-o", str(tmp_path / "m.trm")]) == 1
    assert not (tmp_path / "m.trm").exists()


def test_api_surface():
    config = tiny_trm.TRMConfig(input_dim=2, output_dim=2, hidden_dim=4, latent_dim=2, h_cycles=1, l_cycles=2)
    model = tiny_trm.new(config, seed=0)
    x, t = np.array([0.3, 0.6]), np.array([0.3, 0.6])
    out = tiny_trm.forward(model, x)
    assert out.shape == (2,)
    before = tiny_trm.evaluate(model, [(x, t)])
    loss = tiny_trm.train_one_example(model, x, t, 0.05)
    assert loss == before
    assert tiny_trm.evaluate(model, [(x, t)]) < before
