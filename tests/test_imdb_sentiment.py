import torch

from config import ModelConfig, TrainingConfig
from imdb_sentiment import EXPERIMENTS, compare_gradient_flow, run_experiment


def test_experiments_build_valid_configs():
    for overrides in EXPERIMENTS.values():
        config = ModelConfig(**overrides)
        assert config.layer_specs()[-1].return_sequences is False


def test_run_experiment_reports_best_epoch(capsys):
    generator = torch.Generator().manual_seed(1)
    x = torch.randint(1, 50, (10, 8), generator = generator)
    y = torch.randint(0, 2, (10,), generator = generator)
    config = ModelConfig(vocab_size = 50, max_length = 8, embed_dim = 4, units = 4, kind = "lstm", num_layers = 2, dropout = 0.2, recurrent_dropout = 0.2)
    history = run_experiment("stacked_lstm", config, x, y, TrainingConfig(epochs = 2, verbose = False), 1, torch.device("cpu"))
    assert 1 <= len(history) <= 2
    assert "stacked_lstm: best epoch had a loss of" in capsys.readouterr().out


def test_gradient_flow_favours_lstm():
    ratios = compare_gradient_flow()
    assert ratios["lstm"] > ratios["simple"]
