"""
Workshop run: trains a simple RNN, an LSTM and a stacked LSTM with dropout on
the IMDB reviews and reports the best epoch of each, then shows how the
gradient reaching the first timestep differs between the two cell kinds.
"""

import torch

from config import DataConfig, ModelConfig, RecurrentLayerSpec, TrainingConfig
from dataset import load_imdb, to_tensors
from evaluate import format_best_epoch
from model import RecurrentLayer, build_model, timestep_gradient_norms
from train import get_device, train_model

EXPERIMENTS = {
    "simple_rnn": dict(kind = "simple"),
    "lstm": dict(kind = "lstm"),
    "stacked_lstm": dict(kind = "lstm", num_layers = 2, dropout = 0.2, recurrent_dropout = 0.2),
}


def run_experiment(name, model_config, x_train, y_train, training_config, seed, device):
    generator = torch.Generator().manual_seed(seed)                                             # Each model starts from the same seed
    model = build_model(model_config, generator).to(device)
    history = train_model(model, x_train, y_train, training_config, generator = generator, device = device)
    print(f"{name}: {format_best_epoch(history)}")
    return history


def compare_gradient_flow(steps = 50, input_dim = 8, units = 16, scale = 3.0, seed = 0):
    """Ratio of the gradient norm at the first timestep to the one at the last, per cell kind."""
    generator = torch.Generator().manual_seed(seed)
    inputs = scale * torch.randn(4, steps, input_dim, generator = generator)
    ratios = {}
    for kind in ("simple", "lstm"):
        layer = RecurrentLayer(input_dim, RecurrentLayerSpec(kind = kind, units = units), generator)
        norms = timestep_gradient_norms(layer, inputs)
        ratios[kind] = (norms[0] / norms[-1]).item()
        print(f"{kind}: gradient at timestep 0 is {ratios[kind]:.2e} of the gradient at timestep {steps - 1}")
    return ratios


def main():
    device = get_device()
    print(f"Using device: {device}")

    data_config = DataConfig()
    training_config = TrainingConfig()
    generator = torch.Generator().manual_seed(data_config.seed)
    train_dataset, _ = load_imdb(data_config, generator)

    histories = {}
    for name, overrides in EXPERIMENTS.items():
        model_config = ModelConfig(vocab_size = data_config.vocab_size, **overrides)
        x_train, y_train = to_tensors(train_dataset, model_config.max_length)
        histories[name] = run_experiment(
            name,
            model_config,
            x_train,
            y_train,
            training_config,
            data_config.seed,
            device,
        )

    compare_gradient_flow()
    return histories


if __name__ == "__main__":
    main()
