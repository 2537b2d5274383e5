import math
from dataclasses import asdict, dataclass, fields

import pandas as pd
import torch
import torch.nn as nn
from torch.utils.data import DataLoader, TensorDataset
from tqdm.auto import tqdm

from config import DataConfig, ModelConfig, TrainingConfig
from dataset import load_imdb, to_tensors
from errors import ConfigurationError
from model import build_model

MODEL_PATH = TrainingConfig().checkpoint_dir / "imdb_lstm_model.pth"


@dataclass(frozen = True)
class EpochRecord:
    train_loss: float
    train_acc: float
    val_loss: float
    val_acc: float


class History:
    """Per-epoch metrics, one record appended per completed epoch."""

    def __init__(self):
        self._records = []

    def append(self, record):
        self._records.append(record)

    @property
    def records(self):
        return tuple(self._records)

    def __len__(self):
        return len(self._records)

    def __iter__(self):
        return iter(self._records)

    def __getitem__(self, idx):
        return self._records[idx]

    def as_dict(self):
        return {
            "loss": [r.train_loss for r in self._records],
            "accuracy": [r.train_acc for r in self._records],
            "val_loss": [r.val_loss for r in self._records],
            "val_accuracy": [r.val_acc for r in self._records],
        }

    def to_frame(self):
        columns = [f.name for f in fields(EpochRecord)]
        frame = pd.DataFrame([asdict(r) for r in self._records], columns = columns)
        frame.index.name = "epoch"
        return frame


class EarlyStopping:
    def __init__(self, patience):
        self.patience = patience
        self.best_loss = math.inf
        self.best_epoch = None
        self.epoch = -1
        self.wait = 0                                                                           # Epochs since the last improvement

    def step(self, val_loss):
        """Records one epoch's validation loss and returns True once training should stop."""
        self.epoch += 1
        if val_loss < self.best_loss:                                                           # NaN never counts as an improvement
            self.best_loss = val_loss
            self.best_epoch = self.epoch
            self.wait = 0
            return False
        self.wait += 1
        return self.wait >= self.patience


def get_device():
    if torch.cuda.is_available():
        device = torch.device("cuda")                                                           # Use GPU if available
        print(f"CUDA device name: {torch.cuda.get_device_name(torch.cuda.current_device())}")
    elif torch.backends.mps.is_available():
        device = torch.device("mps")                                                            # Use MPS if CUDA not available
    else:
        device = torch.device("cpu")                                                            # Otherwise, CPU
    return device


def split_validation(x, y, fraction):
    """Holds out the last `fraction` of the rows, without shuffling."""
    n = len(x)
    split_at = int(n * (1.0 - fraction))
    if split_at == 0 or split_at == n:
        raise ConfigurationError(
            f"validation split {fraction} of {n} examples leaves no training or no validation data"
        )
    return (x[:split_at], y[:split_at]), (x[split_at:], y[split_at:])


def train_one_epoch(model, loader, optimizer, cost_function, device, desc = None, verbose = True):
    model.train()                                                                               # Set model to training mode, dropout masks on
    loop = tqdm(loader, desc = desc, disable = not verbose)                                     # Progress bar for each epoch
    total_cost, correct, total = 0.0, 0, 0
    for texts, labels in loop:
        texts, labels = texts.to(device), labels.to(device)                                     # Move batch to specified device
        optimizer.zero_grad()
        logits = model.logits(texts)
        cost = cost_function(logits, labels)
        cost.backward()
        optimizer.step()
        total_cost += cost.item() * labels.size(0)
        correct += ((logits >= 0).float() == labels).sum().item()
        total += labels.size(0)
        loop.set_postfix(cost = cost.item())                                                    # Show current batch loss in progress bar
    return total_cost / total, correct / total


def evaluate(model, loader, cost_function, device):
    model.eval()
    total_cost, correct, total = 0.0, 0, 0
    with torch.no_grad():
        for texts, labels in loader:
            texts, labels = texts.to(device), labels.to(device)
            logits = model.logits(texts)
            total_cost += cost_function(logits, labels).item() * labels.size(0)
            correct += ((logits >= 0).float() == labels).sum().item()
            total += labels.size(0)
    return total_cost / total, correct / total


def save_checkpoint(model, path, vocab = None):
    bundle = {
        "model_state_dict": model.state_dict(),                                                 # Weights and biases
        "model_config": model.config.model_dump(),
        "layers": [spec.model_dump() for spec in model.layer_specs],
        "vocab": vocab,
    }
    torch.save(bundle, path)


def train_model(model, x, y, config, generator = None, device = None, checkpoint_path = None, vocab = None):
    """
    Mini-batch training on the first (1 - validation_split) rows of x, scored on
    the rest after every epoch. Stops after `patience` epochs without a lower
    validation loss. The model keeps its last-epoch parameters; when
    checkpoint_path is set, the best-validation parameters are also saved there.
    """
    device = device or torch.device("cpu")
    (x_train, y_train), (x_val, y_val) = split_validation(x, y.float(), config.validation_split)
    train_loader = DataLoader(
        TensorDataset(x_train, y_train),
        batch_size = config.batch_size,
        shuffle = True,
        generator = generator,
    )
    val_loader = DataLoader(TensorDataset(x_val, y_val), batch_size = config.batch_size)

    model.to(device)
    cost_function = nn.BCEWithLogitsLoss()                                                      # Binary cross-entropy on the logit, NaN passes through
    optimizer = torch.optim.Adam(model.parameters(), lr = config.lr)
    stopper = EarlyStopping(config.patience)
    history = History()

    for epoch in range(config.epochs):
        train_loss, train_acc = train_one_epoch(
            model,
            train_loader,
            optimizer,
            cost_function,
            device,
            desc = f"Epoch {epoch + 1}",
            verbose = config.verbose,
        )
        val_loss, val_acc = evaluate(model, val_loader, cost_function, device)
        history.append(EpochRecord(train_loss, train_acc, val_loss, val_acc))
        if config.verbose:
            print(
                f"Epoch {epoch + 1}/{config.epochs} loss={train_loss:.4f} accuracy={train_acc:.4f} "
                f"val_loss={val_loss:.4f} val_accuracy={val_acc:.4f}"
            )

        stop = stopper.step(val_loss)
        if checkpoint_path is not None and stopper.best_epoch == epoch:
            save_checkpoint(model, checkpoint_path, vocab)
            if config.verbose:
                print(f"Model saved to {checkpoint_path}")
        if stop:
            if config.verbose and stopper.best_epoch is None:
                print(f"Early stopping at epoch {epoch + 1}, no epoch improved the validation loss")
            elif config.verbose:
                print(f"Early stopping at epoch {epoch + 1}, best was epoch {stopper.best_epoch + 1}")
            break

    return history


def main():
    from evaluate import format_best_epoch

    data_config = DataConfig()
    model_config = ModelConfig(vocab_size = data_config.vocab_size)
    training_config = TrainingConfig()
    generator = torch.Generator().manual_seed(data_config.seed)                                 # One seeded generator for split, weights, dropout and shuffling

    device = get_device()
    print(f"Using device: {device}")

    train_dataset, _ = load_imdb(data_config, generator)
    x_train, y_train = to_tensors(train_dataset, model_config.max_length)

    model = build_model(model_config, generator).to(device)
    training_config.checkpoint_dir.mkdir(parents = True, exist_ok = True)
    history = train_model(
        model,
        x_train,
        y_train,
        training_config,
        generator = generator,
        device = device,
        checkpoint_path = MODEL_PATH,
        vocab = train_dataset.vocab,
    )
    history.to_frame().to_csv(training_config.checkpoint_dir / "history.csv")
    print(format_best_epoch(history))


if __name__ == "__main__":
    main()
