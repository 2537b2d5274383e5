import pytest
import torch
from torch.utils.data import DataLoader

from config import ModelConfig
from dataset import IMDBDataset, make_collate_fn
from errors import EmptyHistory
from evaluate import best_epoch, evaluate_model, format_best_epoch, visualize_predictions
from model import build_model
from train import EpochRecord, History


def make_history(*val_losses, val_acc = 0.5):
    history = History()
    for loss in val_losses:
        history.append(EpochRecord(train_loss = 0.1, train_acc = 0.9, val_loss = loss, val_acc = val_acc))
    return history


def test_best_epoch_has_the_lowest_validation_loss():
    history = History()
    history.append(EpochRecord(0.6, 0.7, 0.5, 0.75))
    history.append(EpochRecord(0.4, 0.8, 0.3, 0.87654))
    history.append(EpochRecord(0.3, 0.9, 0.4, 0.85))
    index, record = best_epoch(history)
    assert index == 1
    assert format_best_epoch(history) == "best epoch had a loss of 0.3 and an accuracy of 0.877"


def test_ties_go_to_the_earliest_epoch():
    index, _ = best_epoch(make_history(0.5, 0.2, 0.2, 0.3))
    assert index == 1


def test_metrics_are_rounded_to_three_places():
    report = format_best_epoch(make_history(0.123456, val_acc = 0.98767))
    assert report == "best epoch had a loss of 0.123 and an accuracy of 0.988"


def test_nan_losses_are_never_best():
    index, _ = best_epoch(make_history(float("nan"), 0.9))
    assert index == 1


def test_empty_history_cannot_be_reported():
    with pytest.raises(EmptyHistory):
        format_best_epoch(History())


def test_evaluate_model_and_visualize_predictions(capsys):
    generator = torch.Generator().manual_seed(5)
    config = ModelConfig(vocab_size = 20, max_length = 6, embed_dim = 4, units = 4)
    model = build_model(config, generator)
    vocab = {"good": 1, "bad": 2, "film": 3}
    dataset = IMDBDataset.from_texts(["good film", "bad bad film", "film"], [1, 0, 1], vocab)
    loader = DataLoader(dataset, batch_size = 2, collate_fn = make_collate_fn(6))

    loss, accuracy = evaluate_model(model, loader, torch.device("cpu"))
    assert loss > 0.0
    assert accuracy in (0.0, 1 / 3, 2 / 3, 1.0)

    visualize_predictions(model, dataset, torch.device("cpu"), max_length = 6, n = 2)
    out = capsys.readouterr().out
    assert "Test loss:" in out
    assert out.count("True: ") == 2
    assert "Text: good film..." in out
