import math

import torch
import torch.nn as nn
from torch.utils.data import DataLoader

from config import DataConfig, ModelConfig, RecurrentLayerSpec
from dataset import encode_text, load_imdb, make_collate_fn, pad_sequences
from errors import EmptyHistory
from model import build_model
from train import MODEL_PATH, evaluate, get_device

SENTIMENT_MAP = {0: "negative", 1: "positive"}                                                  # Map output to sentiment


def best_epoch(history):
    """Index and record of the epoch with the lowest validation loss, earliest on ties."""
    records = list(history)
    if not records:
        raise EmptyHistory("no epoch has completed, there is nothing to report")
    index = min(
        range(len(records)),
        key = lambda i: (math.isnan(records[i].val_loss), records[i].val_loss),                 # NaN losses rank last
    )
    return index, records[index]


def format_best_epoch(history):
    _, record = best_epoch(history)
    return (
        f"best epoch had a loss of {round(record.val_loss, 3)} "
        f"and an accuracy of {round(record.val_acc, 3)}"
    )


def evaluate_model(model, test_loader, device):
    loss, accuracy = evaluate(model, test_loader, nn.BCEWithLogitsLoss(), device)
    print(f"Test loss: {loss:.4f}, accuracy: {accuracy * 100:.2f}%")
    return loss, accuracy


def predict_text(model, vocab, text, device, max_length = 500):
    """
    Takes a raw string input, encodes it with the training vocabulary and
    returns the predicted sentiment with the probability of it being positive.
    """
    model.eval()
    token_ids = pad_sequences([encode_text(text, vocab)], max_length).to(device)
    with torch.no_grad():
        probability = model(token_ids).item()
    return SENTIMENT_MAP[int(probability >= 0.5)], probability


def visualize_predictions(model, dataset, device, max_length = 500, n = 5):                     # Visualize predictions during testing
    model.eval()
    collate_fn = make_collate_fn(max_length)
    with torch.no_grad():
        for i in range(min(n, len(dataset))):
            token_ids, true_label = collate_fn([dataset[i]])
            probability = model(token_ids.to(device)).item()
            pred_label = int(probability >= 0.5)

            if dataset.texts is not None:
                print(f"Text: {dataset.texts[i][:100]}...")
            print(f"True: {SENTIMENT_MAP[int(true_label.item())]}, Pred: {SENTIMENT_MAP[pred_label]} ({probability:.3f})\n")


def load_checkpoint(path, device):
    bundle = torch.load(path, map_location = device, weights_only = True)
    config = ModelConfig(**bundle["model_config"])
    layers = [RecurrentLayerSpec(**spec) for spec in bundle["layers"]]
    model = build_model(config, layers = layers).to(device)                                     # Rebuild the architecture, then load the weights
    model.load_state_dict(bundle["model_state_dict"])
    model.eval()
    return model, bundle["vocab"]


def main():
    device = get_device()
    data_config = DataConfig()
    generator = torch.Generator().manual_seed(data_config.seed)                                 # Same seed as training, so the same test split
    _, test_dataset = load_imdb(data_config, generator)

    model, vocab = load_checkpoint(MODEL_PATH, device)
    max_length = model.config.max_length
    print("Model loaded")

    test_loader = DataLoader(
        test_dataset,
        batch_size = 128,
        shuffle = False,
        collate_fn = make_collate_fn(max_length),
    )
    evaluate_model(model, test_loader, device)
    visualize_predictions(model, test_dataset, device, max_length)

    print("\nSentiment Prediction")
    print("Type a review or 'quit' to exit:")
    while True:
        try:
            user_input = input("Enter a review: ").strip()
        except EOFError:
            break
        if user_input.lower() in {"quit", "exit"}:
            print("Exiting interactive mode.")
            break
        if not user_input:
            continue
        sentiment, probability = predict_text(model, vocab, user_input, device, max_length)
        print(f"Predicted sentiment: {sentiment} (p(positive) = {probability:.3f})\n")


if __name__ == "__main__":
    main()
