import re
from collections import Counter

import pandas as pd
import torch
from torch.utils.data import Dataset

from errors import DataUnavailable

PAD_ID = 0
SENTIMENTS = {"negative": 0, "positive": 1}

_break_re = re.compile(r"<br\s*/?>", re.IGNORECASE)


def tokenize(text):
    return _break_re.sub(" ", text).lower().split()                                             # Drop HTML line breaks, then split on whitespace


def build_vocab(texts, vocab_size):
    """
    Ranks tokens by frequency (ties by token) and keeps the ones whose rank is
    below vocab_size. Rank 1 is the most frequent token; 0 stays free for padding.
    """
    counter = Counter()
    for text in texts:
        counter.update(tokenize(text))
    ranked = sorted(counter.items(), key = lambda item: (-item[1], item[0]))
    ranked = ranked[:vocab_size - 1]
    return {token: rank for rank, (token, _) in enumerate(ranked, start = 1)}


def encode_text(text, vocab):
    return [vocab[token] for token in tokenize(text) if token in vocab]                         # Rare tokens are dropped, there is no unknown id


class IMDBDataset(Dataset):
    def __init__(self, sequences, labels, vocab, texts = None):
        if len(sequences) != len(labels):
            raise ValueError(f"{len(sequences)} sequences but {len(labels)} labels")
        self.sequences = [list(seq) for seq in sequences]
        self.labels = [int(label) for label in labels]
        self.vocab = vocab
        self.texts = list(texts) if texts is not None else None                                 # Raw reviews, kept for showing predictions

    @classmethod
    def from_texts(cls, texts, labels, vocab):
        return cls([encode_text(text, vocab) for text in texts], labels, vocab, texts = texts)

    def __len__(self):
        return len(self.sequences)

    def __getitem__(self, idx):
        return self.sequences[idx], self.labels[idx]


def read_reviews(path):
    try:
        df = pd.read_csv(path)
    except FileNotFoundError as exc:
        raise DataUnavailable(f"IMDB corpus not found at {path}") from exc
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
        raise DataUnavailable(f"IMDB corpus at {path} could not be parsed: {exc}") from exc

    missing = {"review", "sentiment"} - set(df.columns)
    if missing:
        raise DataUnavailable(f"IMDB corpus at {path} is missing columns {sorted(missing)}")
    if df["review"].isna().any():
        raise DataUnavailable(f"IMDB corpus at {path} has empty reviews")

    labels = df["sentiment"].map(SENTIMENTS)                                                    # Map 'positive' to 1 and 'negative' to 0
    if labels.isna().any():
        unknown = sorted(df.loc[labels.isna(), "sentiment"].astype(str).unique())
        raise DataUnavailable(f"IMDB corpus at {path} has unknown sentiments {unknown}")
    return df["review"].astype(str).tolist(), labels.astype(int).tolist()


def load_imdb(config, generator):
    """
    Reads the labelled reviews, splits them into disjoint train and test sets
    and encodes both with a vocabulary built from the training reviews only.
    """
    texts, labels = read_reviews(config.data_path)
    if len(texts) < 2:
        raise DataUnavailable(f"IMDB corpus at {config.data_path} has fewer than two reviews")

    order = torch.randperm(len(texts), generator = generator).tolist()                          # Shuffle with the caller's generator
    test_size = min(max(1, int(config.test_fraction * len(texts))), len(texts) - 1)
    train_idx, test_idx = order[test_size:], order[:test_size]

    train_texts = [texts[i] for i in train_idx]
    vocab = build_vocab(train_texts, config.vocab_size)
    train = IMDBDataset.from_texts(train_texts, [labels[i] for i in train_idx], vocab)
    test = IMDBDataset.from_texts([texts[i] for i in test_idx], [labels[i] for i in test_idx], vocab)
    return train, test


def pad_sequences(sequences, max_length, value = PAD_ID):
    """
    Left-pads short sequences with value and keeps only the last max_length
    tokens of long ones, so every row has exactly max_length entries.
    """
    if max_length <= 0:
        raise ValueError(f"max_length must be positive, got {max_length}")
    padded = torch.full((len(sequences), max_length), value, dtype = torch.long)
    for row, seq in enumerate(sequences):
        seq = [int(t) for t in seq][-max_length:]                                               # Truncate from the front, the most recent tokens survive
        if seq:
            padded[row, max_length - len(seq):] = torch.tensor(seq, dtype = torch.long)
    return padded


def make_collate_fn(max_length):
    def collate_fn(batch):
        sequences, labels = zip(*batch)                                                         # Separate sequences and labels from batch
        texts_padded = pad_sequences(sequences, max_length)
        labels = torch.tensor(labels, dtype = torch.float32)
        return texts_padded, labels
    return collate_fn


def to_tensors(dataset, max_length):
    """Pads a whole split at once, returning (LongTensor (N, L), FloatTensor (N,))."""
    return make_collate_fn(max_length)([dataset[i] for i in range(len(dataset))])
