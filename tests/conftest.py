import pandas as pd
import pytest
import torch

REVIEWS = [
    ("a great film with a great cast", "positive"),
    ("terrible plot and terrible acting", "negative"),
    ("great fun<br /><br />loved it", "positive"),
    ("boring and far too long", "negative"),
    ("the cast was great and the plot was fun", "positive"),
    ("a boring terrible mess", "negative"),
    ("loved the acting", "positive"),
    ("too long and too boring", "negative"),
    ("fun fun fun", "positive"),
    ("the worst film this year", "negative"),
]


@pytest.fixture
def imdb_csv(tmp_path):
    path = tmp_path / "IMDB Dataset.csv"
    pd.DataFrame(REVIEWS, columns = ["review", "sentiment"]).to_csv(path, index = False)
    return path


@pytest.fixture
def generator():
    return torch.Generator().manual_seed(0)
