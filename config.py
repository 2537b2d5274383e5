import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

BASE_DIR = Path(os.path.dirname(os.path.abspath(__file__)))                                    # Paths are relative to the scripts, not the terminal

RecurrentKind = Literal["simple", "lstm"]


class DataConfig(BaseModel):
    data_path: Path = BASE_DIR / "imdb_data" / "IMDB Dataset.csv"
    vocab_size: int = Field(default = 10000, gt = 1)                                            # Keep the K-1 most frequent tokens, id 0 is padding
    test_fraction: float = Field(default = 0.2, gt = 0.0, lt = 1.0)
    seed: int = 42


class RecurrentLayerSpec(BaseModel):
    kind: RecurrentKind = "lstm"
    units: int = Field(default = 32, gt = 0)
    return_sequences: bool = False
    dropout: float = Field(default = 0.0, ge = 0.0, lt = 1.0)                                   # Dropout on the input connections
    recurrent_dropout: float = Field(default = 0.0, ge = 0.0, lt = 1.0)                         # Dropout on the hidden-to-hidden connections


class ModelConfig(BaseModel):
    vocab_size: int = Field(default = 10000, gt = 1)
    max_length: int = Field(default = 500, gt = 0)
    embed_dim: int = Field(default = 32, gt = 0)
    units: int = Field(default = 32, gt = 0)
    kind: RecurrentKind = "lstm"
    num_layers: int = Field(default = 1, gt = 0)
    dropout: float = Field(default = 0.0, ge = 0.0, lt = 1.0)
    recurrent_dropout: float = Field(default = 0.0, ge = 0.0, lt = 1.0)

    def layer_specs(self) -> list[RecurrentLayerSpec]:
        """Stacked layers; every layer but the last hands its full sequence to the next."""
        return [
            RecurrentLayerSpec(
                kind = self.kind,
                units = self.units,
                return_sequences = i < self.num_layers - 1,
                dropout = self.dropout,
                recurrent_dropout = self.recurrent_dropout,
            )
            for i in range(self.num_layers)
        ]


class TrainingConfig(BaseModel):
    epochs: int = Field(default = 10, gt = 0)
    batch_size: int = Field(default = 128, gt = 0)
    lr: float = Field(default = 0.001, gt = 0.0)
    validation_split: float = Field(default = 0.2, gt = 0.0, lt = 1.0)
    patience: int = Field(default = 2, gt = 0)
    checkpoint_dir: Path = BASE_DIR / "models"
    verbose: bool = True
