import math

import torch
import torch.nn as nn

from errors import ConfigurationError


def _glorot_uniform_(weight, generator = None):
    fan_in, fan_out = weight.shape[-2], weight.shape[-1]
    limit = math.sqrt(6.0 / (fan_in + fan_out))
    nn.init.uniform_(weight, -limit, limit, generator = generator)


class SimpleRNNCell(nn.Module):
    """h_t = tanh(x_t W_x + h_{t-1} W_h + b)"""

    def __init__(self, input_dim, units, generator = None):
        super().__init__()
        self.units = units
        self.weight_x = nn.Parameter(torch.empty(input_dim, units))                             # Input-to-hidden kernel
        self.weight_h = nn.Parameter(torch.empty(units, units))                                 # Hidden-to-hidden kernel
        self.bias = nn.Parameter(torch.zeros(units))
        self.reset_parameters(generator)

    def reset_parameters(self, generator = None):
        _glorot_uniform_(self.weight_x, generator)
        nn.init.orthogonal_(self.weight_h, generator = generator)
        nn.init.zeros_(self.bias)

    def initial_state(self, batch_size, device = None):
        return (torch.zeros(batch_size, self.units, device = device),)

    def forward(self, x_t, state):
        (h_prev,) = state
        h_t = torch.tanh(x_t @ self.weight_x + h_prev @ self.weight_h + self.bias)
        return h_t, (h_t,)


class LSTMCell(nn.Module):
    """
    Gated memory cell. The four blocks of the kernels are, in order, the input
    gate i, the forget gate f, the candidate g and the output gate o:

        c_t = f * c_{t-1} + i * g
        h_t = o * tanh(c_t)
    """

    def __init__(self, input_dim, units, generator = None):
        super().__init__()
        self.units = units
        self.weight_x = nn.Parameter(torch.empty(input_dim, 4 * units))
        self.weight_h = nn.Parameter(torch.empty(units, 4 * units))
        self.bias = nn.Parameter(torch.zeros(4 * units))
        self.reset_parameters(generator)

    def reset_parameters(self, generator = None):
        _glorot_uniform_(self.weight_x, generator)
        nn.init.orthogonal_(self.weight_h, generator = generator)
        with torch.no_grad():
            self.bias.zero_()
            self.bias[self.units:2 * self.units] = 1.0                                          # Forget gate starts open

    def initial_state(self, batch_size, device = None):
        h_0 = torch.zeros(batch_size, self.units, device = device)
        c_0 = torch.zeros(batch_size, self.units, device = device)
        return h_0, c_0

    def forward(self, x_t, state):
        h_prev, c_prev = state
        z = x_t @ self.weight_x + h_prev @ self.weight_h + self.bias
        z_i, z_f, z_g, z_o = z.chunk(4, dim = -1)
        i_t = torch.sigmoid(z_i)
        f_t = torch.sigmoid(z_f)
        g_t = torch.tanh(z_g)
        o_t = torch.sigmoid(z_o)
        c_t = f_t * c_prev + i_t * g_t                                                          # Additive cell-state update
        h_t = o_t * torch.tanh(c_t)
        return h_t, (h_t, c_t)


CELLS = {"simple": SimpleRNNCell, "lstm": LSTMCell}


class RecurrentLayer(nn.Module):
    def __init__(self, input_dim, spec, generator = None):
        super().__init__()
        if spec.kind not in CELLS:
            raise ConfigurationError(f"unknown recurrent kind {spec.kind!r}")
        self.cell = CELLS[spec.kind](input_dim, spec.units, generator)
        self.kind = spec.kind
        self.input_dim = input_dim
        self.units = spec.units
        self.return_sequences = spec.return_sequences
        self.dropout = spec.dropout
        self.recurrent_dropout = spec.recurrent_dropout
        self.generator = generator

    def _sample_mask(self, batch_size, width, rate, device):
        if not self.training or rate == 0.0:
            return None
        keep = 1.0 - rate
        mask = torch.bernoulli(torch.full((batch_size, width), keep), generator = self.generator)
        return (mask / keep).to(device)                                                         # Inverted dropout, no rescaling needed at eval time

    def dropout_masks(self, batch_size, device = None):
        """Input and recurrent masks for one forward pass; None when not training."""
        input_mask = self._sample_mask(batch_size, self.input_dim, self.dropout, device)
        recurrent_mask = self._sample_mask(batch_size, self.units, self.recurrent_dropout, device)
        return input_mask, recurrent_mask

    def forward(self, x):
        batch_size, steps, _ = x.shape
        if steps == 0:
            raise ValueError("cannot run a recurrent layer over an empty sequence")
        input_mask, recurrent_mask = self.dropout_masks(batch_size, x.device)                   # Same masks at every timestep
        state = self.cell.initial_state(batch_size, x.device)

        outputs = []
        for t in range(steps):
            x_t = x[:, t]
            if input_mask is not None:
                x_t = x_t * input_mask
            if recurrent_mask is not None:
                state = (state[0] * recurrent_mask,) + tuple(state[1:])                         # Only h_{t-1} is dropped, never the cell state
            h_t, state = self.cell(x_t, state)
            if self.return_sequences:
                outputs.append(h_t)

        if self.return_sequences:
            return torch.stack(outputs, dim = 1)                                                # (batch, steps, units)
        return h_t                                                                              # (batch, units)


class SentimentRNN(nn.Module):
    def __init__(self, vocab_size, embed_dim, layers, generator = None):
        super().__init__()
        self.embedding = nn.Embedding(vocab_size, embed_dim)                                    # Embedding layer converts token IDs to embeddings
        nn.init.uniform_(self.embedding.weight, -0.05, 0.05, generator = generator)

        recurrent = []
        input_dim = embed_dim
        for spec in layers:
            recurrent.append(RecurrentLayer(input_dim, spec, generator))
            input_dim = spec.units
        self.recurrent = nn.ModuleList(recurrent)

        self.fc = nn.Linear(input_dim, 1)                                                       # Scores the final hidden state
        _glorot_uniform_(self.fc.weight, generator)
        nn.init.zeros_(self.fc.bias)

    def logits(self, x):
        x = self.embedding(x)                                                                   # (batch, L) -> (batch, L, E)
        for layer in self.recurrent:
            x = layer(x)
        return self.fc(x).squeeze(-1)

    def forward(self, x):
        return torch.sigmoid(self.logits(x))                                                    # P(label = 1) per review


def build_model(config, generator = None, layers = None):
    """
    Assembles embedding -> recurrent stack -> logistic scorer. The stack comes
    from config.layer_specs() unless explicit layer specs are given.
    """
    layers = list(layers) if layers is not None else config.layer_specs()
    if not layers:
        raise ConfigurationError("at least one recurrent layer is required")
    for i, spec in enumerate(layers[:-1]):
        if not spec.return_sequences:
            raise ConfigurationError(
                f"recurrent layer {i} feeds recurrent layer {i + 1} and must return full sequences"
            )
    if layers[-1].return_sequences:
        raise ConfigurationError("the last recurrent layer must return only its final hidden state")

    model = SentimentRNN(config.vocab_size, config.embed_dim, layers, generator)
    model.config = config
    model.layer_specs = layers
    return model


def timestep_gradient_norms(layer, inputs):
    """
    For each input timestep, the norm of the gradient of the layer's final
    hidden state with respect to that timestep's input, averaged over the batch.
    Values that fall off towards the first timesteps are vanishing gradients.
    """
    was_training = layer.training
    layer.eval()
    inputs = inputs.detach().clone().requires_grad_(True)
    try:
        output = layer(inputs)
        if output.dim() == 3:
            output = output[:, -1]
        (grad,) = torch.autograd.grad(output.sum(), inputs)
    finally:
        layer.train(was_training)
    return grad.norm(dim = -1).mean(dim = 0)                                                    # (steps,)
