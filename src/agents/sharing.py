"""
Parameter Sharing
=================

Tie layers between agents so that they train one set of weights.

The owner keeps its parameters; the slave drops its own copy and registers
the owner's `nn.Parameter` objects in their place.
"""

from typing import List

import torch.nn as nn

from .networks import parametric_layers


def share_layer(owner: nn.Module, slave: nn.Module):
    """
    Make `slave` use the parameter storage of `owner`.

    Raises:
        ValueError: If the two layers do not hold identically shaped parameters
    """
    owner_params = dict(owner.named_parameters(recurse=False))
    slave_params = dict(slave.named_parameters(recurse=False))
    if owner_params.keys() != slave_params.keys():
        raise ValueError(
            f"Layer parameter names differ: {sorted(owner_params)} vs {sorted(slave_params)}"
        )
    for name, param in owner_params.items():
        if slave_params[name].shape != param.shape:
            raise ValueError(
                f"Cannot share '{name}': shape {tuple(param.shape)} "
                f"vs {tuple(slave_params[name].shape)}"
            )
    for name, param in owner_params.items():
        setattr(slave, name, param)


def share_network_layers(owner: nn.Module, slave: nn.Module, num_layers: int) -> List[str]:
    """
    Tie the first `num_layers` parametric layers of `owner` into `slave`.

    Layers are matched by module name.

    Returns:
        Names of the shared layers

    Raises:
        KeyError: If a layer of the owner has no same-named layer in the slave
    """
    slave_modules = dict(slave.named_modules())
    shared = []
    for name, layer in parametric_layers(owner)[:num_layers]:
        if name not in slave_modules:
            raise KeyError(f"Unable to find layer '{name}' to share with")
        share_layer(layer, slave_modules[name])
        shared.append(name)
    return shared


def layers_are_shared(a: nn.Module, b: nn.Module) -> bool:
    """True when every parameter of `a` is the same object in `b`."""
    b_params = {id(p) for p in b.parameters(recurse=False)}
    return all(id(p) in b_params for p in a.parameters(recurse=False))
