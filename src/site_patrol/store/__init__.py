"""Target and run-state storage."""

from .base import StateStore, TargetStore
from .documents import (
    JsonStateStore,
    JsonTargetStore,
    TargetRemoval,
    add_target,
    remove_target,
    update_target,
    validate_target,
)

__all__ = [
    "JsonStateStore",
    "JsonTargetStore",
    "StateStore",
    "TargetRemoval",
    "TargetStore",
    "add_target",
    "remove_target",
    "update_target",
    "validate_target",
]
