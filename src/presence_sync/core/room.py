"""
Room dataclass and helpers.

A Room represents one channel topic whose membership is tracked (e.g. "chat:lobby").
"""

from dataclasses import dataclass, field
from typing import Dict


@dataclass
class Room:
    """
    A logical group whose members and devices are tracked.

    Attributes:
        topic: Channel topic that identifies this room (e.g., "chat:lobby")
        name: Human-readable name
        modules: Per-module configuration blobs
    """

    topic: str
    name: str
    modules: Dict[str, Dict] = field(default_factory=dict)
