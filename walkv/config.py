"""Store configuration."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Configuration:
    """Where the store keeps its files and how large a WAL segment may grow."""

    checkpoint_size: int = 1024
    base_dir: str = "./db"

    def with_base_dir(self, directory: str) -> Configuration:
        """Set the base directory and return this configuration."""
        self.base_dir = directory
        return self

    def with_checkpoint_size(self, size: int) -> Configuration:
        """Set the checkpoint size in bytes and return this configuration."""
        self.checkpoint_size = size
        return self