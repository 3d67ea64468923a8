"""Configuration management for balancing runs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional
import os

from hsbalance.errors import ConfigError

# v2 descriptors are published under two replicas, each holding at most ten
# introduction points.
REPLICA_COUNT = 2
MAX_INTRO_POINTS_PER_DESCRIPTOR = 10


@dataclass
class ControlConfig:
    """Control port settings."""

    address: str = "default://"
    password: Optional[str] = None
    connect_timeout: float = 30.0


@dataclass
class BalancerConfig:
    """Settings for one balancing run."""

    replica_count: int = REPLICA_COUNT
    max_intro_points: int = MAX_INTRO_POINTS_PER_DESCRIPTOR
    distinct_descriptors: bool = False
    # None publishes every replica.
    replicas: Optional[List[int]] = None
    collect_timeout: Optional[float] = 300.0
    verify_signatures: bool = True
    output_dir: Optional[str] = None

    def selected_replicas(self) -> List[int]:
        """Replica indices to build and publish, in publishing order."""
        if self.replicas is None:
            return list(range(self.replica_count))
        return list(self.replicas)

    def validate(self) -> List[str]:
        """
        Validate this configuration.

        Returns:
            List of validation errors. Empty if valid.
        """
        errors = []
        if self.replica_count <= 0:
            errors.append("replica_count must be positive")
        if self.replica_count > 256:
            errors.append("replica_count must fit in one byte")
        if self.max_intro_points <= 0:
            errors.append("max_intro_points must be positive")
        if self.collect_timeout is not None and self.collect_timeout <= 0:
            errors.append("collect_timeout must be positive")

        if self.replicas is not None:
            if not self.replicas:
                errors.append("at least one replica must be selected")
            if len(set(self.replicas)) != len(self.replicas):
                errors.append("replicas must not repeat")
            for replica in self.replicas:
                if not (0 <= replica < self.replica_count):
                    errors.append(f"replica {replica} out of range 0..{self.replica_count - 1}")
        return errors


def parse_replica_mask(mask: str, replica_count: int = REPLICA_COUNT) -> List[int]:
    """
    Turn a publish mask such as ``"10"`` into replica indices.

    Character ``i`` enables replica ``i``.

    Raises:
        ConfigError: If the mask has the wrong length or characters other
            than ``0``/``1``.
    """
    if len(mask) != replica_count:
        raise ConfigError(f"wrong mask length - should be {replica_count}")
    replicas = []
    for i, ch in enumerate(mask):
        if ch == "1":
            replicas.append(i)
        elif ch != "0":
            raise ConfigError("invalid chars in mask string")
    return replicas


def parse_replica_list(value: str, replica_count: int = REPLICA_COUNT) -> List[int]:
    """
    Parse a comma separated replica list such as ``"0,1"``.

    Raises:
        ConfigError: On non-integer, repeated or out-of-range entries.
    """
    replicas = []
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            replica = int(item)
        except ValueError as e:
            raise ConfigError(f"invalid replica index {item!r}") from e
        if not (0 <= replica < replica_count):
            raise ConfigError(f"replica {replica} out of range 0..{replica_count - 1}")
        if replica in replicas:
            raise ConfigError(f"replica {replica} listed twice")
        replicas.append(replica)
    if not replicas:
        raise ConfigError("no replicas selected")
    return replicas


class Config:
    """
    Configuration manager for a balancing run.

    Holds the control and balancer settings and resolves environment
    overrides for values that should not live on the command line.
    """

    ENV_CONTROL_ADDR = "HSBALANCE_CONTROL_ADDR"
    ENV_CONTROL_PASSWD = "HSBALANCE_CONTROL_PASSWD"
    ENV_COLLECT_TIMEOUT = "HSBALANCE_COLLECT_TIMEOUT"

    def __init__(
        self,
        control: Optional[ControlConfig] = None,
        balancer: Optional[BalancerConfig] = None,
    ) -> None:
        self.control = control or ControlConfig()
        self.balancer = balancer or BalancerConfig()

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Looks in the balancer settings, then the control settings.
        """
        for section in (self.balancer, self.control):
            if hasattr(section, key):
                return getattr(section, key)
        return default

    def get_from_environment(self, key: str, env_var: str, default: Any = None) -> Any:
        """Get configuration value from environment variable or config."""
        env_value = os.getenv(env_var)
        if env_value is not None:
            return env_value
        return self.get(key, default)

    def apply_environment(self) -> None:
        """Override control and timeout settings from the environment."""
        self.control.address = self.get_from_environment("address", self.ENV_CONTROL_ADDR)
        self.control.password = self.get_from_environment("password", self.ENV_CONTROL_PASSWD)
        timeout = self.get_from_environment("collect_timeout", self.ENV_COLLECT_TIMEOUT)
        if isinstance(timeout, str):
            try:
                timeout = float(timeout)
            except ValueError as e:
                raise ConfigError(f"{self.ENV_COLLECT_TIMEOUT} must be a number") from e
            # Zero disables the deadline.
            if timeout == 0:
                timeout = None
        self.balancer.collect_timeout = timeout

    def validate(self) -> List[str]:
        """
        Validate current configuration.

        Returns:
            List of validation errors. Empty if valid.
        """
        errors = self.balancer.validate()
        if self.control.connect_timeout <= 0:
            errors.append("connect_timeout must be positive")
        return errors
