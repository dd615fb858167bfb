"""Engine limits and defaults.

ProtocolConfig is passed to PullRequestEngine.create(); the defaults match the
protocol's published limits. Only the default approval threshold may be
overridden from the environment, because the title length and threshold range
are part of the protocol contract rather than deployment choices.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

ENV_DEFAULT_REQUIRED_APPROVALS = "REVIEW_DEFAULT_REQUIRED_APPROVALS"


@dataclass(frozen=True)
class ProtocolConfig:
    """Validation limits used by the engine.

    title_max_length: maximum title length in characters.
    min_required_approvals / max_required_approvals: inclusive threshold range.
    default_required_approvals: threshold used when create() is not given one.
    """

    title_max_length: int = 200
    min_required_approvals: int = 1
    max_required_approvals: int = 10
    default_required_approvals: int = 2

    def __post_init__(self) -> None:
        if not (
            self.min_required_approvals
            <= self.default_required_approvals
            <= self.max_required_approvals
        ):
            raise ValueError(
                f"default_required_approvals={self.default_required_approvals} is "
                f"outside {self.min_required_approvals}-{self.max_required_approvals}"
            )

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> ProtocolConfig:
        """Build a config, reading the default threshold from the environment.

        Args:
            environ: Mapping to read from. Defaults to os.environ.

        Raises:
            ValueError: If the variable is set but is not an integer in range.
        """
        env = os.environ if environ is None else environ
        raw = env.get(ENV_DEFAULT_REQUIRED_APPROVALS, "").strip()
        if not raw:
            return cls()
        try:
            default = int(raw)
        except ValueError:
            raise ValueError(
                f"{ENV_DEFAULT_REQUIRED_APPROVALS} must be an integer, got {raw!r}"
            ) from None
        return cls(default_required_approvals=default)


DEFAULT_CONFIG = ProtocolConfig()
