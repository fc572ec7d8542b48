"""JSON checkpoint file for the paper venue."""

import os
from pathlib import Path

from pydantic import ValidationError

from launchtrade.core.errors import CheckpointError
from launchtrade.core.types import SimulatedVenueState, utcnow
from launchtrade.logging import get_logger

logger = get_logger(__name__)


class CheckpointStore:
    """Saves and loads :class:`SimulatedVenueState` as a JSON document.

    Writes go to a sibling temp file that is then renamed over the target, so
    a crash mid-write leaves the previous checkpoint intact.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def save(self, state: SimulatedVenueState) -> None:
        """Write the state atomically."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        state.saved_at = utcnow()
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            tmp_path.write_text(state.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise CheckpointError(f"Failed to write checkpoint {self._path}: {e}") from e
        logger.debug(
            f"Checkpoint saved: {self._path} balance=${state.balance:.2f} "
            f"positions={len(state.positions)} orders={len(state.orders)}"
        )

    def load(self) -> SimulatedVenueState | None:
        """Read the state, or return None when no checkpoint exists.

        Raises:
            CheckpointError: The file exists but cannot be read or parsed.
        """
        if not self._path.exists():
            return None
        try:
            raw = self._path.read_text(encoding="utf-8")
            state = SimulatedVenueState.model_validate_json(raw)
        except (OSError, ValidationError) as e:
            raise CheckpointError(f"Failed to load checkpoint {self._path}: {e}") from e
        logger.info(
            f"Loaded checkpoint with {len(state.prices)} tokens and ${state.balance:.2f} balance"
        )
        return state
