"""
Guard State Persistence

Saves and restores the durable state owned by the guards as a single JSON document:

    {
      "rate_records": {"<account>": {RateRecord}},
      "vesting_schedules": [{VestingSchedule}, ...],
      "round_watermark": 110680464442257320000
    }

Price samples are never persisted. Files are written to a temporary sibling and then
renamed, so a crash mid-write leaves the previous snapshot intact.
"""
import json
import os
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError

from mcp_presale_guard.errors import ConfigurationError
from mcp_presale_guard.rate_limiter import RateGuard
from mcp_presale_guard.schemas import RateRecord, VestingSchedule
from mcp_presale_guard.vesting import VestingLedger
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class GuardStateModel(BaseModel):
    rate_records: Dict[str, RateRecord] = {}
    vesting_schedules: List[VestingSchedule] = []
    round_watermark: Optional[int] = None


def snapshot(rate_guard: RateGuard, ledger: VestingLedger, round_watermark: Optional[int] = None) -> GuardStateModel:
    return GuardStateModel(
        rate_records=rate_guard.records(),
        vesting_schedules=ledger.schedules(),
        round_watermark=round_watermark,
    )


def save_state(path: Union[str, Path], state: GuardStateModel) -> None:
    """Writes the snapshot to `path`, replacing any previous file atomically."""
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = file_path.with_name(file_path.name + ".tmp")
    with open(tmp_path, "w") as f:
        json.dump(state.model_dump(mode="json"), f, indent=4)
    os.replace(tmp_path, file_path)
    logger.info(f"Saved guard state to {file_path}: {len(state.rate_records)} rate record(s), "
                f"{len(state.vesting_schedules)} vesting schedule(s)")


def load_state(path: Union[str, Path]) -> GuardStateModel:
    """
    Loads a snapshot from `path`. A missing file yields an empty state.

    Raises:
        ConfigurationError: If the file exists but is not a valid snapshot.
    """
    file_path = Path(path)
    if not file_path.is_file():
        logger.warning(f"Guard state file not found: {file_path}. Starting with empty state.")
        return GuardStateModel()

    try:
        with open(file_path, "r") as f:
            state = GuardStateModel.model_validate(json.load(f))
    except json.JSONDecodeError as e:
        logger.error(f"Error decoding JSON from state file: {file_path}")
        raise ConfigurationError(f"State file {file_path} is not valid JSON: {e}")
    except ValidationError as e:
        logger.error(f"Invalid guard state in file {file_path}: {e}")
        raise ConfigurationError(f"State file {file_path} is invalid: {e}")

    logger.info(f"Loaded guard state from {file_path}: {len(state.rate_records)} rate record(s), "
                f"{len(state.vesting_schedules)} vesting schedule(s)")
    return state


def restore(state: GuardStateModel, rate_guard: RateGuard, ledger: VestingLedger) -> None:
    """Loads the snapshot's records into the guard and the ledger."""
    rate_guard.load_records(state.rate_records)
    ledger.load_schedules(state.vesting_schedules)
