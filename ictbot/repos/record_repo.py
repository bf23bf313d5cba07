"""Trade-record repository — ``position_id -> TradeRecord`` for the analyzer."""

import pathlib

from ictbot.models.trade_record import TradeRecord
from ictbot.repos.json_store import read_json, write_json

RECORDS_FILE = "trade_records.json"


class RecordRepo:
    """Load and save ``trade_records.json``.

    JSON object keys are strings; ids are converted back to ``int`` on load.
    """

    def __init__(self, state_dir: str) -> None:
        self._path = pathlib.Path(state_dir) / RECORDS_FILE

    def load(self) -> dict[int, TradeRecord]:
        data = read_json(self._path, default={})
        return {int(k): TradeRecord.from_dict(v) for k, v in data.items()}

    def save(self, records: dict[int, TradeRecord]) -> None:
        write_json(self._path, {str(k): r.to_dict() for k, r in records.items()})
