import os
import json
import datetime
import logging
from typing import Any

log = logging.getLogger(__name__)


def export_filename(prefix: str, today: datetime.date = None) -> str:
    today = today or datetime.datetime.now(datetime.timezone.utc).date()
    return f'{prefix}-{today.isoformat()}.json'


def export_json(document: Any, directory: str, prefix: str) -> str:
    """
    Writes a JSON document named '<prefix>-YYYY-MM-DD.json' into directory.

    Returns:
        str: Path of the written file.
    """
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, export_filename(prefix))
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(document, f, indent=2, ensure_ascii=False)
    log.info(f'Exported \'{prefix}\' document to \'{path}\'.')
    return path
