import datetime
from typing import Any, Dict, Optional


class LogEntry:
    """
    A single diagnostics record kept in the log buffer.
    """
    def __init__(self,
                 level: str,
                 category: str,
                 message: str,
                 details: Optional[Any] = None,
                 timestamp: datetime.datetime = None):
        """
        Initializes a LogEntry object.

        Args:
            level (str): INFO, WARNING or ERROR.
            category (str): Component that produced the entry.
            message (str): Human readable message.
            details (Any, optional): JSON-friendly payload with extra context.
            timestamp (datetime.datetime, optional): Defaults to the current UTC time.
        """
        self.level: str = level
        self.category: str = category
        self.message: str = message
        self.details: Optional[Any] = details
        self.timestamp: datetime.datetime = timestamp if timestamp is not None else datetime.datetime.now(datetime.timezone.utc)

    def to_dict(self, json_friendly: bool = False) -> Dict[str, Any]:
        entry = {
            'timestamp': self.timestamp.isoformat() if json_friendly else self.timestamp,
            'level': self.level,
            'category': self.category,
            'message': self.message,
        }
        if self.details is not None:
            entry['details'] = self.details
        return entry

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LogEntry':
        """
        Rebuilds an entry from its JSON-friendly dictionary.

        Raises:
            KeyError: If a required field is missing.
            ValueError: If the timestamp is not ISO-8601.
        """
        return cls(
            level=data['level'],
            category=data['category'],
            message=data['message'],
            details=data.get('details'),
            timestamp=datetime.datetime.fromisoformat(data['timestamp']),
        )

    def __repr__(self) -> str:
        return f'LogEntry({self.timestamp.isoformat()} [{self.level}] {self.category}: {self.message})'
