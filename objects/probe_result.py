from typing import Any, Dict, Optional


class ProbeResult:
    """
    Outcome of a single reachability probe against a URL.
    """
    def __init__(self,
                 target: str,
                 reachable: bool,
                 status: Optional[int] = None,
                 reason: Optional[str] = None,
                 latency_ms: Optional[float] = None,
                 error: Optional[str] = None):
        self.target: str = target
        self.reachable: bool = reachable
        self.status: Optional[int] = status
        self.reason: Optional[str] = reason
        self.latency_ms: Optional[float] = latency_ms
        self.error: Optional[str] = error

    @property
    def ok(self) -> bool:
        return self.reachable and self.status is not None and 200 <= self.status < 300

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'target': self.target,
            'reachable': self.reachable,
            'status': self.status,
        }
        if self.latency_ms is not None:
            result['latencyMs'] = round(self.latency_ms, 1)
        if self.error is not None:
            result['error'] = self.error
        return result

    def __repr__(self) -> str:
        if self.reachable:
            return f'ProbeResult({self.target}, status={self.status})'
        return f'ProbeResult({self.target}, unreachable: {self.error})'
