from __future__ import annotations

ThreadKey = tuple[str, int]


class DedupTracker:
    """Highest forwarded item id per (source, thread).

    Owned by the poller. Not safe to share between tasks.
    """

    def __init__(self) -> None:
        self._watermarks: dict[ThreadKey, int] = {}

    def watermark(self, key: ThreadKey) -> int:
        return self._watermarks.get(key, 0)

    def should_emit(self, key: ThreadKey, seq: int) -> bool:
        return seq > self.watermark(key)

    def advance(self, key: ThreadKey, max_seq: int) -> None:
        if max_seq > self.watermark(key):
            self._watermarks[key] = max_seq
