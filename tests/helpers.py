OPERATOR = "628999000111"
USER = "628111222333"
START_MS = 1_700_000_000_000
HOUR_MS = 60 * 60 * 1000


class FakeClock:
    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def ledger(store, identity):
    """Messages for `identity` in insertion order."""
    return list(reversed(store.list_messages(identity, limit=200)))


def kinds(rows):
    return [(row.direction, (row.meta or {}).get("kind")) for row in rows]
