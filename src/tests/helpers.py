import asyncio

from tools.base import ScanRunner


class FakeRunner(ScanRunner):
    """Reports once, then holds until cancelled (or finishes at once with hold=False)."""

    def __init__(self, settings, flows=None, hold=True, fail=None):
        super().__init__()
        self.flows = list(flows or [])
        self.hold = hold
        self.fail = fail
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.cancelled = False

    async def run(self, reporter):
        await reporter.append_log("Scanner booting\n")
        await reporter.update_status(["Indexing flows"], 150)
        self.started.set()
        if self.fail:
            raise self.fail
        if self.hold:
            await self.release.wait()
        return 143 if self.cancelled else 0

    def cancel(self):
        self.cancelled = True
        self.release.set()


class RecordingObserver:
    def __init__(self):
        self.messages = []

    async def send_json(self, data):
        self.messages.append(data)

    def events(self):
        return [message["event"] for message in self.messages]


class BrokenObserver:
    async def send_json(self, data):
        raise RuntimeError("connection closed")


class RecordingReporter:
    def __init__(self):
        self.logs = ""
        self.statuses = []

    async def append_log(self, text):
        self.logs += text

    async def update_status(self, lines, percentage):
        self.statuses.append((lines, percentage))


def flow_payload(flow_id="flow-1", review_ids=("r-2", "r-0", "r-1")):
    """A flow as the scanner emits it: nested user/category refs, b64Data payload."""
    return {
        "id": flow_id,
        "user": {"id": 42},
        "category": {"id": 7},
        "title": "Battery saver",
        "description": "Turns on power saving below 20%",
        "downloads": 1200,
        "featured": True,
        "created": "2023-06-01T14:30:00",
        "modified": "2023-06-02T09:15:00",
        "uploadVersion": "1.24.0",
        "dataVersion": 3,
        "b64Data": "eyJibG9ja3MiOltdfQ==",
        "reviews": [
            {
                "id": review_id,
                "user": {"id": 100 + position},
                "comment": f"Review {review_id}",
                "rating": 4.5,
                "created": "2023-06-03T10:00:00",
                "modified": "2023-06-03T10:00:00",
            }
            for position, review_id in enumerate(review_ids)
        ],
    }
