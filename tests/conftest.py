import json
import os
import tempfile

import pytest

_tmpdir = tempfile.mkdtemp(prefix="notebooks-test-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmpdir, 'test.db')}"
os.environ["API_KEYS"] = json.dumps({"admin-key": "admin", "teacher-key": "teacher"})
for _var in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER"):
    os.environ.pop(_var, None)

from notebook_tracker.utils.sms import SmsResult  # noqa: E402

ADMIN = {"X-API-Key": "admin-key"}
TEACHER = {"X-API-Key": "teacher-key"}


class FakeSender:
    def __init__(self, succeed=True):
        self.succeed = succeed
        self.sent = []

    def is_ready(self):
        return True

    def send(self, to, body):
        self.sent.append((to, body))
        if self.succeed:
            return SmsResult(True, message_id=f"SM{len(self.sent)}")
        return SmsResult(False, error="undeliverable")


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def client(sender):
    from fastapi.testclient import TestClient
    from notebook_tracker.main import app, get_sms_sender

    app.dependency_overrides[get_sms_sender] = lambda: sender
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
