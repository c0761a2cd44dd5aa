"""Tests for the rclone sync provider."""

import json

import pytest
import requests
from requests.auth import HTTPBasicAuth

from doc_backup.config import SecretRef, SyncConfig
from doc_backup.sync import RcloneSyncProvider, SyncError


def make_response(status_code, body, reason="OK"):
    response = requests.Response()
    response.status_code = status_code
    response.reason = reason
    response._content = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")
    return response


class FakeSession:
    def __init__(self, response=None, error=None):
        self.headers = {}
        self.auth = None
        self.response = response
        self.error = error
        self.requests = []

    def post(self, url, json=None, timeout=None):
        self.requests.append({"url": url, "json": json, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response


def make_config(**overrides):
    values = {"host": "rclone", "port": 5572, "destination": "remote:backups"}
    values.update(overrides)
    return SyncConfig(**values)


class TestRcloneSyncProvider:
    def test_submits_async_job(self):
        session = FakeSession(make_response(200, {"jobid": 17}))
        provider = RcloneSyncProvider(make_config(), session=session)

        job = provider.submit_sync("/srv/archives", "remote:backups")

        assert job.job_id == 17
        assert job.response == {"jobid": 17}
        request = session.requests[0]
        assert request["url"] == "http://rclone:5572/sync/copy"
        assert request["json"] == {"_async": True, "srcFs": "/srv/archives", "dstFs": "remote:backups"}
        assert request["timeout"] is None
        assert session.headers["Content-Type"] == "application/json"
        assert session.headers["Accept"] == "application/json"
        assert session.auth is None

    def test_passthrough_options_do_not_override_endpoints(self):
        config = make_config(options={"createEmptySrcDirs": True, "srcFs": "ignored"}, command="/sync/sync/")
        session = FakeSession(make_response(200, {"jobid": 1}))
        provider = RcloneSyncProvider(config, session=session)

        provider.submit_sync("/a", "remote:b")

        request = session.requests[0]
        assert request["url"] == "http://rclone:5572/sync/sync"
        assert request["json"] == {
            "_async": True,
            "createEmptySrcDirs": True,
            "srcFs": "/a",
            "dstFs": "remote:b",
        }

    def test_basic_auth_from_secret_ref(self, monkeypatch):
        monkeypatch.setenv("RCLONE_PASS", "s3cret")
        config = make_config(login="backup", password_ref=SecretRef(env="RCLONE_PASS"))
        session = FakeSession(make_response(200, {"jobid": 1}))

        RcloneSyncProvider(config, session=session)

        assert isinstance(session.auth, HTTPBasicAuth)
        assert session.auth.username == "backup"
        assert session.auth.password == "s3cret"

    def test_non_2xx_raises_sync_error(self):
        session = FakeSession(make_response(500, {"error": "boom"}, reason="Internal Server Error"))
        provider = RcloneSyncProvider(make_config(), session=session)

        with pytest.raises(SyncError) as excinfo:
            provider.submit_sync("/a", "remote:b")

        assert excinfo.value.status_code == 500
        assert "Internal Server Error (500)" in str(excinfo.value)

    def test_network_error_raises_sync_error(self):
        session = FakeSession(error=requests.ConnectionError("refused"))
        provider = RcloneSyncProvider(make_config(), session=session)

        with pytest.raises(SyncError, match="refused"):
            provider.submit_sync("/a", "remote:b")

    def test_non_json_body_raises_sync_error(self):
        session = FakeSession(make_response(200, b"<html>"))
        provider = RcloneSyncProvider(make_config(), session=session)

        with pytest.raises(SyncError, match="non-JSON"):
            provider.submit_sync("/a", "remote:b")
