"""Tests for lock client identities."""

from datetime import datetime, timezone

from lockstep.locking import MAX_CLIENT_NAME_LENGTH, generate_client_name

NOW = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)


class TestGenerateClientName:
    def test_local(self, monkeypatch):
        monkeypatch.setattr("getpass.getuser", lambda: "alice")
        monkeypatch.setattr("socket.gethostname", lambda: "devbox")

        name = generate_client_name(env={}, now=NOW)
        assert name.startswith("alice@devbox ")
        assert name.endswith("2024-05-01T12:30:00+00:00")

    def test_ci(self):
        env = {
            "CI_PROJECT_NAME": "shop",
            "CI_COMMIT_SHA": "0123456789abcdef",
            "CI_COMMIT_SHORT_SHA": "01234567",
            "CI_COMMIT_BRANCH": "main",
            "CI_ENVIRONMENT_NAME": "staging",
            "CI_JOB_URL": "https://ci.example.com/jobs/42",
        }
        name = generate_client_name(env=env, now=NOW)
        assert name.startswith(
            "ci shop main 01234567 staging https://ci.example.com/jobs/42 "
        )

    def test_ci_prefers_tag(self):
        env = {
            "CI_PROJECT_NAME": "shop",
            "CI_COMMIT_SHA": "0123456789abcdef",
            "CI_COMMIT_TAG": "v1.2.3",
            "CI_COMMIT_BRANCH": "main",
        }
        name = generate_client_name(env=env, now=NOW)
        assert name.startswith("ci shop v1.2.3 ")

    def test_capped_length(self):
        env = {
            "CI_PROJECT_NAME": "p",
            "CI_COMMIT_SHA": "c",
            "CI_COMMIT_BRANCH": "b" * 300,
            "CI_JOB_URL": "u" * 300,
            "CI_ENVIRONMENT_NAME": "e" * 300,
        }
        name = generate_client_name(env=env, now=NOW)
        assert len(name) <= MAX_CLIENT_NAME_LENGTH
        # Individual fields are truncated as well
        assert "b" * 51 not in name
        assert "u" * 101 not in name
