"""Tests for the apiauth command line."""

import base64
import hashlib
import json

import pytest
from click.testing import CliRunner

from apiauth.cli import cli
from apiauth.hmac.digest import body_digest_header
from apiauth.hmac.signature import sign

from conftest import EXAMPLE_URL

DATE = "Wed, 04 May 1977 16:00:00 GMT"
BODY = '{"bolt":"on"}'


@pytest.fixture
def runner(monkeypatch):
    monkeypatch.delenv("APIAUTH_SECRETS", raising=False)
    return CliRunner()


def _expected_canonical() -> str:
    return f"POST\n{body_digest_header(BODY.encode())}\n{DATE}\ndvader\n{EXAMPLE_URL}"


class TestHashPassword:
    def test_derives_base64_sha1(self, runner):
        result = runner.invoke(cli, ["hash-password", "password"])

        expected = base64.b64encode(hashlib.sha1(b"password").digest()).decode()
        assert result.exit_code == 0
        assert result.output.strip() == expected


class TestCanonical:
    """Test printing canonical strings."""

    def test_example_request(self, runner):
        result = runner.invoke(
            cli,
            ["-u", "dvader", "canonical", "-X", "post", "--url", EXAMPLE_URL, "--date", DATE, "-d", BODY],
        )

        assert result.exit_code == 0, result.output
        assert result.output == _expected_canonical() + "\n"

    def test_requires_username(self, runner):
        result = runner.invoke(cli, ["canonical", "--url", EXAMPLE_URL])

        assert result.exit_code == 1

    def test_relative_url_rejected(self, runner):
        result = runner.invoke(cli, ["-u", "dvader", "canonical", "--url", "/api/users", "--date", DATE])

        assert result.exit_code == 1
        assert "malformed_canonical_input" in result.output


class TestSign:
    """Test printing authentication headers."""

    def test_headers_for_example_request(self, runner):
        result = runner.invoke(
            cli,
            [
                "-u", "dvader",
                "--secret", "secret123",
                "sign",
                "-X", "POST",
                "--url", EXAMPLE_URL,
                "--date", DATE,
                "-d", BODY,
            ],
        )

        assert result.exit_code == 0, result.output
        lines = result.output.splitlines()
        assert f"Date: {DATE}" in lines
        assert "X-ApiAuth-Username: dvader" in lines
        assert f"Content-MD5: {body_digest_header(BODY.encode())}" in lines
        assert f"Authorization: ApiAuth {sign('secret123', _expected_canonical())}" in lines

    def test_secret_from_config(self, runner, tmp_path):
        config = tmp_path / "cli.json"
        config.write_text(json.dumps({"cli": {"username": "dvader", "secret": "secret123"}}))

        result = runner.invoke(
            cli,
            ["--config", str(config), "sign", "--url", "https://empire.gov/", "--date", DATE],
        )

        canonical = f"GET\n\n{DATE}\ndvader\nhttps://empire.gov/"
        assert result.exit_code == 0, result.output
        assert f"Authorization: ApiAuth {sign('secret123', canonical)}" in result.output.splitlines()

    def test_missing_config_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["--config", str(tmp_path / "absent.json"), "hash-password", "x"])

        assert result.exit_code == 1

    def test_unknown_user_fails(self, runner):
        result = runner.invoke(cli, ["-u", "palpatine", "sign", "--url", "https://empire.gov/"])

        assert result.exit_code == 1
        assert "Authorization" not in result.output

    def test_invalid_date(self, runner):
        result = runner.invoke(
            cli,
            ["-u", "dvader", "--secret", "s", "sign", "--url", "https://empire.gov/", "--date", "tomorrow"],
        )

        assert result.exit_code == 1
