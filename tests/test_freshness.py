"""Tests for catalog freshness and the oracle runner."""
import json
import subprocess
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

from fakes import model, temp_store, write_catalog

from janus.models.catalog import Catalog
from janus.models.freshness import (
    DEFAULT_TTL_HOURS,
    CatalogStatus,
    ensure_catalog_freshness,
    merge_catalog,
    parse_oracle_response,
)
from janus.models.oracle import OracleResult, OracleRunner

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)

ORACLE_REPLY = json.dumps({
    "providerPreference": ["openai", "anthropic"],
    "models": [
        {"key": "sonnet", "provider": "anthropic", "model": "claude-sonnet-new", "quality": "balanced",
         "costPerMTokIn": 3, "costPerMTokOut": 15},
        {"key": "gpt-4", "provider": "openai", "model": "gpt-4o", "quality": "quality",
         "costPerMTokIn": 5, "costPerMTokOut": 15},
        {"key": "broken", "provider": "acme"},
    ],
    "notes": "refreshed",
})


class FakeRunner:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def run(self, prompt, attachment, cwd=None):
        self.calls.append((prompt, attachment))
        return self.result


class TestStatus(unittest.TestCase):
    def test_within_ttl(self):
        status = CatalogStatus(ttl_hours=48, last_verified_at=(NOW - timedelta(hours=47)).isoformat())
        self.assertTrue(status.within_ttl(NOW))
        self.assertFalse(status.within_ttl(NOW + timedelta(hours=2)))
        self.assertFalse(CatalogStatus().within_ttl(NOW))

    def test_from_dict_normalizes_unknown_status(self):
        status = CatalogStatus.from_dict({"status": "great", "criticalOk": True})
        self.assertEqual(status.status, "unknown")
        self.assertFalse(status.allows_frontier)

    def test_from_dict_falls_back_on_malformed_values(self):
        status = CatalogStatus.from_dict({
            "status": "fresh",
            "ttlHours": "two days",
            "version": "v2",
            "criticalKeys": "c",
            "lastVerifiedAt": 12345,
        })
        self.assertEqual(status.ttl_hours, DEFAULT_TTL_HOURS)
        self.assertEqual(status.version, 1)
        self.assertEqual(status.critical_keys, ["c"])
        self.assertIsNone(status.last_verified_at)
        self.assertFalse(status.within_ttl(NOW))


class TestMerge(unittest.TestCase):
    def test_parse_keeps_valid_models_only(self):
        proposal = parse_oracle_response("Here:\n" + ORACLE_REPLY)
        self.assertEqual([m.key for m in proposal["models"]], ["sonnet", "gpt-4"])
        self.assertEqual(proposal["providerPreference"], ["openai", "anthropic"])
        self.assertIsNone(parse_oracle_response('{"models": [{"key": "x"}]}'))

    def test_replaces_by_key_and_appends_new(self):
        current = Catalog(["anthropic"], [model("sonnet", "anthropic"), model("haiku", "anthropic")])
        proposal = parse_oracle_response(ORACLE_REPLY)
        merged, changes = merge_catalog(current, proposal["models"], proposal["providerPreference"])
        self.assertEqual(merged.keys(), ["sonnet", "haiku", "gpt-4"])
        self.assertEqual(merged.get("sonnet").model_id, "claude-sonnet-new")
        self.assertEqual(merged.provider_preference, ["openai", "anthropic"])
        self.assertEqual([c["modelKey"] for c in changes], ["sonnet", "gpt-4"])
        self.assertEqual(changes[1]["reason"], "new model key from oracle refresh")


class TestEnsureFreshness(unittest.TestCase):
    def setUp(self):
        self.store = temp_store(self)

    def test_fresh_status_short_circuits(self):
        write_catalog(self.store, [model("sonnet", "anthropic")])
        self.store.write_catalog_status(CatalogStatus(
            status="fresh", critical_keys=["sonnet"], critical_ok=True,
            last_verified_at=(NOW - timedelta(hours=1)).isoformat(),
        ).to_dict())
        runner = FakeRunner(OracleResult(text=ORACLE_REPLY, duration_ms=1, ok=True))
        status, updated = ensure_catalog_freshness(self.store, runner, ["sonnet"], now=NOW)
        self.assertEqual(status.status, "fresh")
        self.assertFalse(updated)
        self.assertEqual(runner.calls, [])

    def test_missing_catalog_is_unknown(self):
        runner = FakeRunner(OracleResult(text=ORACLE_REPLY, duration_ms=1, ok=True))
        status, updated = ensure_catalog_freshness(self.store, runner, ["sonnet"], now=NOW)
        self.assertEqual(status.status, "unknown")
        self.assertEqual(status.notes, "models.json missing")
        self.assertFalse(updated)

    def test_refresh_writes_catalog_status_and_audit(self):
        write_catalog(self.store, [model("sonnet", "anthropic")])
        runner = FakeRunner(OracleResult(text=ORACLE_REPLY, duration_ms=1, ok=True))
        status, updated = ensure_catalog_freshness(
            self.store, runner, ["sonnet", "gpt-4"], session_id="s1", now=NOW
        )
        self.assertTrue(updated)
        self.assertEqual(status.status, "fresh")
        self.assertTrue(status.critical_ok)
        self.assertEqual(status.last_verified_at, NOW.isoformat())
        self.assertEqual(Catalog.from_dict(self.store.read_catalog()).keys(), ["sonnet", "gpt-4"])
        self.assertEqual(runner.calls[0][1], self.store.root / "state" / "models.json")
        audit = (self.store.root / "state" / "model-catalog-audit.jsonl").read_text().splitlines()
        record = json.loads(audit[-1])
        self.assertEqual(record["status"], "updated")
        self.assertEqual(record["sessionId"], "s1")

    def test_missing_critical_key_is_stale(self):
        write_catalog(self.store, [model("sonnet", "anthropic")])
        runner = FakeRunner(OracleResult(text=ORACLE_REPLY, duration_ms=1, ok=True))
        status, _ = ensure_catalog_freshness(self.store, runner, ["opus"], now=NOW)
        self.assertEqual(status.status, "stale")
        self.assertFalse(status.critical_ok)

    def test_oracle_failure_is_stale_with_error(self):
        write_catalog(self.store, [model("sonnet", "anthropic")])
        runner = FakeRunner(OracleResult(text="", duration_ms=1, ok=False, error="exit 2", stderr="bad flag"))
        with self.assertLogs("janus.models.freshness", level="WARNING"):
            status, updated = ensure_catalog_freshness(self.store, runner, ["sonnet"], now=NOW)
        self.assertFalse(updated)
        self.assertEqual(status.status, "stale")
        self.assertIn("exit 2", status.notes)
        self.assertIn("bad flag", status.notes)
        record = json.loads((self.store.root / "state" / "model-catalog-audit.jsonl").read_text().splitlines()[-1])
        self.assertEqual(record["status"], "failed")


def completed(args, returncode=0, stdout="", stderr="", output=None):
    if output is not None:
        path = Path(args[args.index("--write-output") + 1])
        path.write_text(output)
    return subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr=stderr)


class TestOracleRunner(unittest.TestCase):
    def test_build_args(self):
        runner = OracleRunner(command=["oracle"], model="gpt-5", timeout_seconds=60)
        args = runner.build_args("prompt", Path("/tmp/models.json"), Path("/tmp/out.json"))
        self.assertEqual(args[:2], ["oracle", "--wait"])
        self.assertTrue(args[args.index("--slug") + 1].startswith("janus-model-refresh-"))
        self.assertEqual(args[args.index("--timeout") + 1], "60")
        self.assertEqual(args[-2:], ["--model", "gpt-5"])

    @patch("janus.models.oracle.subprocess.run")
    def test_reads_output_file(self, mock_run):
        mock_run.side_effect = lambda args, **kwargs: completed(args, output='{"ok": true}', stdout="ignored")
        result = OracleRunner().run("p", Path("models.json"))
        self.assertTrue(result.ok)
        self.assertEqual(result.text, '{"ok": true}')

    @patch("janus.models.oracle.subprocess.run")
    def test_falls_back_to_stdout(self, mock_run):
        mock_run.side_effect = lambda args, **kwargs: completed(args, stdout=" from stdout ")
        self.assertEqual(OracleRunner().run("p", Path("m.json")).text, "from stdout")

    @patch("janus.models.oracle.time.sleep")
    @patch("janus.models.oracle.subprocess.run")
    def test_retries_transient_exit(self, mock_run, mock_sleep):
        responses = iter([
            lambda args: completed(args, returncode=1, stderr="connection reset"),
            lambda args: completed(args, output="{}"),
        ])
        mock_run.side_effect = lambda args, **kwargs: next(responses)(args)
        result = OracleRunner(max_retries=2, retry_delay=0.5).run("p", Path("m.json"))
        self.assertTrue(result.ok)
        self.assertEqual(result.retries, 1)
        mock_sleep.assert_called_once_with(0.5)

    @patch("janus.models.oracle.subprocess.run")
    def test_permanent_error_not_retried(self, mock_run):
        mock_run.side_effect = lambda args, **kwargs: completed(args, returncode=1, stderr="Invalid API key")
        result = OracleRunner(max_retries=3).run("p", Path("m.json"))
        self.assertFalse(result.ok)
        self.assertEqual(mock_run.call_count, 1)

    @patch("janus.models.oracle.subprocess.run")
    def test_timeout_not_retried(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="oracle", timeout=1)
        result = OracleRunner(max_retries=3).run("p", Path("m.json"))
        self.assertEqual(result.error, "timeout")
        self.assertEqual(mock_run.call_count, 1)


if __name__ == "__main__":
    unittest.main()
