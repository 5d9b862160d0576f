"""Tests for the executor runner and ExecutorSwarm."""
import json
import tempfile
import time
import unittest
from pathlib import Path

from fakes import FakeProvider, make_router, model, temp_store, write_catalog

from janus.audit import AuditLog
from janus.errors import BudgetExceededError
from janus.executor import ExecutorSafety, ExecutorSwarm
from janus.executor.runner import run_command, truncate
from janus.executor.swarm import MAX_LABEL_CHARS, safe_artifact_name


def plan_json(*actions):
    return json.dumps({
        "version": 1,
        "goal": "demo",
        "actions": list(actions),
        "successCriteria": ["done"],
    })


class TestRunCommand(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.cwd = Path(tmp.name)

    async def test_captures_output(self):
        result = await run_command(["echo", "hello"], self.cwd, 5000)
        self.assertTrue(result.ok)
        self.assertEqual(result.exit_code, 0)
        self.assertEqual(result.stdout, "hello\n")
        self.assertFalse(result.timed_out)

    async def test_nonzero_exit(self):
        result = await run_command(["false"], self.cwd, 5000)
        self.assertFalse(result.ok)
        self.assertNotEqual(result.exit_code, 0)

    async def test_timeout_kills_process(self):
        started = time.monotonic()
        result = await run_command(["sleep", "999"], self.cwd, 100)
        self.assertTrue(result.timed_out)
        self.assertFalse(result.ok)
        self.assertEqual(result.signal, "SIGKILL")
        self.assertLess(time.monotonic() - started, 5)

    async def test_missing_binary(self):
        result = await run_command(["definitely-not-a-real-binary-xyz"], self.cwd, 1000)
        self.assertIsNone(result.exit_code)
        self.assertTrue(result.stderr)

    def test_truncate(self):
        self.assertEqual(truncate("abc", 5), "abc")
        self.assertEqual(truncate("abcdef", 3), "abc\n... (truncated to 3 chars)")


class TestArtifactNames(unittest.TestCase):
    def test_short_names_are_sanitized_only(self):
        self.assertEqual(safe_artifact_name("pytest -q/x"), "pytest_-q_x")

    def test_long_names_are_capped_and_distinct(self):
        first = safe_artifact_name("echo_" + "a" * 300)
        second = safe_artifact_name("echo_" + "a" * 299 + "b")
        self.assertEqual(len(first), MAX_LABEL_CHARS + 11)
        self.assertTrue(first.startswith("echo_aaa"))
        self.assertNotEqual(first, second)


class FakePeerRater:
    def __init__(self):
        self.calls = []

    async def maybe_rate_previous(self, rater, session_id):
        self.calls.append((rater.model_key, session_id))


class ExecutorTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = temp_store(self)
        repo = tempfile.TemporaryDirectory()
        self.addCleanup(repo.cleanup)
        self.repo = Path(repo.name)
        write_catalog(self.store, [model("planner", "anthropic", price_in=1, price_out=2)])
        self.provider = FakeProvider()
        self.router = make_router(self.store, {"anthropic": self.provider}, remaining=10.0)
        self.safety = ExecutorSafety(
            repo_root=self.repo,
            max_command_ms=5000,
            allowed_commands=frozenset({"echo", "false", "sleep"}),
        )

    def reply(self, text):
        self.provider.responses["planner-id"] = text

    def executor(self, **kwargs):
        return ExecutorSwarm(self.router, self.store, self.safety, **kwargs)

    def receipt(self):
        return json.loads((self.store.root / "artifacts/s1/t1/executor-run.json").read_text())


class TestExecutorRun(ExecutorTestCase):
    async def test_successful_plan(self):
        self.reply(plan_json(
            {"type": "write_file", "path": "src/hello.txt", "content": "hi"},
            {"type": "run_command", "command": ["echo", "done"]},
        ))
        result = await self.executor().run("s1", "t1", "write a greeting")

        self.assertTrue(result.success, result.error)
        self.assertEqual(result.output_summary, "Executor completed 2 actions successfully.")
        self.assertEqual((self.repo / "src" / "hello.txt").read_text(), "hi")
        base = "artifacts/s1/t1/"
        for name in ("executor-plan.prompt.txt", "executor-plan.raw.txt", "executor-plan.json",
                     "actions/01-write_file-src_hello.txt.txt", "commands/02-echo_done.stdout.log",
                     "commands/02-echo_done.json", "executor-run.json"):
            self.assertIn(base + name, result.artifacts)
        self.assertEqual((self.store.root / base / "commands/02-echo_done.stdout.log").read_text(), "done\n")
        self.assertTrue(self.receipt()["success"])
        self.assertEqual(result.model_key, "planner")
        self.assertGreater(result.cost_usd, 0)
        self.assertEqual(self.router.ledger.entries[0].operation, "executor-plan")
        self.assertEqual(self.provider.calls[0]["max_tokens"], 1800)
        last = self.store.read_last_model_run()
        self.assertEqual((last["operation"], last["taskId"]), ("executor-plan", "t1"))

    async def test_path_traversal_rejected_before_any_action(self):
        self.reply(plan_json(
            {"type": "run_command", "command": ["echo", "first"]},
            {"type": "write_file", "path": "../../etc/passwd", "content": "pwned"},
        ))
        result = await self.executor().run("s1", "t1", "bad")

        self.assertFalse(result.success)
        self.assertIn("Path traversal blocked", result.error)
        self.assertEqual(result.output_summary, "Executor failed.")
        self.assertEqual(result.artifacts, ["artifacts/s1/t1/executor-run.json"])
        receipt = self.receipt()
        self.assertFalse(receipt["success"])
        self.assertEqual(receipt["actionResults"], [])
        self.assertIn("rawResponse", receipt)
        self.assertIn("Goal:\nbad", receipt["prompt"])
        self.assertEqual(list(self.repo.iterdir()), [])

    async def test_long_command_gets_bounded_artifact_names(self):
        long_arg = "x" * 300
        self.reply(plan_json(
            {"type": "run_command", "command": ["echo", long_arg]},
            {"type": "write_file", "path": "deep/" + "y" * 200 + ".txt", "content": "ok"},
        ))
        result = await self.executor().run("s1", "t1", "echo a long line")

        self.assertTrue(result.success, result.error)
        logs = [ref for ref in result.artifacts if ref.endswith(".stdout.log")]
        self.assertEqual(len(logs), 1)
        name = Path(logs[0]).name
        self.assertLess(len(name), 120)
        self.assertEqual((self.store.root / logs[0]).read_text(), long_arg + "\n")
        actions = [ref for ref in result.artifacts if "/actions/" in ref]
        self.assertLess(len(Path(actions[0]).name), 120)
        self.assertNotIn("prompt", self.receipt())

    async def test_command_timeout_halts_plan(self):
        self.reply(plan_json(
            {"type": "run_command", "command": ["sleep", "999"], "timeoutMs": 100},
            {"type": "write_file", "path": "after.txt", "content": "never"},
        ))
        started = time.monotonic()
        result = await self.executor().run("s1", "t1", "slow")

        self.assertLess(time.monotonic() - started, 5)
        self.assertFalse(result.success)
        self.assertEqual(result.output_summary, "Executor failed during command execution.")
        self.assertIn("timed out", result.error)
        self.assertFalse((self.repo / "after.txt").exists())
        receipt = self.receipt()
        self.assertFalse(receipt["success"])
        self.assertTrue(receipt["actionResults"][0]["timedOut"])
        self.assertEqual(len(receipt["actionResults"]), 1)

    async def test_failing_command_halts_plan(self):
        self.reply(plan_json(
            {"type": "run_command", "command": ["false"]},
            {"type": "run_command", "command": ["echo", "unreached"]},
        ))
        result = await self.executor().run("s1", "t1", "fail")
        self.assertFalse(result.success)
        self.assertIn("Command failed", result.error)
        self.assertEqual(len(self.receipt()["actionResults"]), 1)

    async def test_disallowed_command(self):
        self.reply(plan_json({"type": "run_command", "command": ["rm", "-rf", "/"]}))
        result = await self.executor().run("s1", "t1", "nuke")
        self.assertFalse(result.success)
        self.assertIn("Command not allowed by policy: rm", result.error)

    async def test_non_json_plan(self):
        self.reply("Sorry, I can't help with that.")
        result = await self.executor().run("s1", "t1", "x")
        self.assertFalse(result.success)
        self.assertEqual(result.error, "Model did not return a JSON object.")
        self.assertEqual(self.receipt()["rawResponse"], "Sorry, I can't help with that.")

    async def test_provider_error_is_reported(self):
        self.reply(RuntimeError("connection dropped"))
        result = await self.executor().run("s1", "t1", "x")
        self.assertFalse(result.success)
        self.assertIn("connection dropped", result.error)
        events = [e["event"] for e in AuditLog.for_run(self.store, "s1", "t1").events()]
        self.assertEqual(events, ["executor_start", "executor_failed"])

    async def test_peer_rater_is_invoked(self):
        self.reply(plan_json({"type": "run_command", "command": ["echo", "x"]}))
        rater = FakePeerRater()
        await self.executor(peer_rater=rater).run("s1", "t1", "x")
        self.assertEqual(rater.calls, [("planner", "s1")])


class TestExecutorBudget(ExecutorTestCase):
    async def test_exhausted_budget_raises(self):
        self.router.ledger.remaining_usd = 0.0
        with self.assertRaises(BudgetExceededError):
            await self.executor().run("s1", "t1", "x")
        self.assertEqual(self.provider.calls, [])

    async def test_estimate_over_remaining_raises(self):
        # 1800 output tokens at $2/MTok is $0.0036.
        self.router.ledger.remaining_usd = 0.001
        with self.assertRaises(BudgetExceededError):
            await self.executor().run("s1", "t1", "x")
        self.assertEqual(self.provider.calls, [])
        self.assertFalse((self.store.root / "artifacts").exists())


if __name__ == "__main__":
    unittest.main()
