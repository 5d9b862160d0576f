"""Tests for executor plan parsing and the safety policy."""
import tempfile
import unittest
from pathlib import Path

from janus.errors import PlanValidationError
from janus.executor.plan import ExecutorPlan, RunCommand, WriteFile, parse_plan
from janus.executor.safety import ExecutorSafety, resolve_repo_path, validate_action, validate_plan


class TestParsePlan(unittest.TestCase):
    def test_valid_plan(self):
        plan = parse_plan("""Plan:
        {"version": 1, "goal": "g", "actions": [
            {"type": "write_file", "path": "a.txt", "content": "x"},
            {"type": "run_command", "command": ["pytest", "-q"], "timeoutMs": 5000}
        ], "successCriteria": ["tests pass"]}""")
        self.assertEqual(plan.actions[0], WriteFile(path="a.txt", content="x"))
        self.assertEqual(plan.actions[1].timeout_ms, 5000)
        self.assertEqual(plan.to_dict()["actions"][1]["type"], "run_command")

    def test_no_json(self):
        with self.assertRaises(PlanValidationError) as ctx:
            parse_plan("I cannot do that.")
        self.assertEqual(str(ctx.exception), "Model did not return a JSON object.")

    def test_schema_violations(self):
        bad_plans = [
            '{"version": 2, "actions": [], "successCriteria": []}',
            '{"version": true, "actions": [{"type": "run_command", "command": ["ls"]}], "successCriteria": []}',
            '{"version": 1, "actions": [], "successCriteria": []}',
            '{"version": 1, "actions": [{"type": "run_command", "command": ["ls"]}]}',
            '{"version": 1, "actions": [{"type": "delete", "path": "a"}], "successCriteria": []}',
            '{"version": 1, "actions": [{"type": "run_command", "command": "ls -la"}], "successCriteria": []}',
            '{"version": 1, "actions": [{"type": "run_command", "command": ["ls"], "timeoutMs": true}], "successCriteria": []}',
            '{"version": 1, "actions": [{"type": "write_file", "path": "", "content": "x"}], "successCriteria": []}',
        ]
        for text in bad_plans:
            with self.subTest(text=text):
                with self.assertRaises(PlanValidationError):
                    parse_plan(text)


class TestSafety(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.root = Path(tmp.name)
        self.safety = ExecutorSafety(repo_root=self.root, max_actions=2, max_command_ms=1000, max_file_bytes=10)

    def test_resolve_inside_root(self):
        self.assertEqual(resolve_repo_path(self.root, "src/a.py"), self.root.resolve() / "src" / "a.py")

    def test_traversal_and_absolute_paths_blocked(self):
        with self.assertRaisesRegex(PlanValidationError, "Path traversal blocked"):
            resolve_repo_path(self.root, "../../etc/passwd")
        with self.assertRaisesRegex(PlanValidationError, "Path traversal blocked"):
            resolve_repo_path(self.root, "src/../../x")
        with self.assertRaisesRegex(PlanValidationError, "Absolute paths blocked"):
            resolve_repo_path(self.root, "/etc/passwd")

    def test_symlink_escape_blocked(self):
        outside = tempfile.TemporaryDirectory()
        self.addCleanup(outside.cleanup)
        (self.root / "link").symlink_to(outside.name)
        with self.assertRaisesRegex(PlanValidationError, "escapes repo root"):
            resolve_repo_path(self.root, "link/file.txt")

    def test_file_size_limit(self):
        validate_action(WriteFile(path="a", content="x" * 10), self.safety)
        with self.assertRaisesRegex(PlanValidationError, "too large"):
            validate_action(WriteFile(path="a", content="x" * 11), self.safety)

    def test_command_allowlist(self):
        validate_action(RunCommand(command=["pytest", "-q"]), self.safety)
        with self.assertRaisesRegex(PlanValidationError, "Command not allowed by policy: bash"):
            validate_action(RunCommand(command=["bash", "-c", "ls"]), self.safety)

    def test_git_subcommands(self):
        validate_action(RunCommand(command=["git", "status"]), self.safety)
        with self.assertRaisesRegex(PlanValidationError, "git subcommand not allowed: push"):
            validate_action(RunCommand(command=["git", "push"]), self.safety)
        with self.assertRaisesRegex(PlanValidationError, r"\(missing\)"):
            validate_action(RunCommand(command=["git"]), self.safety)

    def test_destructive_fragments(self):
        with self.assertRaisesRegex(PlanValidationError, "Destructive pattern blocked"):
            validate_action(RunCommand(command=["python", "-c", "import os; os.system('sudo ls')"]), self.safety)

    def test_timeout_above_policy(self):
        with self.assertRaisesRegex(PlanValidationError, "timeout exceeds policy max"):
            validate_action(RunCommand(command=["pytest"], timeout_ms=5000), self.safety)

    def test_plan_limits(self):
        action = RunCommand(command=["pytest"])
        validate_plan(ExecutorPlan(goal="g", actions=[action, action]), self.safety)
        with self.assertRaisesRegex(PlanValidationError, "exceeds maxActions"):
            validate_plan(ExecutorPlan(goal="g", actions=[action] * 3), self.safety)
        with self.assertRaisesRegex(PlanValidationError, "zero actions"):
            validate_plan(ExecutorPlan(goal="g", actions=[]), self.safety)

    def test_from_config(self):
        safety = ExecutorSafety.from_config({"max_actions": "3", "allowed_commands": ["make"]}, self.root)
        self.assertEqual(safety.max_actions, 3)
        self.assertEqual(safety.allowed_commands, frozenset({"make"}))
        self.assertIn("diff", safety.allowed_git_subcommands)


if __name__ == "__main__":
    unittest.main()
