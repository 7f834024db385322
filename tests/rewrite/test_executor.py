"""Tests for HistoryRewriter."""

from datetime import UTC, datetime, timedelta

import pytest

from gitlineage.git import (
    ExternalToolError,
    GitLineageError,
    GitPythonGateway,
    NotFoundError,
    PartialFailureError,
    UnsafeOperationError,
)
from gitlineage.git.base import NameStatusEntry, NumstatEntry
from gitlineage.rewrite import HistoryRewriter, RewriteState
from gitlineage.rewrite.executor import compose_hash_maps
from gitlineage.rewrite.locking import repository_lock

NOW = datetime(2024, 5, 1, 12, 0, 10, tzinfo=UTC)
MESSAGES = {"c1": "feat: one", "c2": "feat: two", "c3": "feat: three"}


@pytest.fixture
def gateway(fake_gateway):
    """Three local commits, oldest first c1, c2, c3."""
    for offset, sha in enumerate(["c1", "c2", "c3"]):
        fake_gateway.add_commit(sha, timestamp=NOW + timedelta(minutes=offset))
    return fake_gateway


@pytest.fixture
def rewriter(gateway):
    """Rewriter with a fixed clock."""
    return HistoryRewriter(gateway, clock=lambda: NOW)


class TestComposeHashMaps:
    """Tests for compose_hash_maps."""

    def test_follows_chained_rewrites(self):
        """Test original hashes resolve through later rewrites."""
        first = {"a": "a1", "b": "b1", "c": "c1"}
        second = {"b1": "b2", "c1": "c2"}

        assert compose_hash_maps(first, second) == {
            "a": "a1",
            "b": "b2",
            "c": "c2",
            "b1": "b2",
            "c1": "c2",
        }

    def test_empty_previous(self):
        """Test the first rewrite passes through unchanged."""
        assert compose_hash_maps({}, {"a": "a1"}) == {"a": "a1"}


class TestCreateRewritePlan:
    """Tests for plan creation."""

    async def test_plan_with_explicit_messages(self, rewriter):
        """Test a plan carries messages, backup names, impact and a token."""
        plan = await rewriter.create_rewrite_plan(["c1", "c2"], MESSAGES)

        assert plan.state is RewriteState.PLANNED
        assert [(r.sha, r.new_message) for r in plan.commits] == [
            ("c1", "feat: one"),
            ("c2", "feat: two"),
        ]
        assert plan.safety_check.safe
        stamp = "2024-05-01T12-00-10-000000Z"
        assert plan.backup_strategy.branch_name == f"backup-feature/work-{stamp}"
        assert plan.backup_strategy.tag_name == f"backup-tag-{stamp}"
        assert plan.impact.affected_commits == 2
        assert plan.impact.affected_branches == ["feature/work"]
        assert plan.impact.dependent_branches == []
        assert plan.confirmation_token
        assert plan.expires_at == NOW + timedelta(seconds=300)
        assert plan.created_at == NOW

    async def test_plan_uses_suggestions(self, rewriter, gateway):
        """Test commits without an explicit message get a suggestion."""
        gateway.numstat["c1"] = [NumstatEntry(12, 0, "docs/guide.md")]
        gateway.name_status["c1"] = [NameStatusEntry("A", "docs/guide.md")]

        plan = await rewriter.create_rewrite_plan(["c1"])

        assert plan.commits[0].new_message.splitlines()[0] == (
            "docs(docs): add documentation"
        )
        assert plan.commits[0].original_message == "change"

    async def test_plan_fails_without_message(self, rewriter):
        """Test an unresolvable commit without a message fails planning."""
        with pytest.raises(GitLineageError, match="Cannot generate message"):
            await rewriter.create_rewrite_plan(["missing"])

    async def test_unsafe_plan_is_still_returned(self, rewriter, gateway):
        """Test planning reports unsafe conditions instead of raising."""
        gateway.remote_containing["c1"] = ["origin/feature/work"]

        plan = await rewriter.create_rewrite_plan(["c1"], MESSAGES)

        assert not plan.safety_check.safe
        assert "origin/feature/work" in (plan.safety_check.reason or "")


class TestRewriteCommitMessages:
    """Tests for plan execution."""

    async def test_rewrites_oldest_first(self, rewriter, gateway):
        """Test commits are processed oldest first whatever the plan order."""
        plan = await rewriter.create_rewrite_plan(["c3", "c1", "c2"], MESSAGES)

        result = await rewriter.rewrite_commit_messages(plan, plan.confirmation_token)

        assert gateway.reworded == ["c1", "c2", "c3"]
        assert result.state is RewriteState.COMPLETED
        assert plan.state is RewriteState.COMPLETED
        assert [(r.original_hash, r.new_hash) for r in result.commits] == [
            ("c1", "c1-new"),
            ("c2", "c2-new"),
            ("c3", "c3-new"),
        ]
        assert all(r.backup_ref == plan.backup_strategy.branch_name
                   for r in result.commits)
        assert gateway.calls[:2] == [
            ("create_branch", plan.backup_strategy.branch_name),
            ("create_tag", plan.backup_strategy.tag_name),
        ]
        result.raise_for_failures()

    async def test_equal_timestamps_order_by_distance_from_head(
        self, rewriter, gateway
    ):
        """Test ties are broken by how far the commit sits behind HEAD."""
        gateway.add_commit("x1", timestamp=NOW)
        gateway.add_commit("x2", timestamp=NOW)
        gateway.behind_head.update({"x1": 2, "x2": 1})

        plan = await rewriter.create_rewrite_plan(
            ["x2", "x1"], {"x1": "one", "x2": "two"}
        )
        await rewriter.rewrite_commit_messages(plan, plan.confirmation_token)

        assert gateway.reworded == ["x1", "x2"]

    async def test_invalid_token_is_refused(self, rewriter, gateway):
        """Test a wrong token refuses before anything is changed."""
        plan = await rewriter.create_rewrite_plan(["c1"], MESSAGES)

        with pytest.raises(UnsafeOperationError, match="confirmation token"):
            await rewriter.rewrite_commit_messages(plan, "wrong-token")

        assert gateway.calls == []
        assert plan.state is RewriteState.PLANNED

    async def test_token_for_other_plan_is_refused(self, rewriter):
        """Test a token only confirms the plan it was issued for."""
        plan = await rewriter.create_rewrite_plan(["c1"], MESSAGES)
        other = await rewriter.create_rewrite_plan(["c2"], MESSAGES)

        with pytest.raises(UnsafeOperationError):
            await rewriter.rewrite_commit_messages(plan, other.confirmation_token)

    async def test_unsafe_plan_is_refused(self, rewriter, gateway):
        """Test an unsafe plan cannot be executed even with a valid token."""
        gateway.dirty = True
        plan = await rewriter.create_rewrite_plan(["c1"], MESSAGES)

        with pytest.raises(UnsafeOperationError, match="Cannot proceed"):
            await rewriter.rewrite_commit_messages(plan, plan.confirmation_token)

        assert gateway.reworded == []

    async def test_plan_runs_once(self, rewriter):
        """Test an executed plan cannot be executed again."""
        plan = await rewriter.create_rewrite_plan(["c1"], MESSAGES)
        await rewriter.rewrite_commit_messages(plan, plan.confirmation_token)

        token = rewriter.generate_confirmation_token(plan)
        with pytest.raises(UnsafeOperationError, match="already completed"):
            await rewriter.rewrite_commit_messages(plan, token)

    async def test_partial_failure_continues(self, rewriter, gateway):
        """Test one failing commit does not stop the batch."""
        gateway.failures[("reword_commit", "c2")] = ExternalToolError("boom")
        plan = await rewriter.create_rewrite_plan(["c1", "c2", "c3"], MESSAGES)

        result = await rewriter.rewrite_commit_messages(plan, plan.confirmation_token)

        assert result.state is RewriteState.PARTIALLY_FAILED
        assert [r.original_hash for r in result.succeeded] == ["c1", "c3"]
        assert [(r.original_hash, r.error) for r in result.failed] == [("c2", "boom")]
        assert any("1 of 3 commits were not rewritten" in w for w in result.warnings)
        assert ("reset_hard", plan.backup_strategy.branch_name) not in gateway.calls

        with pytest.raises(PartialFailureError) as exc_info:
            result.raise_for_failures()
        assert exc_info.value.failed == ["c2"]

    async def test_unresolved_commit_is_reported(self, rewriter, gateway):
        """Test a commit that vanished after planning is a per-commit failure."""
        plan = await rewriter.create_rewrite_plan(["c1", "c2"], MESSAGES)
        gateway.failures[("count_commits", "c1")] = NotFoundError("gone")

        result = await rewriter.rewrite_commit_messages(plan, plan.confirmation_token)

        assert gateway.reworded == ["c2"]
        assert [r.original_hash for r in result.failed] == ["c1"]

    async def test_backup_failure_aborts(self, rewriter, gateway):
        """Test nothing is rewritten when the backup cannot be created."""
        gateway.failures[("create_tag", None)] = ExternalToolError("tag exists")
        plan = await rewriter.create_rewrite_plan(["c1"], MESSAGES)

        with pytest.raises(ExternalToolError, match="Failed to create backup"):
            await rewriter.rewrite_commit_messages(plan, plan.confirmation_token)

        assert gateway.reworded == []
        assert gateway.calls == [
            ("create_branch", plan.backup_strategy.branch_name),
            ("delete_branch", plan.backup_strategy.branch_name),
        ]
        assert plan.backup_strategy.branch_name not in gateway.refs

    async def test_refused_plan_keeps_its_token(self, rewriter, gateway):
        """Test a refusal for an unsafe plan does not spend the token."""
        gateway.dirty = True
        plan = await rewriter.create_rewrite_plan(["c1"], MESSAGES)

        with pytest.raises(UnsafeOperationError, match="Cannot proceed"):
            await rewriter.rewrite_commit_messages(plan, plan.confirmation_token)

        assert rewriter.token_issuer.verify(plan, plan.confirmation_token)

    async def test_concurrent_mutation_is_refused(self, rewriter, gateway):
        """Test a held repository lock refuses a second mutation."""
        plan = await rewriter.create_rewrite_plan(["c1"], MESSAGES)

        with repository_lock(gateway.lock_path()):
            with pytest.raises(UnsafeOperationError, match="in progress"):
                await rewriter.rewrite_commit_messages(
                    plan, plan.confirmation_token
                )

        assert gateway.reworded == []


class TestRollbackAndCleanup:
    """Tests for rollback_to_backup and cleanup_backups."""

    async def test_rollback(self, rewriter, gateway):
        """Test rollback resets to the backup and marks the plan."""
        plan = await rewriter.create_rewrite_plan(["c1"], MESSAGES)
        await rewriter.rewrite_commit_messages(plan, plan.confirmation_token)

        await rewriter.rollback_to_backup(plan.backup_strategy.branch_name, plan)

        assert gateway.calls[-1] == ("reset_hard", plan.backup_strategy.branch_name)
        assert plan.state is RewriteState.ROLLED_BACK

    async def test_rollback_missing_backup(self, rewriter, gateway):
        """Test rolling back to an unknown ref fails without resetting."""
        with pytest.raises(NotFoundError, match="Backup nope not found"):
            await rewriter.rollback_to_backup("nope")

        assert gateway.calls == []

    async def test_cleanup_is_best_effort(self, rewriter, gateway):
        """Test a failing branch deletion still deletes the tag."""
        plan = await rewriter.create_rewrite_plan(["c1"], MESSAGES)
        gateway.failures[("delete_branch", None)] = ExternalToolError("nope")

        await rewriter.cleanup_backups(plan.backup_strategy)

        assert gateway.calls == [("delete_tag", plan.backup_strategy.tag_name)]


class TestRealRepository:
    """Rewrite and rollback against a real repository."""

    async def test_rewrite_and_rollback(self, temp_repo, commit_file):
        """Test messages change, authorship survives and rollback restores HEAD."""
        repo_path, repo = temp_repo
        alice = ("Alice", "alice@example.com")
        commit_file(repo, "base.py", "base\n", "initial")
        repo.git.checkout("-b", "work")
        c1 = commit_file(repo, "a.py", "a\n", "wip 1", author=alice, epoch=1700000000)
        c2 = commit_file(repo, "b.py", "b\n", "wip 2", author=alice, epoch=1700000100)
        c3 = commit_file(repo, "c.py", "c\n", "wip 3", author=alice, epoch=1700000200)

        rewriter = HistoryRewriter(GitPythonGateway(str(repo_path)))
        plan = await rewriter.create_rewrite_plan(
            [c3.hexsha, c2.hexsha],
            {c2.hexsha: "feat: add b", c3.hexsha: "feat: add c"},
        )
        assert plan.safety_check.safe, plan.safety_check.reason

        result = await rewriter.rewrite_commit_messages(plan, plan.confirmation_token)

        assert result.state is RewriteState.COMPLETED
        head = repo.head.commit
        assert head.message == "feat: add c\n"
        assert head.parents[0].message == "feat: add b\n"
        assert head.parents[0].parents[0].hexsha == c1.hexsha
        assert head.author.name == "Alice"
        assert head.authored_date == 1700000200
        new_hashes = {r.original_hash: r.new_hash for r in result.commits}
        assert new_hashes == {
            c2.hexsha: head.parents[0].hexsha,
            c3.hexsha: head.hexsha,
        }
        assert repo.commit(plan.backup_strategy.branch_name).hexsha == c3.hexsha
        assert repo.active_branch.name == "work"

        await rewriter.rollback_to_backup(plan.backup_strategy.branch_name, plan)

        assert repo.head.commit.hexsha == c3.hexsha
        assert plan.state is RewriteState.ROLLED_BACK

        await rewriter.cleanup_backups(plan.backup_strategy)
        assert plan.backup_strategy.branch_name not in [b.name for b in repo.branches]
        assert plan.backup_strategy.tag_name not in [t.name for t in repo.tags]

    async def test_rewrite_with_abbreviated_hashes(self, temp_repo, commit_file):
        """Test short hashes still follow each target through earlier rewrites."""
        repo_path, repo = temp_repo
        commit_file(repo, "base.py", "base\n", "initial")
        repo.git.checkout("-b", "work")
        c1 = commit_file(repo, "a.py", "a\n", "wip 1", epoch=1700000000)
        c2 = commit_file(repo, "b.py", "b\n", "wip 2", epoch=1700000100)
        c3 = commit_file(repo, "c.py", "c\n", "wip 3", epoch=1700000200)
        short2, short3 = c2.hexsha[:8], c3.hexsha[:8]

        rewriter = HistoryRewriter(GitPythonGateway(str(repo_path)))
        plan = await rewriter.create_rewrite_plan(
            [short3, short2],
            {short2: "feat: add b", short3: "feat: add c"},
        )
        result = await rewriter.rewrite_commit_messages(plan, plan.confirmation_token)

        assert result.state is RewriteState.COMPLETED, result.commits
        head = repo.head.commit
        assert head.message == "feat: add c\n"
        assert head.parents[0].message == "feat: add b\n"
        assert head.parents[0].parents[0].hexsha == c1.hexsha
        assert {r.original_hash: r.new_hash for r in result.commits} == {
            short2: head.parents[0].hexsha,
            short3: head.hexsha,
        }
