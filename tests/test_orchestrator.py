"""Tests for the migration orchestrator state machine."""

from unittest.mock import Mock

import pytest
from github import GithubException

from jira_to_github_migrator.ledger import FAILURES_FILE_NAME, MigrationLedger
from jira_to_github_migrator.markup import MAX_BODY_LENGTH, MarkdownEngine
from jira_to_github_migrator.models import ImportJob, ImportResult, IssueLink, SourceUser, TargetMilestone
from jira_to_github_migrator.orchestrator import MigrationOrchestrator, MigrationState
from jira_to_github_migrator.profiles import get_profile

JIRA = "https://jira.example.org"
MILESTONES = {
    "5.0.9": TargetMilestone(1, "5.0.9", "closed"),
    "4.3.19": TargetMilestone(2, "4.3.19", "closed"),
}


class FakeImportClient:
    """Import client answering from memory, numbering issues from 101."""

    def __init__(self, *, fail_submit: tuple[str, ...] = (), fail_import: tuple[str, ...] = ()) -> None:
        self.fail_submit = fail_submit
        self.fail_import = fail_import
        self.events: list[tuple[str, str]] = []
        self.jobs: list[ImportJob] = []
        self.next_number = 100

    def submit(self, payload, comments=(), *, source_key=None, holder_for=None) -> ImportJob:
        label = source_key or holder_for
        if label in self.fail_submit:
            raise GithubException(422, {"message": "Validation Failed"}, {})
        self.events.append(("submit", label))
        job = ImportJob(payload, tuple(comments), f"https://api.github.com/import/{label}", 0.0, source_key, holder_for)
        self.jobs.append(job)
        return job

    def wait_for(self, job: ImportJob) -> ImportResult:
        label = job.source_key or job.holder_for
        self.events.append(("wait", label))
        if label in self.fail_import:
            return ImportResult(error="status: failed")
        self.next_number += 1
        return ImportResult(issue_number=self.next_number)

    def submitted(self) -> list[str]:
        return [label for event, label in self.events if event == "submit"]


def _failure_entries(tmp_path) -> list[str]:
    lines = (tmp_path / FAILURES_FILE_NAME).read_text(encoding="utf-8").splitlines()
    return [line for line in lines if line.startswith("=> ")]


@pytest.mark.unit
class TestMigrationOrchestrator:
    def setup_method(self) -> None:
        self.target = Mock()
        self.target.get_milestones.return_value = dict(MILESTONES)

    def _orchestrator(self, client, ledger, **kwargs) -> MigrationOrchestrator:
        return MigrationOrchestrator(
            client=client,
            ledger=ledger,
            profile=kwargs.pop("profile", get_profile("default")),
            markup=MarkdownEngine(JIRA),
            project_key="SPR",
            target=self.target,
            **kwargs,
        )

    def test_failed_submission_is_retried_on_next_run(self, tmp_path, make_issue) -> None:
        issues = [make_issue("SPR-1"), make_issue("SPR-2"), make_issue("SPR-3")]

        client = FakeImportClient(fail_submit=("SPR-2",))
        with MigrationLedger.open(tmp_path) as ledger:
            result = self._orchestrator(client, ledger).run(issues)
            assert ledger.issue_number_for("SPR-1") is not None
            assert ledger.issue_number_for("SPR-2") is None
            assert ledger.issue_number_for("SPR-3") is not None

        assert result.state is MigrationState.HALTED
        assert result.stats.primary_succeeded == 2
        assert result.stats.primary_failed == 1
        entries = _failure_entries(tmp_path)
        assert len(entries) == 1
        assert entries[0].startswith("=> SPR-2 [submission failed:")

        retry_client = FakeImportClient()
        with MigrationLedger.open(tmp_path) as ledger:
            result = self._orchestrator(retry_client, ledger).run(issues)
            assert ledger.issue_number_for("SPR-2") is not None

        assert retry_client.submitted() == ["SPR-2"]
        assert result.state is MigrationState.DONE
        assert result.stats.issues_already_migrated == 2

    def test_one_holder_for_shared_backport(self, tmp_path, make_issue) -> None:
        backported = {
            "resolution": "Fixed",
            "fix_versions": ("5.0.9", "4.3.19"),
            "fix_version": "5.0.9",
            "backport_versions": ("4.3.19",),
        }
        issues = [make_issue("SPR-1", **backported), make_issue("SPR-2", **backported)]
        client = FakeImportClient()

        with MigrationLedger.open(tmp_path) as ledger:
            result = self._orchestrator(client, ledger).run(issues)
            first = ledger.issue_number_for("SPR-1")
            second = ledger.issue_number_for("SPR-2")
            holder = ledger.holder_number_for("4.3.19")

        assert result.completed
        assert client.submitted() == ["SPR-1", "SPR-2", "4.3.19"]
        assert [job.payload.milestone for job in client.jobs] == [1, 1, 2]
        holder_job = client.jobs[2]
        assert holder_job.payload.title == "4.3.19 Backport Issues"
        assert holder_job.payload.body == f"**#{first}** - Summary of SPR-1\n**#{second}** - Summary of SPR-2"
        assert holder == 103
        assert result.stats.holders_succeeded == 1

    def test_existing_holder_not_recreated_on_rerun(self, tmp_path, make_issue) -> None:
        issue = make_issue("SPR-1", fix_version="5.0.9", backport_versions=("4.3.19",))
        with MigrationLedger.open(tmp_path) as ledger:
            self._orchestrator(FakeImportClient(), ledger).run([issue])

        client = FakeImportClient()
        with MigrationLedger.open(tmp_path) as ledger:
            result = self._orchestrator(client, ledger).run([issue])

        assert client.submitted() == []
        assert result.completed

    def test_failed_import_halts_before_backports(self, tmp_path, make_issue) -> None:
        issues = [
            make_issue("SPR-1", fix_version="5.0.9", backport_versions=("4.3.19",)),
            make_issue("SPR-2", links=(IssueLink("outward", "depends on", "SPR-1"),)),
        ]
        client = FakeImportClient(fail_import=("SPR-1",))

        with MigrationLedger.open(tmp_path) as ledger:
            result = self._orchestrator(client, ledger).run(issues)

        assert result.state is MigrationState.HALTED
        assert "1 primary imports failed" in (result.halted_reason or "")
        assert client.submitted() == ["SPR-1", "SPR-2"]
        self.target.create_comment.assert_not_called()
        assert _failure_entries(tmp_path) == ["=> SPR-1 [status: failed]"]
        assert "Halted:" in result.summary()

    def test_checkpoint_batches_are_awaited_before_next_batch(self, tmp_path, make_issue) -> None:
        issues = [make_issue(f"SPR-{n}") for n in range(1, 4)]
        client = FakeImportClient()

        with MigrationLedger.open(tmp_path) as ledger:
            self._orchestrator(client, ledger, checkpoint_size=2).run(issues)

        assert client.events == [
            ("submit", "SPR-1"),
            ("submit", "SPR-2"),
            ("wait", "SPR-1"),
            ("wait", "SPR-2"),
            ("submit", "SPR-3"),
            ("wait", "SPR-3"),
        ]

    def test_restricted_issues_are_skipped(self, tmp_path, make_issue) -> None:
        issues = [make_issue("SPR-1"), make_issue("SPR-2", is_public=False)]
        client = FakeImportClient()

        with MigrationLedger.open(tmp_path) as ledger:
            result = self._orchestrator(client, ledger).run(issues)

        assert client.submitted() == ["SPR-1"]
        assert result.stats.issues_restricted == 1
        assert result.stats.issues_total == 2

    def test_markup_failure_is_recorded(self, tmp_path, make_issue) -> None:
        issues = [make_issue("SPR-1", description="x" * (MAX_BODY_LENGTH + 1)), make_issue("SPR-2")]
        client = FakeImportClient()

        with MigrationLedger.open(tmp_path) as ledger:
            result = self._orchestrator(client, ledger).run(issues)

        assert client.submitted() == ["SPR-2"]
        assert result.state is MigrationState.HALTED
        assert _failure_entries(tmp_path)[0].startswith("=> SPR-1 [markup conversion failed:")

    def test_missing_milestone_is_a_data_integrity_failure(self, tmp_path, make_issue) -> None:
        issues = [make_issue("SPR-1", fix_version="6.0"), make_issue("SPR-2", fix_version="Waiting for Triage")]
        client = FakeImportClient()

        with MigrationLedger.open(tmp_path) as ledger:
            result = self._orchestrator(client, ledger).run(issues)

        assert result.completed
        assert result.stats.data_integrity_failures == 1
        assert [job.payload.milestone for job in client.jobs] == [None, None]
        failures = (tmp_path / FAILURES_FILE_NAME).read_text(encoding="utf-8")
        assert "SPR-1: fix version '6.0' has no milestone" in failures

    def test_labels_users_and_processors_applied(self, tmp_path, make_issue) -> None:
        issue = make_issue(
            "SPR-1",
            description="Reported by [~jdoe]",
            assignee=SourceUser("jhoeller", "Juergen Hoeller"),
            fix_version="General Backlog",
        )
        client = FakeImportClient()

        with MigrationLedger.open(tmp_path) as ledger:
            self._orchestrator(
                client,
                ledger,
                profile=get_profile("spr"),
                label_mapping={"type: bug": "bug"},
                user_mapping={"jhoeller": "jhoeller"},
            ).run([issue])

        payload = client.jobs[0].payload
        assert payload.labels == ["bug"]
        assert payload.assignee is None
        assert "Reported by [John Doe](" in payload.body

    def test_processors_see_labels_before_translation(self, tmp_path, make_issue) -> None:
        issue = make_issue("SPR-1", assignee=SourceUser("jhoeller", "Juergen Hoeller"))
        client = FakeImportClient()

        with MigrationLedger.open(tmp_path) as ledger:
            self._orchestrator(
                client,
                ledger,
                profile=get_profile("spr"),
                label_mapping={"status: waiting-for-triage": "triage"},
                user_mapping={"jhoeller": "jhoeller"},
            ).run([issue])

        payload = client.jobs[0].payload
        assert "triage" in payload.labels
        assert payload.assignee is None

    def test_cross_links_posted_after_import(self, tmp_path, make_issue) -> None:
        issues = [
            make_issue("SPR-1", links=(IssueLink("outward", "depends on", "SPR-2"),)),
            make_issue("SPR-2"),
        ]
        with MigrationLedger.open(tmp_path) as ledger:
            result = self._orchestrator(FakeImportClient(), ledger).run(issues)

        self.target.create_comment.assert_called_once_with(101, "**Related issues:**\n- depends on #102")
        assert result.stats.cross_links_created == 1

    def test_cross_links_posted_once_after_halted_run_resumes(self, tmp_path, make_issue) -> None:
        issues = [
            make_issue("SPR-1", links=(IssueLink("outward", "depends on", "SPR-3"),)),
            make_issue("SPR-2"),
            make_issue("SPR-3"),
        ]

        with MigrationLedger.open(tmp_path) as ledger:
            result = self._orchestrator(FakeImportClient(fail_submit=("SPR-2",)), ledger).run(issues)
        assert result.state is MigrationState.HALTED
        self.target.create_comment.assert_not_called()

        with MigrationLedger.open(tmp_path) as ledger:
            result = self._orchestrator(FakeImportClient(), ledger).run(issues)
            first = ledger.issue_number_for("SPR-1")
            third = ledger.issue_number_for("SPR-3")
        assert result.completed
        assert result.stats.cross_links_created == 1
        self.target.create_comment.assert_called_once_with(first, f"**Related issues:**\n- depends on #{third}")

        with MigrationLedger.open(tmp_path) as ledger:
            result = self._orchestrator(FakeImportClient(), ledger).run(issues)
        assert result.stats.cross_links_created == 0
        assert self.target.create_comment.call_count == 1

    def test_prepare_creates_milestones(self, tmp_path) -> None:
        self.target.create_milestones.return_value = {"5.0.9": MILESTONES["5.0.9"]}
        with MigrationLedger.open(tmp_path) as ledger:
            orchestrator = self._orchestrator(FakeImportClient(), ledger)
            milestones = orchestrator.prepare([])
            orchestrator.run([])

        assert milestones == {"5.0.9": MILESTONES["5.0.9"]}
        self.target.get_milestones.assert_not_called()
        accepts = self.target.create_milestones.call_args.args[1]
        assert not accepts("Waiting for Triage")
