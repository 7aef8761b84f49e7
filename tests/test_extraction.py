"""Tests for rule-based transcript extraction."""

from __future__ import annotations

import pytest

from compoundkb.errors import ExtractionError
from compoundkb.extraction.transcript import MAX_EXCERPT_CHARS, extract
from compoundkb.models import NO_FINDING, Finding, NoFinding


class TestCueExtraction:
    def test_symptom_cause_fix(self):
        transcript = [
            "The dashboard is slow, every request takes 4 seconds.",
            "Looking at the log, there is an N+1 query in DashboardController.",
            "It turned out each widget loads its owner separately.",
            "Fixed by adding includes(:owner) to the widgets query.",
        ]
        finding = extract(transcript, session_id="s-1")

        assert isinstance(finding, Finding)
        assert finding.symptom.startswith("The dashboard is slow")
        assert finding.root_cause == "It turned out each widget loads its owner separately."
        assert finding.fix == "Fixed by adding includes(:owner) to the widgets query."
        assert finding.session_id == "s-1"
        assert [e.event_index for e in finding.evidence] == [0, 2, 3]

    def test_last_fix_wins(self):
        transcript = [
            "The login test is failing on CI.",
            "Changed the fixture to freeze time. Still failing.",
            "Replaced the sleep with an explicit wait for the redirect.",
        ]
        finding = extract(transcript)
        assert finding.fix == "Replaced the sleep with an explicit wait for the redirect."

    def test_fix_before_symptom_is_ignored(self):
        transcript = [
            "Added a new endpoint for exports.",
            "Refactored the serializer.",
        ]
        assert extract(transcript) is NO_FINDING

    def test_because_opens_episode_then_explains(self):
        transcript = [
            "The upload fails because the file is too large.",
            "This happens because nginx caps the body at 1MB.",
            "Raised client_max_body_size and added a size check. Resolved.",
        ]
        finding = extract(transcript)
        assert finding.symptom == "The upload fails because the file is too large."
        assert finding.root_cause == "This happens because nginx caps the body at 1MB."

    def test_excerpts_are_clipped(self):
        long_symptom = "The build failed with error " + "x" * 400
        finding = extract([long_symptom, "Fixed by pinning the compiler."])
        assert len(finding.symptom) == MAX_EXCERPT_CHARS
        assert finding.symptom.endswith("...")


class TestLabeledExtraction:
    def test_labels_win_over_cues(self):
        transcript = [
            "The page crashed when I clicked save.",
            "Symptom: Saving a draft raises NoMethodError on nil author",
            "Root cause: drafts created by the API have no author",
            "Fix: default the author to the API token owner",
            "Also fixed a typo in the footer.",
        ]
        finding = extract(transcript)
        assert finding.symptom == "Saving a draft raises NoMethodError on nil author"
        assert finding.root_cause == "drafts created by the API have no author"
        assert finding.fix == "default the author to the API token owner"

    def test_decision_label(self):
        transcript = [
            "Context: we need to choose between Sidekiq and GoodJob",
            "Decision: use GoodJob so jobs live in Postgres",
        ]
        finding = extract(transcript)
        assert finding.symptom == "we need to choose between Sidekiq and GoodJob"
        assert finding.fix == "use GoodJob so jobs live in Postgres"
        assert finding.root_cause is None

    def test_category_label_sets_hint(self):
        transcript = [
            "Category: performance",
            "Problem: report export times out",
            "Solution: stream rows instead of building the file in memory",
        ]
        assert extract(transcript).category_hint == "performance"

    def test_explicit_hint_beats_label(self):
        transcript = [
            "Type: ui",
            "Bug: modal closes on first click",
            "Fix: stop event propagation in the close handler",
        ]
        assert extract(transcript, category_hint="ui-bug").category_hint == "ui-bug"


class TestNoFinding:
    def test_exploration_only_session(self):
        transcript = [
            "Read the README to get oriented.",
            "Looked through app/models/user.rb and the routes file.",
            "Nothing to change today.",
        ]
        result = extract(transcript)
        assert result is NO_FINDING
        assert isinstance(result, NoFinding)
        assert not result

    def test_symptom_without_fix(self):
        assert extract(["The nightly job failed again.", "Will look tomorrow."]) is NO_FINDING


class TestMalformedTranscript:
    @pytest.mark.parametrize(
        "transcript",
        [
            [],
            ["", "   "],
            "a single string is not a transcript",
            None,
            ["fine", 42],
        ],
    )
    def test_raises(self, transcript):
        with pytest.raises(ExtractionError):
            extract(transcript)
