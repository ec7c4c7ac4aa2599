"""Tests for the checklist projection and depth-limited parent walks."""

from __future__ import annotations

from conftest import FakeGitHubClient, FakeJpdClient, make_gateway

from jpd_github_sync.sync.hierarchy import (
    HierarchyProjector,
    checklist_entries,
    insert_checklist_line,
    merge_checklist,
    parse_parent_reference,
    render_checklist,
    render_parent_section,
    set_checkbox,
)
from jpd_github_sync.sync.state import decode_state, encode_state

PARENT_BODY = """Parent description

## 📋 Subtasks

- [x] #12 Done already
- [ ] #13 Still open

Footer text"""


# ---------------------------------------------------------------------------
# Pure body operations
# ---------------------------------------------------------------------------


class TestParsing:
    def test_checklist_entries(self):
        assert checklist_entries(PARENT_BODY) == {
            12: (True, "Done already"),
            13: (False, "Still open"),
        }

    def test_number_prefix_does_not_match_longer_number(self):
        assert 1 not in checklist_entries("- [ ] #12 x")

    def test_uppercase_x_counts_as_checked(self):
        assert checklist_entries("- [X] #4 y") == {4: (True, "y")}

    def test_parent_reference(self):
        assert parse_parent_reference("## 🔗 Parent\n\nParent: #7") == 7
        assert parse_parent_reference("Parent Epic: #9") == 9
        assert parse_parent_reference("no parent here") is None

    def test_parent_reference_accepts_placeholders(self):
        assert parse_parent_reference("Parent: #-2") == -2

    def test_parent_reference_ignores_state_block(self):
        body = encode_state("", "K-1", "t", "h", parent_jpd_id="K-0")
        assert parse_parent_reference(body) is None

    def test_parent_section_wins_over_description_mentions(self):
        body = (
            "Split out of Parent: #99 last sprint\n\n"
            "## 🔗 Parent\n\nParent: #4\n- JPD: MTT-1\n\n"
            "## 📋 Subtasks\n\n- [ ] #7 Parent: #5 rework"
        )
        assert parse_parent_reference(body) == 4

    def test_without_section_last_reference_wins(self):
        assert parse_parent_reference("Parent: #99\n\nParent: #4") == 4

    def test_configured_parent_title(self):
        body = "Parent: #99 quoted\n\n## Belongs to\n\nParent: #4"
        assert parse_parent_reference(body, "Belongs to") == 4


class TestSetCheckbox:
    def test_flips_only_that_line(self):
        body = set_checkbox(PARENT_BODY, 13, True)
        assert "- [x] #13 Still open" in body
        assert "- [x] #12 Done already" in body
        assert body.replace("- [x] #13", "- [ ] #13") == PARENT_BODY

    def test_unchecks(self):
        body = set_checkbox(PARENT_BODY, 12, False)
        assert "- [ ] #12 Done already" in body


class TestInsertChecklistLine:
    def test_inserts_directly_under_header(self):
        body = insert_checklist_line(PARENT_BODY, 14, "New one", False)
        lines = body.splitlines()
        header = lines.index("## 📋 Subtasks")
        assert lines[header + 2] == "- [ ] #14 New one"
        assert lines[header + 3] == "- [x] #12 Done already"

    def test_at_end_goes_after_existing_list(self):
        body = insert_checklist_line(PARENT_BODY, 14, "Last", True, at_end=True)
        assert "- [ ] #13 Still open\n- [x] #14 Last\n\nFooter text" in body

    def test_accepts_header_synonyms(self):
        body = insert_checklist_line("## Sub-issues\n", 3, "x", False)
        assert "## Sub-issues\n\n- [ ] #3 x" in body
        assert body.count("##") == 1

    def test_configured_title_counts_as_header(self):
        body = insert_checklist_line(
            "Intro\n\n## Tasks\n\n- [ ] #2 A", 3, "B", False, "Tasks"
        )
        assert body == "Intro\n\n## Tasks\n\n- [ ] #3 B\n- [ ] #2 A"

    def test_unrecognised_header_is_plain_content(self):
        body = insert_checklist_line("## Tasks I like\n\ntext", 3, "x", False)
        assert "## 📋 Subtasks\n\n- [ ] #3 x" in body
        assert body.startswith("## Tasks I like")

    def test_creates_section_before_state_block(self):
        original = encode_state("Description", "K-1", "t", "h")
        body = insert_checklist_line(original, 5, "Child", False)
        assert body.index("- [ ] #5 Child") < body.index("<!-- jpd-sync-metadata")
        assert body.startswith("Description\n\n## 📋 Subtasks")
        assert decode_state(body).jpd_id == "K-1"

    def test_empty_body(self):
        assert insert_checklist_line("", 5, "Child", True) == (
            "## 📋 Subtasks\n\n- [x] #5 Child"
        )

    def test_separates_from_following_content(self):
        body = insert_checklist_line("## Subtasks\nParagraph", 2, "t", False)
        assert body == "## Subtasks\n- [ ] #2 t\n\nParagraph"


class TestRendering:
    def test_render_checklist(self):
        assert render_checklist([(2, "A", False), (3, "B", True)]) == (
            "## 📋 Subtasks\n\n- [ ] #2 A\n- [x] #3 B"
        )

    def test_render_checklist_empty(self):
        assert render_checklist([]) == ""

    def test_render_parent_section(self):
        text = render_parent_section(
            4, "MTT-1", "https://acme.atlassian.net/browse/MTT-1"
        )
        assert text == (
            "## 🔗 Parent\n\nParent: #4\n"
            "- JPD: [MTT-1](https://acme.atlassian.net/browse/MTT-1)"
        )


class TestMergeChecklist:
    def test_checkbox_survives_regeneration(self):
        new_body = "Regenerated description\n\n## 📋 Subtasks\n\n- [ ] #12 Done already"
        merged = merge_checklist(PARENT_BODY, new_body)
        assert "- [x] #12 Done already" in merged
        assert "- [ ] #12" not in merged

    def test_lines_only_in_old_body_are_carried(self):
        new_body = "Regenerated\n\n## 📋 Subtasks\n\n- [ ] #12 Done already"
        merged = merge_checklist(PARENT_BODY, new_body)
        assert "- [ ] #13 Still open" in merged

    def test_known_child_state_overrides_old_body(self):
        merged = merge_checklist(PARENT_BODY, "Regenerated", {12: False})
        assert "- [ ] #12 Done already" in merged

    def test_no_old_checklist_leaves_body_alone(self):
        assert merge_checklist("plain", "new body") == "new body"


# ---------------------------------------------------------------------------
# Projector
# ---------------------------------------------------------------------------


def _chain_github(length: int) -> FakeGitHubClient:
    """Issues #1..#length where #n has parent #n-1."""
    github = FakeGitHubClient()
    for number in range(1, length + 1):
        body = f"Parent: #{number - 1}" if number > 1 else "root"
        github.add({"number": number, "title": f"L{number}", "body": body})
    return github


def _projector(github: FakeGitHubClient, **kwargs) -> HierarchyProjector:
    return HierarchyProjector(make_gateway(FakeJpdClient(), github), **kwargs)


class TestHierarchyProjector:
    def test_depth_of_chain(self):
        projector = _projector(_chain_github(5))
        assert projector.depth_of(1) == 1
        assert projector.depth_of(5) == 5
        assert projector.ancestors(3) == [3, 2, 1]

    def test_cycle_is_bounded_and_warned(self):
        github = FakeGitHubClient(
            [
                {"number": 1, "title": "a", "body": "Parent: #2"},
                {"number": 2, "title": "b", "body": "Parent: #3"},
                {"number": 3, "title": "c", "body": "Parent: #1"},
            ]
        )
        projector = _projector(github)

        assert projector.depth_of(1) == 3
        assert any("Circular" in w for w in projector.warnings)

    def test_self_reference(self):
        github = FakeGitHubClient([{"number": 1, "title": "a", "body": "Parent: #1"}])
        projector = _projector(github)
        assert projector.depth_of(1) == 1

    def test_can_nest_under_refuses_at_ceiling(self):
        projector = _projector(_chain_github(8))
        assert projector.can_nest_under(7) is True
        assert projector.can_nest_under(8) is False
        assert any("depth limit" in w for w in projector.warnings)

    def test_can_nest_under_refuses_ancestor_as_child(self):
        projector = _projector(_chain_github(3))
        assert projector.can_nest_under(3, child_number=1) is False

    def test_adds_missing_child(self):
        github = FakeGitHubClient([{"number": 1, "title": "P", "body": "Parent body"}])
        projector = _projector(github)

        assert projector.ensure_child_in_parent_list(1, 2, "Child", False) is True

        assert checklist_entries(github.issues[1]["body"]) == {2: (False, "Child")}
        assert projector.get_children(1) == [2]

    def test_flips_wrong_checkbox_only(self):
        github = FakeGitHubClient([{"number": 1, "title": "P", "body": PARENT_BODY}])
        projector = _projector(github)

        projector.ensure_child_in_parent_list(1, 13, "Still open", True)

        body = github.issues[1]["body"]
        assert body == PARENT_BODY.replace("- [ ] #13", "- [x] #13")

    def test_no_write_when_already_correct(self):
        github = FakeGitHubClient([{"number": 1, "title": "P", "body": PARENT_BODY}])
        projector = _projector(github)

        projector.ensure_child_in_parent_list(1, 12, "Done already", True)
        projector.ensure_child_in_parent_list(1, 13, "Still open", False)

        assert github.mutations == []

    def test_deep_parent_keeps_child_flat(self):
        github = _chain_github(8)
        projector = _projector(github)

        assert projector.ensure_child_in_parent_list(8, 9, "Too deep") is False
        assert github.mutations == []

    def test_missing_parent(self):
        projector = _projector(FakeGitHubClient())
        assert projector.ensure_child_in_parent_list(5, 6, "x") is False
        assert projector.warnings == ["Parent issue #5 not found"]

    def test_custom_max_depth(self):
        projector = _projector(_chain_github(3), max_depth=3)
        assert projector.can_nest_under(2) is True
        assert projector.can_nest_under(3) is False

    def test_custom_section_title_reused_for_later_children(self):
        github = FakeGitHubClient([{"number": 1, "title": "P", "body": "parent"}])
        projector = _projector(github, section_title="Tasks")

        projector.ensure_child_in_parent_list(1, 2, "A")
        projector.ensure_child_in_parent_list(1, 3, "B")

        body = github.issues[1]["body"]
        assert body.count("## Tasks") == 1
        assert checklist_entries(body) == {3: (False, "B"), 2: (False, "A")}

    def test_description_mention_does_not_shadow_parent(self):
        github = FakeGitHubClient(
            [
                {"number": 1, "title": "root", "body": "root"},
                {
                    "number": 2,
                    "title": "child",
                    "body": "Was Parent: #40 before\n\n## 🔗 Parent\n\nParent: #1",
                },
            ]
        )
        projector = _projector(github)
        assert projector.ancestors(2) == [2, 1]
