"""Parent/child projection onto GitHub issue bodies.

GitHub has no parent field we can rely on, so the hierarchy is projected
into markdown:

* a parent carries a checklist section, one line per child::

      ## 📋 Subtasks

      - [ ] #42 Build the importer
      - [x] #43 Write the docs

* a child carries a ``Parent: #N`` reference in its ``## 🔗 Parent``
  section.

Checkbox state mirrors the child's open/closed state.  Every edit here is
surgical: only the affected line changes, and bodies are written back
only when they actually changed.

Nesting is capped (GitHub renders at most eight levels).  A parent that is
already at the ceiling cannot take another child; the child stays flat and
a warning is logged.  Depth walks keep a visited set so a hand-edited
cycle of ``Parent:`` references cannot loop forever.
"""

from __future__ import annotations

import logging
import re

from ..core.gateway import ApiGateway
from .state import find_state_block, strip_state

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 8
DEFAULT_SECTION_TITLE = "📋 Subtasks"
DEFAULT_PARENT_TITLE = "🔗 Parent"

# Negative numbers only ever appear in dry-run bodies (placeholder issues).
CHECKLIST_LINE_PATTERN = re.compile(
    r"^(?P<prefix>[ \t]*- \[)(?P<mark>[ xX])(?P<ref>\] #(?P<number>-?\d+))"
    r"(?P<rest>(?!\d).*)$",
    re.MULTILINE,
)
CHECKLIST_HEADER_PATTERN = re.compile(
    r"^##[ \t]+(?:📋[ \t]*)?(?:sub-?tasks?|sub-issues?|child issues?)[ \t]*$",
    re.IGNORECASE | re.MULTILINE,
)
PARENT_HEADER_PATTERN = re.compile(
    r"^##[ \t]+(?:🔗[ \t]*)?parent(?: epic)?[ \t]*$",
    re.IGNORECASE | re.MULTILINE,
)
PARENT_REFERENCE_PATTERN = re.compile(
    r"Parent(?:\s+Epic)?:\s*#(-?\d+)", re.IGNORECASE
)
NEXT_HEADER_PATTERN = re.compile(r"^##[ \t]", re.MULTILINE)


# ---------------------------------------------------------------------------
# Body parsing and rendering
# ---------------------------------------------------------------------------


def find_headers(
    body: str, synonyms: re.Pattern, title: str | None = None
) -> list[re.Match]:
    """Level-2 headers matching *synonyms* or exactly *title*, in body order."""
    found = {m.start(): m for m in synonyms.finditer(body)}
    if title and title.strip():
        exact = re.compile(
            rf"^##[ \t]+{re.escape(title.strip())}[ \t]*$", re.MULTILINE
        )
        found.update((m.start(), m) for m in exact.finditer(body))
    return [found[start] for start in sorted(found)]


def parse_parent_reference(
    body: str | None, section_title: str = DEFAULT_PARENT_TITLE
) -> int | None:
    """Issue number from the ``Parent: #N`` line of the parent section.

    The last parent section is read, since the generated one follows the
    mapped description.  Bodies without a parent header fall back to the
    last reference anywhere in the text.
    """
    text = strip_state(body)
    for header in reversed(find_headers(text, PARENT_HEADER_PATTERN, section_title)):
        following = NEXT_HEADER_PATTERN.search(text, header.end())
        section = text[header.end() : following.start() if following else len(text)]
        match = PARENT_REFERENCE_PATTERN.search(section)
        if match:
            return int(match.group(1))

    matches = list(PARENT_REFERENCE_PATTERN.finditer(text))
    return int(matches[-1].group(1)) if matches else None


def checklist_entries(body: str | None) -> dict[int, tuple[bool, str]]:
    """Map child number to ``(checked, title)`` for every checklist line.

    The first line wins when a number is listed twice.
    """
    entries: dict[int, tuple[bool, str]] = {}
    for match in CHECKLIST_LINE_PATTERN.finditer(strip_state(body)):
        number = int(match.group("number"))
        if number not in entries:
            entries[number] = (
                match.group("mark") != " ",
                match.group("rest").strip(),
            )
    return entries


def checklist_line(number: int, title: str, checked: bool) -> str:
    mark = "x" if checked else " "
    return f"- [{mark}] #{number} {title}".rstrip()


def set_checkbox(body: str, number: int, checked: bool) -> str:
    """Set the checkbox of child *number*, touching no other character."""
    mark = "x" if checked else " "

    def _replace(match: re.Match) -> str:
        if int(match.group("number")) != number:
            return match.group(0)
        return (
            match.group("prefix") + mark + match.group("ref") + match.group("rest")
        )

    return CHECKLIST_LINE_PATTERN.sub(_replace, body)


def insert_checklist_line(
    body: str,
    number: int,
    title: str,
    checked: bool,
    section_title: str = DEFAULT_SECTION_TITLE,
    at_end: bool = False,
) -> str:
    """Add a checklist line for *number* under the checklist header.

    Any of the usual header synonyms counts, as does *section_title*
    itself.

    The line goes directly below the header, or after the existing list
    when *at_end* is set.  Without a header a new section is created
    ahead of the state block (or at the end of the body).
    """
    line = checklist_line(number, title, checked)
    headers = find_headers(body, CHECKLIST_HEADER_PATTERN, section_title)

    if headers:
        header = headers[0]
        lines = body.split("\n")
        index = body.count("\n", 0, header.start()) + 1
        while index < len(lines) and not lines[index].strip():
            index += 1
        if at_end:
            while index < len(lines) and CHECKLIST_LINE_PATTERN.match(
                lines[index]
            ):
                index += 1
        lines.insert(index, line)
        following = lines[index + 1] if index + 1 < len(lines) else ""
        if following.strip() and not CHECKLIST_LINE_PATTERN.match(following):
            lines.insert(index + 1, "")
        return "\n".join(lines)

    section = f"## {section_title}\n\n{line}"
    span = find_state_block(body)
    if span is not None:
        head = body[: span[0]].rstrip()
        tail = body[span[0] :]
        return f"{head}\n\n{section}\n\n{tail}" if head else f"{section}\n\n{tail}"
    if not body.strip():
        return section
    return f"{body.rstrip()}\n\n{section}"


def render_checklist(
    children: list[tuple[int, str, bool]],
    section_title: str = DEFAULT_SECTION_TITLE,
) -> str:
    """Render a checklist section for ``(number, title, checked)`` triples."""
    if not children:
        return ""
    lines = [f"## {section_title}", ""]
    lines.extend(checklist_line(n, title, checked) for n, title, checked in children)
    return "\n".join(lines)


def render_parent_section(
    parent_number: int,
    parent_key: str | None = None,
    parent_link: str | None = None,
    section_title: str = DEFAULT_PARENT_TITLE,
) -> str:
    lines = [f"## {section_title}", "", f"Parent: #{parent_number}"]
    if parent_key:
        target = f"[{parent_key}]({parent_link})" if parent_link else parent_key
        lines.append(f"- JPD: {target}")
    return "\n".join(lines)


def merge_checklist(
    old_body: str | None,
    new_body: str,
    child_states: dict[int, bool] | None = None,
    section_title: str = DEFAULT_SECTION_TITLE,
) -> str:
    """Carry checklist lines from a stale body into a regenerated one.

    Checkbox state is taken from *child_states* when the child's real
    state is known, otherwise from the old body, otherwise from the new
    body.  Lines only present in the old body (children linked by an
    earlier pass) are appended to the new checklist.
    """
    child_states = child_states or {}
    old_entries = checklist_entries(old_body)

    def _checked(number: int, default: bool) -> bool:
        if number in child_states:
            return child_states[number]
        if number in old_entries:
            return old_entries[number][0]
        return default

    present: set[int] = set()

    def _replace(match: re.Match) -> str:
        number = int(match.group("number"))
        present.add(number)
        mark = "x" if _checked(number, match.group("mark") != " ") else " "
        return (
            match.group("prefix") + mark + match.group("ref") + match.group("rest")
        )

    body = CHECKLIST_LINE_PATTERN.sub(_replace, new_body)

    for number, (checked, title) in old_entries.items():
        if number in present:
            continue
        body = insert_checklist_line(
            body,
            number,
            title,
            _checked(number, checked),
            section_title,
            at_end=True,
        )
    return body


# ---------------------------------------------------------------------------
# Projector
# ---------------------------------------------------------------------------


class HierarchyProjector:
    """Maintain checklist projections through the API gateway.

    Args:
        gateway: Gateway used for every read and write.
        max_depth: Nesting ceiling.
        section_title: Header of the checklist section.
        parent_title: Header of the parent reference section.

    Attributes:
        warnings: Degradations seen this pass (depth limit, cycles), for
            the sync report.
    """

    def __init__(
        self,
        gateway: ApiGateway,
        max_depth: int = DEFAULT_MAX_DEPTH,
        section_title: str = DEFAULT_SECTION_TITLE,
        parent_title: str = DEFAULT_PARENT_TITLE,
    ) -> None:
        self.gateway = gateway
        self.max_depth = max_depth
        self.section_title = section_title
        self.parent_title = parent_title
        self.warnings: list[str] = []

    def _warn(self, message: str) -> None:
        logger.warning(message)
        if message not in self.warnings:
            self.warnings.append(message)

    def _body(self, number: int) -> str | None:
        issue = self.gateway.get_destination(number)
        if issue is None:
            return None
        return issue.get("body") or ""

    def get_children(self, parent_number: int) -> list[int]:
        """Child numbers listed in the parent's checklist, in body order."""
        return list(checklist_entries(self._body(parent_number)))

    def ancestors(self, number: int) -> list[int]:
        """Issue numbers from *number* up to its root, following ``Parent:``.

        Stops at a missing issue, at a revisited node (logged as a
        cycle), or once the chain exceeds the nesting ceiling.
        """
        chain: list[int] = []
        current: int | None = number
        while current is not None and len(chain) <= self.max_depth:
            if current in chain:
                self._warn(
                    f"Circular parent reference at issue #{current} "
                    f"(chain: {' -> '.join(f'#{n}' for n in chain)})"
                )
                break
            body = self._body(current)
            if body is None:
                logger.debug("Issue #%s not found while walking parents", current)
                break
            chain.append(current)
            current = parse_parent_reference(body, self.parent_title)
        return chain

    def depth_of(self, number: int) -> int:
        """Depth of *number*: 1 for a root, bounded by ``max_depth + 1``."""
        return len(self.ancestors(number))

    def can_nest_under(
        self, parent_number: int, child_number: int | None = None
    ) -> bool:
        """Whether a new child may be attached below *parent_number*.

        Refused when the parent already sits at the nesting ceiling, or
        when *child_number* is itself an ancestor of the parent.
        """
        chain = self.ancestors(parent_number)
        if child_number is not None and child_number in chain:
            self._warn(
                f"Not linking #{child_number} under #{parent_number}: "
                "it would create a cycle"
            )
            return False
        if len(chain) >= self.max_depth:
            self._warn(
                f"Cannot nest under #{parent_number}: depth limit reached "
                f"({len(chain)} levels, max {self.max_depth}); keeping child flat"
            )
            return False
        return True

    def ensure_child_in_parent_list(
        self,
        parent_number: int,
        child_number: int,
        child_title: str,
        child_is_closed: bool = False,
    ) -> bool:
        """Make the parent's checklist list the child with the right state.

        Returns:
            True when the child is listed once this returns, False when the
            parent is missing or the child had to stay flat.
        """
        body = self._body(parent_number)
        if body is None:
            self._warn(f"Parent issue #{parent_number} not found")
            return False

        entries = checklist_entries(body)
        if child_number in entries:
            if entries[child_number][0] == child_is_closed:
                return True
            new_body = set_checkbox(body, child_number, child_is_closed)
            logger.debug(
                "Setting checkbox of #%s in #%s to %s",
                child_number,
                parent_number,
                "checked" if child_is_closed else "unchecked",
            )
        else:
            if not self.can_nest_under(parent_number, child_number):
                return False
            new_body = insert_checklist_line(
                body,
                child_number,
                child_title,
                child_is_closed,
                self.section_title,
            )
            logger.info("Adding #%s to parent #%s", child_number, parent_number)

        if new_body != body:
            self.gateway.update_destination(parent_number, body=new_body)
        return True
