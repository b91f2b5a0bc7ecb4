"""
cleanroom-orchestrator: prompt and document templates.

File: src/cleanroom_orchestrator/synthesis_plane/prompt_templates.py

Purpose
- Render agent prompts and the unified plan from named templates with strict placeholders.

Functional requirements
- Rendering is deterministic: same template and variables give byte-identical text.
- Missing or unexpected variables are errors, never silently blank.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Final

from jinja2 import Environment, StrictUndefined, meta


class PromptTemplateError(RuntimeError):
    """Base error for prompt template rendering."""


class PromptTemplateVariableError(PromptTemplateError, ValueError):
    """Raised for missing or unexpected template variables."""


_PLANNING_FOOTER = (
    "Be thorough but concise. Your exploration context will be deleted - "
    "only your final document matters.\n"
    "\n"
    "CONTEXT:\n"
    "{{ context }}"
)

TEMPLATES: Final[Mapping[str, str]] = {
    "planner_spec": (
        "You are the Product/Spec Planning Agent.\n"
        "\n"
        "Analyze this context and produce a SPEC.md document with:\n"
        "## Requirements\n"
        "- Clear, numbered requirements\n"
        "- Functional and non-functional requirements\n"
        "\n"
        "## Acceptance Criteria\n"
        "- Testable acceptance criteria for each requirement\n"
        '- Use "GIVEN/WHEN/THEN" format\n'
        "\n" + _PLANNING_FOOTER
    ),
    "planner_arch": (
        "You are the Architecture Planning Agent.\n"
        "\n"
        "Analyze this context and produce an ARCH.md document with:\n"
        "## Design\n"
        "- System architecture overview\n"
        "- Component diagram (ASCII)\n"
        "- Key design decisions\n"
        "\n"
        "## API\n"
        "- API endpoints or interfaces\n"
        "- Data models\n"
        "- Integration points\n"
        "\n" + _PLANNING_FOOTER
    ),
    "planner_qa": (
        "You are the QA/Risk Planning Agent.\n"
        "\n"
        "Analyze this context and produce a QA.md document with:\n"
        "## Test Plan\n"
        "- Unit test strategy\n"
        "- Integration test plan\n"
        "- Edge cases to cover\n"
        "\n"
        "## Risks\n"
        "- Technical risks and mitigations\n"
        "- Dependencies and blockers\n"
        "- Gotchas from similar implementations\n"
        "\n" + _PLANNING_FOOTER
    ),
    "backlog": (
        "You are a task breakdown specialist.\n"
        "\n"
        "Analyze this implementation plan and break it down into atomic, independent tasks.\n"
        "\n"
        "PLAN:\n"
        "{{ plan }}\n"
        "\n"
        "Generate a YAML backlog with this EXACT structure:\n"
        "\n"
        "```yaml\n"
        'version: "{{ version }}"\n'
        'track_id: "{{ track_id }}"\n'
        'created_at: "{{ timestamp }}"\n'
        'updated_at: "{{ timestamp }}"\n'
        "tasks:\n"
        '  - id: "T01"\n'
        '    title: "Short task title"\n'
        '    description: "Detailed description"\n'
        '    status: "pending"\n'
        "    depends_on: []\n"
        "    acceptance:\n"
        '      - "Acceptance criterion 1"\n'
        "    attempts: 0\n"
        "    scope:\n"
        "      files_hint:\n"
        '        - "src/path/to/file.py"\n'
        "      estimated_hours: 2\n"
        "    context:\n"
        "      constraints:\n"
        '        - "Must be backward compatible"\n'
        "      patterns:\n"
        '        - "Use existing pattern X"\n'
        "      gotchas:\n"
        '        - "Watch out for Y"\n'
        "```\n"
        "\n"
        "RULES:\n"
        "1. Each task must be atomic (1-4 hours)\n"
        "2. Tasks must have clear acceptance criteria\n"
        "3. Use depends_on for task dependencies\n"
        "4. Keep context under {{ max_context_kb }}KB total\n"
        "5. Be specific about files to modify\n"
        "\n"
        "Generate the backlog now:"
    ),
    "implementation": (
        "{{ context }}\n"
        "\n"
        "## Instructions\n"
        "1. Implement the task according to the specification\n"
        "2. Create or modify files as needed\n"
        "3. Write tests for your implementation\n"
        "4. Ensure all tests pass\n"
        "5. Commit your changes with a descriptive message\n"
        "\n"
        "Working directory: {{ working_directory }}\n"
    ),
    "rebase": (
        "# Task Rebase (Attempt {{ attempt }})\n"
        "\n"
        "## Previous Failure\n"
        "{{ failure_reason }}\n"
        "\n"
        "## Original Context\n"
        "{{ original_context }}\n"
        "\n"
        "## Instructions for Rebase\n"
        "1. Review the failure reason carefully\n"
        "2. Identify the root cause\n"
        "3. Create a cleaner, simpler implementation\n"
        "4. Avoid the mistakes from previous attempts\n"
        "5. Focus on code quality and maintainability\n"
        "\n"
        "Start fresh - don't try to patch the previous implementation.\n"
    ),
    "unified_plan": (
        "# Unified Implementation Plan\n"
        "\n"
        "> Auto-generated from parallel planning agents. No LLM used for merge.\n"
        "{% for title, body in sections %}"
        "\n---\n\n## {{ loop.index }}. {{ title }}\n\n{{ body }}\n"
        "{% endfor %}"
    ),
}


class PromptTemplateEngine:
    """Deterministic renderer over the built-in template table."""

    def __init__(self, templates: Mapping[str, str] | None = None) -> None:
        self._templates = dict(TEMPLATES if templates is None else templates)
        self._environment = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=False,
            lstrip_blocks=False,
            newline_sequence="\n",
            keep_trailing_newline=True,
        )

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(sorted(self._templates))

    def declared_variables(self, name: str) -> tuple[str, ...]:
        source = self._source(name)
        return tuple(sorted(meta.find_undeclared_variables(self._environment.parse(source))))

    def render(self, name: str, **variables: object) -> str:
        source = self._source(name)
        declared = set(self.declared_variables(name))

        missing = sorted(declared - set(variables))
        if missing:
            raise PromptTemplateVariableError(
                f"template {name!r} is missing variable(s): " + ", ".join(missing)
            )
        unexpected = sorted(set(variables) - declared)
        if unexpected:
            raise PromptTemplateVariableError(
                f"template {name!r} got unexpected variable(s): " + ", ".join(unexpected)
            )

        return self._environment.from_string(source).render(**variables)

    def _source(self, name: str) -> str:
        try:
            return self._templates[name]
        except KeyError as exc:
            raise PromptTemplateError(f"unknown template: {name}") from exc


_DEFAULT_ENGINE: PromptTemplateEngine | None = None


def default_engine() -> PromptTemplateEngine:
    global _DEFAULT_ENGINE
    if _DEFAULT_ENGINE is None:
        _DEFAULT_ENGINE = PromptTemplateEngine()
    return _DEFAULT_ENGINE


def render_prompt(name: str, **variables: object) -> str:
    return default_engine().render(name, **variables)


__all__ = [
    "PromptTemplateEngine",
    "PromptTemplateError",
    "PromptTemplateVariableError",
    "TEMPLATES",
    "default_engine",
    "render_prompt",
]
