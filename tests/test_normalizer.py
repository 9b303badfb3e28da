from skillsmith.utils.fileops import atomic_write, read_text
from skillsmith.utils.normalizer import ensure_frontmatter, ensure_references, normalize_skill_md

URLS = (("Homepage", "https://example.org"), ("Source", "https://example.org/src"))


def test_missing_frontmatter_is_added():
    content = "# SKILL.md\n\n## Core Patterns\n"
    result = ensure_frontmatter(content, "demo", "1.0", "python", "MIT", "gpt-4o")
    assert result.startswith("---\nname: demo\ndescription: python library\nversion: 1.0\necosystem: python\nlicense: MIT\n")
    assert "generated_with: gpt-4o\n---\n\n## Core Patterns" in result
    assert "# SKILL.md" not in result


def test_incomplete_frontmatter_is_replaced():
    content = "---\nname: demo\n---\n\nBody\n"
    result = ensure_frontmatter(content, "demo", "2.0", "javascript")
    assert "version: 2.0" in result
    assert "# license: Unknown" in result
    assert result.endswith("Body\n")


def test_complete_frontmatter_only_gains_generated_with():
    content = "---\nname: demo\ndescription: tool\nversion: 1\necosystem: python\n---\n\nBody\n"
    assert ensure_frontmatter(content, "x", "9", "python") == content
    result = ensure_frontmatter(content, "x", "9", "python", generated_with="claude")
    assert "description: tool\nversion: 1\necosystem: python\ngenerated_with: claude\n---" in result


def test_references_are_added_once():
    once = ensure_references("Body\n", URLS)
    assert once == "Body\n\n## References\n\n- [Homepage](https://example.org)\n- [Source](https://example.org/src)\n"
    assert ensure_references(once, URLS) == once
    assert ensure_references("Body\n", ()) == "Body\n"


def test_normalize_is_idempotent():
    first = normalize_skill_md("## Core Patterns\n", "demo", "1.0", "python", None, URLS, "gpt-4o")
    assert normalize_skill_md(first, "demo", "1.0", "python", None, URLS, "gpt-4o") == first


def test_atomic_write_replaces_file(tmp_path):
    target = tmp_path / "out" / "SKILL.md"
    atomic_write(target, "one")
    atomic_write(target, "two")
    assert read_text(target) == "two"
    assert [path.name for path in target.parent.iterdir()] == ["SKILL.md"]
    assert read_text(tmp_path / "missing.md") is None
