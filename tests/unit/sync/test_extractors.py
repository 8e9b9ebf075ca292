"""Unit tests for the built-in extractors."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from specsync.domain.models import ExtractionStatus, FactSet
from specsync.sync.extractors import (
    ExtractionError,
    Extractor,
    FactFileExtractor,
    StaticExtractor,
)


def _facts_dir(project: Path) -> Path:
    facts = project / ".specsync" / "facts"
    facts.mkdir(parents=True, exist_ok=True)
    return facts


def test_yaml_fact_file_with_envelope(tmp_path: Path) -> None:
    (_facts_dir(tmp_path) / "issues.yaml").write_text(
        """
extraction_run: scan-42
status: partial
records:
  - title: Leak
    type: bug
""".lstrip(),
        encoding="utf-8",
    )

    fact_set = FactFileExtractor("issues").scan(tmp_path, {})

    assert fact_set.domain == "issues"
    assert fact_set.run_id == "scan-42"
    assert fact_set.status is ExtractionStatus.PARTIAL
    assert not fact_set.allows_retirement
    assert list(fact_set.records) == [{"title": "Leak", "type": "bug"}]


def test_json_fact_file_with_bare_list(tmp_path: Path) -> None:
    (_facts_dir(tmp_path) / "environment.json").write_text(
        json.dumps([{"name": "PORT"}, {"name": "DEBUG"}]), encoding="utf-8"
    )

    fact_set = FactFileExtractor("environment").scan(tmp_path, {})

    assert fact_set.status is ExtractionStatus.COMPLETE
    assert fact_set.extraction_run is None
    assert [fact["name"] for fact in fact_set.records] == ["PORT", "DEBUG"]


def test_yaml_takes_precedence_and_mappings_are_kept(tmp_path: Path) -> None:
    facts = _facts_dir(tmp_path)
    (facts / "environment.yml").write_text("PORT: {required: true}\n", encoding="utf-8")
    (facts / "environment.json").write_text("[]", encoding="utf-8")

    fact_set = FactFileExtractor("environment").scan(tmp_path, {})

    assert fact_set.records == {"PORT": {"required": True}}


def test_facts_dir_from_domain_config_and_constructor(tmp_path: Path) -> None:
    custom = tmp_path / "custom"
    custom.mkdir()
    (custom / "lessons.yaml").write_text("[]\n", encoding="utf-8")
    absolute = tmp_path / "absolute"
    absolute.mkdir()
    (absolute / "lessons.json").write_text("[]", encoding="utf-8")

    from_config = FactFileExtractor("lessons").locate(tmp_path, {"facts_dir": "custom"})
    from_argument = FactFileExtractor("lessons", facts_dir=absolute).locate(
        tmp_path, {"facts_dir": "custom"}
    )

    assert from_config == custom / "lessons.yaml"
    assert from_argument == absolute / "lessons.json"


def test_failed_status_yields_failed_fact_set(tmp_path: Path) -> None:
    (_facts_dir(tmp_path) / "features.yaml").write_text(
        "status: failed\nrecords: [{name: Search}]\n", encoding="utf-8"
    )

    fact_set = FactFileExtractor("features").scan(tmp_path, {})

    assert fact_set.status is ExtractionStatus.FAILED
    assert fact_set.records == ()
    assert "marked failed" in fact_set.notes[0]


def test_empty_file_yields_no_facts(tmp_path: Path) -> None:
    (_facts_dir(tmp_path) / "design_tokens.yaml").write_text("", encoding="utf-8")

    fact_set = FactFileExtractor("design_tokens").scan(tmp_path, {})

    assert fact_set == FactSet(domain="design_tokens", records=())


@pytest.mark.parametrize(
    ("filename", "content", "message"),
    [
        ("issues.yaml", "records: [unclosed\n", "invalid facts"),
        ("issues.json", "{broken", "invalid facts"),
        ("issues.yaml", "status: exploded\nrecords: []\n", "unknown extraction status"),
        ("issues.yaml", "records: just text\n", "must be a list or mapping"),
        ("issues.yaml", "42\n", "must be a list or mapping"),
    ],
)
def test_malformed_fact_files_raise_extraction_error(
    tmp_path: Path, filename: str, content: str, message: str
) -> None:
    (_facts_dir(tmp_path) / filename).write_text(content, encoding="utf-8")

    with pytest.raises(ExtractionError, match=message) as error:
        FactFileExtractor("issues").scan(tmp_path, {})

    assert error.value.domain == "issues"


def test_missing_fact_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ExtractionError, match="no fact file"):
        FactFileExtractor("api_surface").scan(tmp_path, {})


def test_extractors_satisfy_the_protocol() -> None:
    static = StaticExtractor(FactSet(domain="lessons"))

    assert isinstance(static, Extractor)
    assert isinstance(FactFileExtractor("lessons"), Extractor)
    assert static.domain == "lessons"
    assert static.scan(Path("."), {}) is static.scan(Path("."), {})
