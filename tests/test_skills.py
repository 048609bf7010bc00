import threading

import pytest

from career_match.errors import ConfigurationError
from career_match.skills import AliasTable, SkillNormalizer, clean_token, normalize


def test_basic_normalization():
    assert normalize(["  Python ", "JS", "ReactJS", "k8s"]) == {"python", "javascript", "react", "kubernetes"}


def test_whitespace_quotes_and_bullets_stripped():
    assert normalize(['"Machine   Learning"', "• SQL", "`Docker`;"]) == {"machine learning", "sql", "docker"}


def test_composite_tags_are_split():
    assert normalize(["Python/Django", "AWS, GCP", "HTML & CSS"]) == {
        "python", "django", "aws", "gcp", "html", "css",
    }


@pytest.mark.parametrize("token", ["C++", "C#", "Node.js", "CI/CD", "C/C++", "R&D", "UI/UX"])
def test_protected_tokens_are_not_split(token):
    out = normalize([token])
    assert len(out) == 1


def test_alias_chain_resolves_to_canonical():
    table = AliasTable({"nodejs": "node", "node": "node.js"})
    assert table.canonical("nodejs") == "node.js"
    assert table.canonical("node") == "node.js"


def test_canonical_values_are_protected():
    norm = SkillNormalizer(AliasTable({"cicd": "ci/cd"}))
    assert norm.normalize(["CICD", "ci/cd"]) == {"ci/cd"}


def test_extra_protected_skills():
    norm = SkillNormalizer(AliasTable({}), extra_protected=["Salt & Pepper"])
    assert norm.normalize(["salt & pepper"]) == {"salt & pepper"}


def test_alias_cycle_is_configuration_error():
    with pytest.raises(ConfigurationError):
        AliasTable({"a": "b", "b": "a"})


@pytest.mark.parametrize(
    "aliases",
    [
        {"": "python"},
        {"py": "   "},
        {"py": 3},
    ],
)
def test_bad_alias_entries_rejected(aliases):
    with pytest.raises(ConfigurationError):
        AliasTable(aliases)


def test_alias_table_from_yaml(tmp_path):
    p = tmp_path / "aliases.yaml"
    p.write_text("aliases:\n  pyth: python\nprotected:\n  - a/b\n", encoding="utf-8")
    table = AliasTable.from_yaml(p)
    norm = SkillNormalizer(table)
    assert norm.normalize(["Pyth", "A/B"]) == {"python", "a/b"}


def test_alias_table_from_yaml_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        AliasTable.from_yaml(tmp_path / "nope.yaml")


def test_malformed_entries_dropped_and_counted():
    norm = SkillNormalizer()
    skills, bad = norm.normalize_with_stats(["python", None, 42, "", "   ", "--", "SQL"])
    assert skills == {"python", "sql"}
    assert bad == 5
    assert norm.malformed_count == 5

    norm.reset_counters()
    assert norm.malformed_count == 0


def test_none_and_bare_string_inputs():
    norm = SkillNormalizer()
    assert norm.normalize(None) == frozenset()
    assert norm.normalize("Python") == {"python"}


def test_malformed_counter_is_thread_safe():
    norm = SkillNormalizer()

    def work():
        for _ in range(200):
            norm.normalize_with_stats([None, "python"])

    threads = [threading.Thread(target=work) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert norm.malformed_count == 8 * 200


@pytest.mark.parametrize(
    "raw",
    [
        ["Python", "python3", "PY"],
        ["C++", "c/c++", "Node JS", "nodejs"],
        ["HTML5 / CSS3", "SCSS", "Tailwind"],
        ["  UI/UX ", "ux", "ui"],
        ["Dish Washer", "ServSafe", "HACCP"],
        ["a, b, c", "x & y", "p/q"],
        [],
    ],
)
def test_normalization_is_idempotent(raw):
    once = normalize(raw)
    assert normalize(list(once)) == once


def test_clean_token():
    assert clean_token("  *  Deep\tLearning  ") == "deep learning"


def test_related_skills():
    norm = SkillNormalizer()
    assert "django" in norm.related_skills("Python")
    assert norm.related_skills("unknown-skill") == frozenset()


@pytest.mark.parametrize("raw", ["- Python", "– Python", "-python", " * - python"])
def test_leading_dash_bullets_are_stripped(raw):
    assert normalize([raw]) == {"python"}


def test_trailing_dash_is_kept():
    assert clean_token("c-") == "c-"
