from packforge.core.detection.matcher import Matcher
from packforge.core.detection.predicates import BindingPresent, DetectSpec, EnvPrefix, EnvSet, FileExists
from packforge.core.plan.models import ModuleDescriptor


def _module(*predicates, match="all"):
    return ModuleDescriptor(
        id="org/test",
        version="1.0.0",
        name="Test Buildpack",
        detect=DetectSpec(predicates=tuple(predicates), match=match),
        implementation="test",
    )


def test_no_predicates_always_detects(tmp_path, make_context):
    r = Matcher().detect(_module(), make_context(tmp_path))
    assert r.included
    assert r.reason == "no detection criteria"


def test_file_exists_counts_empty_files_and_directories(tmp_path, make_context):
    (tmp_path / "Procfile").write_text("", encoding="utf-8")
    (tmp_path / "htdocs").mkdir()
    ctx = make_context(tmp_path)
    m = Matcher()

    assert m.detect(_module(FileExists("Procfile")), ctx).included
    assert m.detect(_module(FileExists("htdocs")), ctx).included
    assert not m.detect(_module(FileExists("composer.json")), ctx).included


def test_file_exists_never_leaves_the_source_tree(tmp_path, make_context):
    src = tmp_path / "src"
    src.mkdir()
    (tmp_path / "secret").write_text("x", encoding="utf-8")

    r = Matcher().detect(_module(FileExists("../secret")), make_context(src))

    assert not r.included
    assert "outside" in r.reason


def test_env_set_with_pattern_is_a_full_match(tmp_path, make_context):
    m = Matcher()
    mod = _module(EnvSet("BP_PHP_SERVER", pattern="nginx"))

    assert m.detect(mod, make_context(tmp_path, {"BP_PHP_SERVER": "nginx"})).included
    assert not m.detect(mod, make_context(tmp_path, {"BP_PHP_SERVER": "nginx2"})).included
    assert not m.detect(mod, make_context(tmp_path, {})).included


def test_env_prefix_reports_sorted_matches(tmp_path, make_context):
    ctx = make_context(tmp_path, {"BPE_B": "2", "BPE_A": "1", "BP_LOG_LEVEL": "DEBUG", "BPE_": "x"})

    r = Matcher().detect(_module(EnvPrefix("BPE_")), ctx)

    assert r.included
    assert r.matched == ("BPE_A", "BPE_B")


def test_binding_present(tmp_path, make_context, make_bindings):
    root = make_bindings({"cache": {"type": "php-redis-session", "host": "redis"}})
    m = Matcher()

    assert m.detect(_module(BindingPresent("php-redis-session")), make_context(tmp_path, binding_root=root)).included
    assert not m.detect(_module(BindingPresent("php-redis-session")), make_context(tmp_path)).included


def test_match_all_and_any(tmp_path, make_context):
    (tmp_path / "composer.json").write_text("{}", encoding="utf-8")
    ctx = make_context(tmp_path)
    m = Matcher()
    preds = (FileExists("composer.json"), FileExists("index.php"))

    assert not m.detect(_module(*preds, match="all"), ctx).included
    r = m.detect(_module(*preds, match="any"), ctx)
    assert r.included
    # every evaluated predicate is explained
    assert "composer.json" in r.reason and "index.php" in r.reason
