import pytest

from packforge.core.context import BuildConfiguration
from packforge.core.errors import BuildFailure, DetectionFailure


def _ids(outcome):
    return [p.split("@")[0].split("/")[1] for p in outcome.descriptor.plan]


def test_nginx_composer_app(orchestrator, php_app):
    outcome = orchestrator.build("acme/app", php_app, BuildConfiguration(env={"BP_PHP_SERVER": "nginx"}))

    assert _ids(outcome) == [
        "ca-certificates",
        "php-dist",
        "composer",
        "composer-install",
        "nginx",
        "php-fpm",
        "php-nginx",
        "php-start",
    ]
    d = outcome.descriptor
    assert d.processes["web"] == "procmgr-binary /layers/paketo-buildpacks_php-start/php-start/procs.yml"
    assert d.env["PHP_NGINX_PATH"] == "/layers/paketo-buildpacks_php-nginx/php-nginx-config/nginx.conf"
    assert d.env["PHP_FPM_PATH"].endswith("/base.conf")
    # composer is a build-only layer
    assert "/layers/paketo-buildpacks_composer/composer/bin" not in d.env["PATH"]
    assert d.env["PATH"].startswith("/layers/paketo-buildpacks_nginx/nginx/sbin")
    assert "PHP Distribution Buildpack" in outcome.log
    assert "  Selected PHP version 8.1.28 (from default)" in outcome.log


def test_httpd_app(orchestrator, php_app):
    outcome = orchestrator.build("acme/app", php_app, BuildConfiguration(env={"BP_PHP_SERVER": "httpd"}))

    ids = _ids(outcome)
    assert "httpd" in ids and "php-httpd" in ids
    assert "nginx" not in ids
    assert outcome.plan.group_index == 1
    assert "PHP_HTTPD_PATH" in outcome.descriptor.env


def test_builtin_server_is_the_fallback(orchestrator, php_app):
    outcome = orchestrator.build("acme/app", php_app, BuildConfiguration(env={"BP_PHP_WEB_DIR": "htdocs"}))

    assert outcome.plan.group_index == 2
    assert _ids(outcome)[-1] == "php-builtin-server"
    assert outcome.descriptor.processes == {"web": 'php -S 0.0.0.0:"${PORT:-80}" -t htdocs'}


def test_procfile_web_process_wins(orchestrator, php_app):
    (php_app / "Procfile").write_text("web: php -S 0.0.0.0:8080 -t htdocs\nworker: php worker.php\n")

    outcome = orchestrator.build("acme/app", php_app, BuildConfiguration(env={"BP_PHP_SERVER": "nginx"}))

    assert _ids(outcome)[-1] == "procfile"
    assert outcome.descriptor.processes == {
        "web": "php -S 0.0.0.0:8080 -t htdocs",
        "worker": "php worker.php",
    }
    assert "    worker: php worker.php" in outcome.log.lines


def test_memcached_binding(orchestrator, php_app, make_bindings):
    root = make_bindings({"my-cache": {"type": "php-memcached-session", "servers": "10.0.0.5:11211"}})
    config = BuildConfiguration(env={"BP_PHP_SERVER": "nginx", "SERVICE_BINDING_ROOT": str(root)})

    outcome = orchestrator.build("acme/app", php_app, config)

    assert "php-memcached-session-handler" in _ids(outcome)
    assert "php-redis-session-handler" not in _ids(outcome)
    assert outcome.descriptor.env["PHP_SESSION_HANDLER"] == "memcached"
    assert outcome.descriptor.env["PHP_SESSION_SAVE_PATH"] == "10.0.0.5:11211"
    assert outcome.descriptor.env["PHP_INI_SCAN_DIR"].endswith("/php-memcached-config/php.ini.d")


def test_two_session_bindings_keep_the_earlier_handler(orchestrator, php_app, make_bindings):
    root = make_bindings({
        "cache": {"type": "php-memcached-session"},
        "redis": {"type": "php-redis-session", "host": "redis.internal"},
    })
    config = BuildConfiguration(env={"SERVICE_BINDING_ROOT": str(root)})

    outcome = orchestrator.build("acme/app", php_app, config)

    assert "php-redis-session-handler" in _ids(outcome)
    assert "php-memcached-session-handler" not in _ids(outcome)
    assert outcome.descriptor.env["PHP_SESSION_SAVE_PATH"] == "tcp://redis.internal:6379"
    skipped = {s["module"].split("@")[0]: s["reason"] for s in outcome.plan.skipped}
    assert "exclusive capability 'php-session-handler'" in skipped["paketo-buildpacks/php-memcached-session-handler"]


def test_environment_variables_come_late_and_see_earlier_env(orchestrator, php_app):
    env = {
        "BP_PHP_SERVER": "nginx",
        "BPE_GREETING": "hello",
        "BPE_DELIM_PATH": ":",
        "BPE_APPEND_PATH": "/opt/tools/bin",
    }
    outcome = orchestrator.build("acme/app", php_app, BuildConfiguration(env=env))

    ids = _ids(outcome)
    assert ids.index("environment-variables") > ids.index("php-start")
    assert outcome.descriptor.env["GREETING"] == "hello"
    assert outcome.descriptor.env["PATH"].endswith(":/opt/tools/bin")


def test_image_labels(orchestrator, php_app):
    env = {
        "BP_IMAGE_LABELS": 'team=web description="php app"',
        "BP_OCI_SOURCE": "https://example.test/acme/app",
    }
    outcome = orchestrator.build("acme/app", php_app, BuildConfiguration(env=env))

    assert outcome.descriptor.labels == {
        "description": "php app",
        "org.opencontainers.image.source": "https://example.test/acme/app",
        "team": "web",
    }


def test_vendored_packages_notice(orchestrator, php_app):
    (php_app / "vendor").mkdir()
    (php_app / "vendor" / "autoload.php").write_text("<?php\n")

    outcome = orchestrator.build("acme/app", php_app, BuildConfiguration(env={"BP_PHP_SERVER": "nginx"}))

    assert "Detected existing vendored packages" in outcome.log


def test_unsupported_php_version_fails_the_build(orchestrator, php_app):
    config = BuildConfiguration(env={"BP_PHP_SERVER": "nginx", "BP_PHP_VERSION": "7.4.*"})

    with pytest.raises(BuildFailure) as ei:
        orchestrator.build("acme/app", php_app, config)

    assert ei.value.module == "paketo-buildpacks/php-dist"
    assert ei.value.phase == "inputs"


def test_no_php_sources_fails_detection(orchestrator, tmp_path):
    empty = tmp_path / "empty"
    empty.mkdir()
    (empty / "README.md").write_text("nothing to see\n")

    with pytest.raises(DetectionFailure) as ei:
        orchestrator.build("acme/empty", empty)

    assert len(ei.value.groups) == 3
    reasons = [f["module"] for g in ei.value.groups for f in g["failures"]]
    assert any(r.startswith("paketo-buildpacks/php-dist@") for r in reasons)


def test_optional_inputs_only_add_to_the_plan(orchestrator, php_app, make_bindings):
    base = orchestrator.detect(php_app, BuildConfiguration(env={"BP_PHP_SERVER": "nginx"})).ids()

    (php_app / "Procfile").write_text("web: php -S 0.0.0.0:8080\n")
    root = make_bindings({"sessions": {"type": "redis-session"}})
    richer = orchestrator.detect(
        php_app,
        BuildConfiguration(env={"BP_PHP_SERVER": "nginx", "BPE_X": "1", "SERVICE_BINDING_ROOT": str(root)}),
    ).ids()

    assert [m for m in richer if m in base] == base
    assert set(richer) - set(base) == {
        "paketo-buildpacks/procfile",
        "paketo-buildpacks/environment-variables",
        "paketo-buildpacks/php-redis-session-handler",
    }


def test_debug_log_level_explains_detection(orchestrator, php_app):
    quiet = orchestrator.build("acme/app", php_app, BuildConfiguration(env={"BP_PHP_SERVER": "nginx"}))
    loud = orchestrator.build(
        "acme/app", php_app, BuildConfiguration(env={"BP_PHP_SERVER": "nginx", "BP_LOG_LEVEL": "debug"})
    )

    assert "passed detection" not in quiet.log
    assert "  paketo-buildpacks/php-dist passed detection" in loud.log
    assert "paketo-buildpacks/procfile@5.6.9 skipped" in loud.log
