from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List

from packforge.core.errors import BuildFailure
from packforge.core.hashing import digest_tree
from packforge.core.layers.models import BuildStep, LayerContribution, LayerFlags
from packforge.plugins.modules._internal.base import file_digests

MODULE_ID = "paketo-buildpacks/composer-install"

VENDORED_NOTICE = "Detected existing vendored packages, will run 'composer install' with those packages"


def composer_file(step: BuildStep) -> str:
    return (step.var("COMPOSER") or "composer.json").strip() or "composer.json"


def lock_file(name: str) -> str:
    if name.endswith(".json"):
        return name[: -len(".json")] + ".lock"
    return name + ".lock"


@dataclass
class ComposerInstallModule:
    """
    Installs the application's composer dependencies into a vendor layer.

    Runs with the environment of the PHP and composer modules before it.
    A vendor/ directory shipped with the source is reused as-is.
    """

    name: str = "composer_install"

    def config_inputs(self, step: BuildStep) -> Dict[str, Any]:
        name = composer_file(step)
        vendor = step.source / "vendor"
        return {
            "composer_file": name,
            "files": file_digests(step, name, lock_file(name)),
            "vendor": digest_tree(vendor) if vendor.is_dir() else None,
            "php_home": step.env("PHP_HOME"),
        }

    def _packages(self, step: BuildStep, name: str) -> List[str]:
        path = step.source / name
        if not path.is_file():
            raise BuildFailure(MODULE_ID, f"{name} not found in application source")
        try:
            doc = json.loads(path.read_text(encoding="utf-8") or "{}")
        except ValueError as e:
            raise BuildFailure(MODULE_ID, f"{name} is not valid JSON: {e}") from e
        if not isinstance(doc, dict):
            raise BuildFailure(MODULE_ID, f"{name} must hold a JSON object")
        require = doc.get("require") or {}
        return sorted(k for k in require if k != "php" and not k.startswith("ext-"))

    def build(self, step: BuildStep) -> LayerContribution:
        if step.env("PHP_HOME") is None:
            raise BuildFailure(MODULE_ID, "PHP is not available (PHP_HOME is unset); php-dist must run first")

        name = composer_file(step)
        packages = self._packages(step, name)
        vendored = (step.source / "vendor").is_dir()
        if vendored:
            step.log.line(f"  {VENDORED_NOTICE}")

        home = step.layer_dir("composer-packages")
        out = LayerContribution(
            name="composer-packages",
            flags=LayerFlags(build=True, launch=True, cache=True),
        )
        out.file("vendor/autoload.php", "<?php\nrequire_once __DIR__ . '/composer/autoload_real.php';\n")
        out.file(
            "vendor/composer/installed.json",
            json.dumps({"packages": [{"name": p} for p in packages]}, indent=2, sort_keys=True) + "\n",
        )
        out.metadata = {
            "composer_file": name,
            "packages": packages,
            "vendored": vendored,
        }
        out.default("COMPOSER_VENDOR_DIR", f"{home}/vendor")
        step.log.line(f"  Installed {len(packages)} package(s) into {home}/vendor")
        return out


MODULE = ComposerInstallModule()
