"""Configuration model for pgtestbed.

``TestbedConfig`` is a Pydantic v2 model built from the environment the
harness is launched in. Three variables are mandatory and describe the
image under test:

    IMAGE_NAME  candidate image reference (e.g. ``centos/postgresql-96-centos7``)
    VERSION     PostgreSQL version the image ships (e.g. ``9.6``)
    OS          platform family, ``rhel7`` or ``centos7``

Everything else has a default and can be overridden through a
``PGTESTBED_*`` variable or a keyword argument to ``from_env()``.
Override precedence: kwargs > env vars > field defaults.

Missing mandatory values raise ``MissingConfigError`` before any ``oc``
or ``docker`` command runs.

Example::

    config = TestbedConfig.from_env(scenarios=["template"])
    config.legacy_image
    # 'docker.io/centos/postgresql-96-centos7'
"""

from __future__ import annotations

import os
import re
import uuid
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator

from pgtestbed.errors import InvalidConfigError, MissingConfigError

REQUIRED_ENV = ("IMAGE_NAME", "VERSION", "OS")

LEGACY_IMAGES = {
    "rhel7": "registry.access.redhat.com/rhscl/postgresql-{tag}-rhel7",
    "centos7": "docker.io/centos/postgresql-{tag}-centos7",
}

DEFAULT_SCENARIOS = [
    "pure_image",
    "template",
    "ephemeral_redeploy",
    "persistent_redeploy",
    "persistent_pod_recreate",
    "version_update",
    "replication",
]


class TestbedConfig(BaseModel):
    """Configuration for one harness run.

    Example::

        config = TestbedConfig(
            image_name="centos/postgresql-96-centos7",
            version="9.6",
            os="centos7",
            scenarios=["pure_image", "template"],
        )
    """

    __test__ = False  # not a pytest test class

    # Image under test
    image_name: str = Field(min_length=1, description="Candidate image reference")
    version: str = Field(min_length=1, description="PostgreSQL version of the image")
    os: str = Field(min_length=1, description="Platform family (rhel7, centos7)")

    # Platform
    registry: str = Field(
        default="172.30.1.1:5000",
        description="Integrated OpenShift registry the image is pushed into",
    )
    project_prefix: str = Field(
        default="pgtest",
        description="Prefix for the per-scenario projects",
    )

    # Templates (opaque files handed to `oc process`)
    ephemeral_template: Path = Field(default=Path("test/postgresql-ephemeral-template.json"))
    persistent_template: Path = Field(default=Path("test/postgresql-persistent-template.json"))
    replication_template: Path = Field(default=Path("examples/replica/postgresql_replica.json"))

    # What to run
    scenarios: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SCENARIOS),
        description="Scenario names to run, in order",
    )

    # Polling
    poll_interval: float = Field(default=3.0, gt=0, description="Seconds between poll attempts")
    ready_timeout: float = Field(default=60.0, ge=0, description="Readiness budget in seconds")
    command_timeout: int = Field(default=300, gt=0, description="Timeout for a single oc/docker call")

    # Output
    output_dir: Path = Field(default=Path("testbed-results"))
    cleanup_on_failure: bool = Field(
        default=False,
        description="Delete the project of a failed scenario instead of keeping it for inspection",
    )
    verbose: bool = Field(default=False)

    # Internal
    run_id: str = Field(default="", description="Unique run identifier (auto-generated)")

    @model_validator(mode="after")
    def _set_defaults(self) -> TestbedConfig:
        if not self.run_id:
            self.run_id = uuid.uuid4().hex[:12]
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def version_tag(self) -> str:
        """``VERSION`` without dots, as used in published image names."""
        return self.version.replace(".", "")

    @property
    def service_name(self) -> str:
        """Candidate image name without namespace and tag."""
        return image_basename(self.image_name)

    @property
    def legacy_image(self) -> str:
        """Published image of the same version for the upgrade scenario."""
        template = LEGACY_IMAGES.get(self.os)
        if template is None:
            raise InvalidConfigError(
                "OS",
                self.os,
                f"No published image known for OS={self.os!r}. "
                f"Supported: {', '.join(sorted(LEGACY_IMAGES))}",
            )
        return template.format(tag=self.version_tag)

    def project_name(self, scenario: str) -> str:
        """Unique, DNS-1123 safe project name for a scenario of this run."""
        raw = f"{self.project_prefix}-{scenario}-{self.run_id[:6]}"
        name = re.sub(r"[^a-z0-9-]+", "-", raw.lower()).strip("-")
        return name[:63].rstrip("-")

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: Any) -> TestbedConfig:
        """Create config from the required variables plus PGTESTBED_* overrides."""
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        for env_var in REQUIRED_ENV:
            field_name = env_var.lower()
            if overrides.get(field_name):
                continue
            env_val = env.get(env_var, "").strip()
            if not env_val:
                raise MissingConfigError(env_var, f"make sure ${env_var} is defined")
            values[field_name] = env_val

        env_map = {
            "registry": "PGTESTBED_REGISTRY",
            "project_prefix": "PGTESTBED_PROJECT_PREFIX",
            "ephemeral_template": "PGTESTBED_EPHEMERAL_TEMPLATE",
            "persistent_template": "PGTESTBED_PERSISTENT_TEMPLATE",
            "replication_template": "PGTESTBED_REPLICATION_TEMPLATE",
            "scenarios": "PGTESTBED_SCENARIOS",
            "poll_interval": "PGTESTBED_POLL_INTERVAL",
            "ready_timeout": "PGTESTBED_READY_TIMEOUT",
            "output_dir": "PGTESTBED_OUTPUT_DIR",
            "cleanup_on_failure": "PGTESTBED_CLEANUP_ON_FAILURE",
            "verbose": "PGTESTBED_VERBOSE",
        }
        for field_name, env_var in env_map.items():
            env_val = env.get(env_var)
            if env_val is None:
                continue
            if field_name == "scenarios":
                values[field_name] = [s.strip() for s in env_val.split(",") if s.strip()]
            elif field_name in ("cleanup_on_failure", "verbose"):
                values[field_name] = env_val.lower() in ("true", "1", "yes")
            else:
                values[field_name] = env_val

        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls(**values)
        except ValidationError as exc:
            first = exc.errors()[0]
            key = ".".join(str(p) for p in first.get("loc", ())) or "config"
            raise InvalidConfigError(key, first.get("input"), f"Invalid configuration for {key}: {first['msg']}") from exc


def image_basename(image: str) -> str:
    """Strip registry/namespace and tag: ``docker.io/centos/pg:1`` -> ``pg``."""
    name = image.rsplit("/", 1)[-1]
    return name.split("@", 1)[0].split(":", 1)[0]


def missing_required_env(environ: Mapping[str, str] | None = None) -> list[str]:
    """Names of required variables that are unset or empty."""
    env = os.environ if environ is None else environ
    return [name for name in REQUIRED_ENV if not env.get(name, "").strip()]
