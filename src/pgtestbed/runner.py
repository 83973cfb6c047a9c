"""Run orchestration for pgtestbed.

``TestbedRunner`` turns a ``TestbedConfig`` into a ``TestbedRunResult``:
validation → platform clients → scenarios one after another → reports.

Each scenario gets its own project. The project is created before the
scenario body runs and deleted after it, except when the scenario failed:
then its pod logs are saved and the project is kept for inspection unless
``cleanup_on_failure`` is set.

The run is fail-fast. The first scenario that does not pass stops the run
and every later scenario is reported as SKIPPED.

Errors:
    - ``ConfigError`` from validation propagates out of ``run()`` before
      any ``oc`` or ``docker`` command has been issued.
    - ``TestbedError`` inside a scenario marks that scenario FAILED.
    - Any other exception is recorded on the run, whose status becomes ERROR.
"""

from __future__ import annotations

from pgtestbed.cluster import OpenShiftClient
from pgtestbed.config import TestbedConfig
from pgtestbed.container import ContainerRuntime
from pgtestbed.deployer import Deployer
from pgtestbed.errors import InvalidConfigError, MissingConfigError, TestbedError
from pgtestbed.log_collector import LogCollector
from pgtestbed.logging import get_logger, scenario_context
from pgtestbed.probe import DatabaseProbe
from pgtestbed.results import OverallStatus, ScenarioResult, TestbedRunResult
from pgtestbed.scenarios import ScenarioContext, ScenarioSpec, get_scenarios

logger = get_logger(__name__)


class TestbedRunner:
    """Runs the selected scenarios against one image.

    Parameters
    ----------
    config
        Run configuration.
    cluster, runtime
        Platform clients; created from the config when omitted.

    Example::

        config = TestbedConfig.from_env(scenarios=["template"])
        result = TestbedRunner(config).run()
        print(result.summary)
    """

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        config: TestbedConfig,
        cluster: OpenShiftClient | None = None,
        runtime: ContainerRuntime | None = None,
    ) -> None:
        self.config = config
        self.cluster = cluster
        self.runtime = runtime
        self.log_collector: LogCollector | None = None

    def run(self) -> TestbedRunResult:
        """Execute the run.

        Raises
        ------
        ConfigError
            If the configuration cannot work; nothing has been executed.
        """
        specs = self.validate()

        config = self.config
        result = TestbedRunResult(
            run_id=config.run_id,
            image_name=config.image_name,
            version=config.version,
            os=config.os,
            scenarios=[ScenarioResult(name=s.name, description=s.description) for s in specs],
        )
        logger.info("run.started", run_id=config.run_id, scenarios=[s.name for s in specs])

        try:
            self.log_collector = LogCollector(config.output_dir, config.run_id)
            cluster = self.cluster or OpenShiftClient(timeout=config.command_timeout)
            runtime = self.runtime or ContainerRuntime(timeout=config.command_timeout)
            deployer = Deployer(
                cluster,
                runtime,
                registry=config.registry,
                interval=config.poll_interval,
                timeout=config.ready_timeout,
            )
            # readiness budgets start on the deployer's clock
            probe = DatabaseProbe(
                runtime,
                cluster,
                config.image_name,
                interval=config.poll_interval,
                clock=deployer.clock,
                sleep=deployer.sleep,
            )

            aborted = False
            for spec, scenario_result in zip(specs, result.scenarios):
                if aborted:
                    scenario_result.mark_skipped("skipped after an earlier scenario failed")
                    continue
                self._run_scenario(spec, scenario_result, cluster, deployer, probe)
                aborted = scenario_result.status != OverallStatus.PASSED

        except Exception as e:
            result.error = f"{type(e).__name__}: {e}"
            logger.error("run.failed", error=result.error)
            for scenario_result in result.scenarios:
                if scenario_result.status == OverallStatus.PENDING:
                    scenario_result.mark_skipped("run aborted")

        finally:
            result.mark_complete()
            if self.log_collector is not None:
                self.log_collector.write_summary(result)
                self.log_collector.write_junit(result)

        logger.info("run.complete", status=result.overall_status.value, summary=result.summary)
        return result

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> list[ScenarioSpec]:
        """Resolve the scenarios and check that their inputs exist."""
        config = self.config
        if not config.scenarios:
            raise InvalidConfigError("scenarios", config.scenarios, "No scenarios selected")
        try:
            specs = get_scenarios(config.scenarios)
        except ValueError as e:
            raise InvalidConfigError("scenarios", config.scenarios, str(e)) from e

        for spec in specs:
            for field_name in spec.templates:
                path = getattr(config, field_name)
                if not path.is_file():
                    raise MissingConfigError(
                        f"PGTESTBED_{field_name.upper()}",
                        f"Template for scenario {spec.name} not found: {path}",
                    )
            if spec.needs_legacy_image:
                # raises InvalidConfigError for an unknown OS
                logger.debug("legacy_image.resolved", image=config.legacy_image)
        return specs

    # ------------------------------------------------------------------
    # One scenario
    # ------------------------------------------------------------------

    def _run_scenario(
        self,
        spec: ScenarioSpec,
        result: ScenarioResult,
        cluster: OpenShiftClient,
        deployer: Deployer,
        probe: DatabaseProbe,
    ) -> None:
        project = self.config.project_name(spec.name)
        result.project = project
        result.mark_started()

        with scenario_context(scenario=spec.name, project=project):
            logger.info("scenario.started", description=spec.description)
            created = False
            try:
                cluster.new_project(project)
                created = True
                ctx = ScenarioContext(
                    config=self.config,
                    cluster=cluster,
                    deployer=deployer,
                    probe=probe,
                    project=project,
                    result=result,
                )
                spec.run(ctx)
            except TestbedError as e:
                e.with_context(scenario=spec.name, project=project, run_id=self.config.run_id)
                result.error = e.message
                result.error_type = type(e).__name__
                logger.error("scenario.failed", **e.to_dict())
            except Exception as e:
                result.error = str(e)
                result.error_type = type(e).__name__
                logger.exception("scenario.crashed")
                raise
            finally:
                result.mark_complete()
                if created:
                    self._finish_project(spec, result, cluster)

            logger.info(
                "scenario.complete",
                status=result.status.value,
                duration_seconds=result.duration_seconds,
            )

    def _finish_project(self, spec: ScenarioSpec, result: ScenarioResult, cluster: OpenShiftClient) -> None:
        """Save pod logs of a failed scenario, then delete or keep its project."""
        project = result.project or ""
        failed = result.status != OverallStatus.PASSED

        if failed:
            self._collect_pod_logs(spec, result, cluster)
        if failed and not self.config.cleanup_on_failure:
            logger.warning("project.kept", reason="scenario failed")
            return
        try:
            cluster.delete_project(project)
            result.project_deleted = True
        except TestbedError as e:
            logger.error("project.delete_failed", **e.to_dict())

    def _collect_pod_logs(self, spec: ScenarioSpec, result: ScenarioResult, cluster: OpenShiftClient) -> None:
        if self.log_collector is None:
            return
        try:
            pods = [p.get("metadata", {}).get("name", "") for p in cluster.list_pods()]
            for pod in filter(None, pods):
                path = self.log_collector.save_pod_log(spec.name, pod, cluster.pod_logs(pod))
                result.pod_logs.append(str(path))
        except TestbedError as e:
            logger.warning("pod_logs.failed", **e.to_dict())
