"""
Content view lifecycle orchestrator.

Runs one lifecycle pass over an organization's content views:

    health check -> fetch -> publish CVs -> wait -> publish CCVs -> wait
    -> re-fetch -> promote CCVs -> wait -> protected set
    -> clean up CCV versions -> clean up CV versions -> summary

Invariants:
    - The health check always runs; exhausting its attempts aborts the run
      before anything is fetched or changed
    - Promotion and cleanup decide from a PostPublishSnapshot, fetched after
      the publish waits returned
    - A failing item never stops the loop over the remaining items
    - Triggers inside a stage are sequential, separated by the pacing delay
    - Promotion is retried (idempotent), publish is not (each call creates
      a version)
    - Non-composite cleanup is skipped when the protected set could not be
      computed completely

How to change safely:
    - Keep every stage method callable on its own with a RunSummary
    - New stages need a Stage member and a place in TAGS
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional

from .client.base import RemoteStateClient
from .client.errors import ContentManagerError, HealthCheckFailedError, NotFoundError
from .config import ManagerConfig
from .models import ComponentRef, format_version
from .resolver import (
    EntitySnapshot,
    PostPublishSnapshot,
    VersionSetResolver,
    fetch_initial,
    fetch_post_publish,
    require_post_publish,
    with_components,
)
from .retention import ProtectedVersions, plan_deletions
from .summary import RunSummary
from .watcher import Sleeper, TaskCompletionWatcher, WaitOutcome

logger = logging.getLogger(__name__)


class Stage(Enum):
    """Selectable stages. The health check is not one: it always runs."""

    PUBLISH_CV = "publish-cv"
    PUBLISH_CCV = "publish-ccv"
    PROMOTE = "promote"
    CLEANUP_CCV = "cleanup-ccv"
    CLEANUP_CV = "cleanup-cv"


ALL_STAGES: FrozenSet[Stage] = frozenset(Stage)

TAGS = {
    "all": ALL_STAGES,
    "publish": frozenset({Stage.PUBLISH_CV, Stage.PUBLISH_CCV, Stage.PROMOTE}),
    "cv": frozenset({Stage.PUBLISH_CV, Stage.CLEANUP_CV}),
    "ccv": frozenset({Stage.PUBLISH_CCV, Stage.CLEANUP_CCV}),
    "promote-only": frozenset({Stage.PROMOTE}),
    "cleanup": frozenset({Stage.CLEANUP_CCV, Stage.CLEANUP_CV}),
}
TAGS.update({stage.value: frozenset({stage}) for stage in Stage})

CLEANUP_STAGES = frozenset({Stage.CLEANUP_CCV, Stage.CLEANUP_CV})


def select_stages(
    tags: Optional[Iterable[str]] = None,
    skip_tags: Optional[Iterable[str]] = None,
) -> FrozenSet[Stage]:
    """Expand tags into the stages to run.

    Args:
        tags: Tags to run, None or empty for every stage
        skip_tags: Tags whose stages are removed

    Raises:
        ValueError: On an unknown tag
    """

    def expand(names: Iterable[str]) -> FrozenSet[Stage]:
        stages: FrozenSet[Stage] = frozenset()
        for name in names:
            tag = name.strip().lower()
            if not tag:
                continue
            if tag not in TAGS:
                raise ValueError(f"Unknown tag '{name}'. Known tags: {', '.join(sorted(TAGS))}")
            stages |= TAGS[tag]
        return stages

    tags = list(tags or [])
    selected = expand(tags) if any(t.strip() for t in tags) else ALL_STAGES
    return selected - expand(skip_tags or [])


class Orchestrator:
    """Sequences publish, promote and cleanup against one server.

    Attributes:
        client: Server client
        config: Run configuration
        stages: Stages selected for this run
        resolver: Version set resolver (reserved names from config)
        watcher: Task completion watcher

    Example:
        >>> orchestrator = Orchestrator(client, ManagerConfig.from_env())
        >>> summary = await orchestrator.run()
        >>> print(summary.to_json())
    """

    def __init__(
        self,
        client: RemoteStateClient,
        config: ManagerConfig | None = None,
        stages: Optional[Iterable[Stage]] = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.client = client
        self.config = config or ManagerConfig()
        self.stages = frozenset(stages) if stages is not None else ALL_STAGES
        self.resolver = VersionSetResolver(self.config.lifecycle.reserved_names)
        self.watcher = TaskCompletionWatcher(
            client,
            poll_interval=self.config.watcher.poll_interval,
            max_polls=self.config.watcher.max_polls,
            fallback_wait=self.config.watcher.fallback_wait,
            sleep=sleep,
        )
        self._sleep = sleep
        self._fetches = itertools.count(1)

    @property
    def organization(self) -> str:
        return self.config.lifecycle.organization

    async def run(self) -> RunSummary:
        """Run every selected stage and return the summary.

        Never raises for server-side failures: a fatal health check or a
        failed fetch is reported through summary.aborted.
        """
        summary = RunSummary()
        selected = ", ".join(s.value for s in Stage if s in self.stages) or "none"
        logger.info(f"Starting lifecycle run for '{self.organization}' (stages: {selected})")

        try:
            await self.health_check()
        except HealthCheckFailedError as e:
            logger.error(f"Aborting run: {e}")
            summary.abort(e)
            return summary.finish()

        try:
            initial = await fetch_initial(
                self.client, self.organization, self.resolver, sequence=next(self._fetches)
            )
        except ContentManagerError as e:
            logger.error(f"Aborting run: cannot fetch content views: {e}")
            summary.abort(e)
            return summary.finish()

        waits: List[WaitOutcome] = []
        if Stage.PUBLISH_CV in self.stages:
            if await self.publish_stage(initial, composite=False, summary=summary):
                waits.append(await self.await_tasks(self.config.watcher.publish_label, summary))

        if Stage.PUBLISH_CCV in self.stages:
            if await self.publish_stage(initial, composite=True, summary=summary):
                waits.append(await self.await_tasks(self.config.watcher.publish_label, summary))

        if not self.stages & (CLEANUP_STAGES | {Stage.PROMOTE}):
            return summary.finish()

        try:
            current = await fetch_post_publish(
                self.client,
                self.organization,
                self.resolver,
                after_waits=waits,
                sequence=next(self._fetches),
            )
        except ContentManagerError as e:
            logger.error(f"Aborting run: cannot re-fetch content views: {e}")
            summary.abort(e)
            return summary.finish()

        if Stage.PROMOTE in self.stages:
            if await self.promote_stage(current, summary):
                await self.await_tasks(self.config.watcher.promote_label, summary)

        if self.stages & CLEANUP_STAGES:
            current, protected, complete = await self.protected_versions(current, summary)
            if Stage.CLEANUP_CCV in self.stages:
                await self.cleanup_stage(current, composite=True, protected=None, summary=summary)
            if Stage.CLEANUP_CV in self.stages:
                if complete:
                    await self.cleanup_stage(
                        current, composite=False, protected=protected, summary=summary
                    )
                else:
                    summary.warn("Skipped cleanup-cv: protected version set is incomplete")
                    logger.warning("Skipping cleanup-cv: protected version set is incomplete")

        totals = summary.finish().totals
        logger.info(
            f"Lifecycle run finished: {totals['published']} published, "
            f"{totals['promoted']} promoted, {totals['deleted']} deleted, "
            f"{totals['failed']} failed"
        )
        return summary

    async def health_check(self) -> None:
        """Check the server, retrying with a fixed delay.

        Raises:
            HealthCheckFailedError: When every attempt failed
        """
        attempts = self.config.retry.health_check_attempts
        last_error: str = "unhealthy"
        for attempt in range(1, attempts + 1):
            try:
                if await self.client.health_check():
                    logger.info("Content server is healthy")
                    return
                last_error = "server reported unhealthy"
            except ContentManagerError as e:
                last_error = str(e)
            logger.warning(f"Health check {attempt}/{attempts} failed: {last_error}")
            if attempt < attempts:
                await self._sleep(self.config.retry.health_check_delay)

        raise HealthCheckFailedError(
            f"Server not healthy after {attempts} attempts: {last_error}", attempts=attempts
        )

    async def await_tasks(self, label: str, summary: RunSummary) -> WaitOutcome:
        outcome = await self.watcher.await_completion(label)
        summary.add_wait(outcome)
        return outcome

    async def _pace(self, index: int) -> None:
        if index > 0 and self.config.lifecycle.pacing_delay > 0:
            await self._sleep(self.config.lifecycle.pacing_delay)

    async def publish_stage(
        self,
        snapshot: EntitySnapshot,
        composite: bool,
        summary: RunSummary,
    ) -> int:
        """Publish every composite or every non-composite content view.

        A failed publish is recorded and not retried here: the server
        creates a version per accepted call.

        Returns:
            Number of publishes the server accepted
        """
        stage = summary.stage(Stage.PUBLISH_CCV.value if composite else Stage.PUBLISH_CV.value)
        targets = snapshot.resolved.composites() if composite else snapshot.resolved.non_composites()
        kind = "composite" if composite else "non-composite"
        logger.info(f"Publishing {len(targets)} {kind} content views")

        for index, entity in enumerate(targets):
            await self._pace(index)
            try:
                handle = await self.client.trigger_publish(
                    entity.name, self.config.lifecycle.publish_description
                )
            except ContentManagerError as e:
                logger.error(f"Publish of '{entity.name}' failed: {e}")
                stage.record_failure(entity.name, e)
                continue
            logger.info(f"Publish of '{entity.name}' started (task {handle.task_id})")
            stage.record_success(entity.name)
        return stage.succeeded

    async def promote_stage(self, snapshot: PostPublishSnapshot, summary: RunSummary) -> int:
        """Promote each composite's latest version to the target environment.

        Composites already holding their latest version there are skipped.

        Returns:
            Number of promotions the server accepted
        """
        snapshot = require_post_publish(snapshot)
        stage = summary.stage(Stage.PROMOTE.value)
        environment = self.config.lifecycle.target_environment
        attempts = self.config.retry.promote_attempts

        pending = []
        for entity in snapshot.resolved.composites():
            if entity.latest_version is None or entity.latest_in(environment):
                stage.record_skip()
                continue
            pending.append(entity)

        for index, entity in enumerate(pending):
            await self._pace(index)
            version = entity.latest_version
            for attempt in range(1, attempts + 1):
                try:
                    handle = await self.client.trigger_promote(entity.name, version, environment)
                except NotFoundError as e:
                    logger.error(f"Promotion of '{entity.name}' {version} failed: {e}")
                    stage.record_failure(entity.name, e, version=version, attempts=attempt)
                    break
                except ContentManagerError as e:
                    if attempt < attempts:
                        logger.warning(
                            f"Promotion of '{entity.name}' {version} failed "
                            f"(attempt {attempt}/{attempts}): {e}"
                        )
                        await self._sleep(self.config.retry.promote_delay)
                        continue
                    logger.error(
                        f"Promotion of '{entity.name}' {version} failed after {attempts} attempts: {e}"
                    )
                    stage.record_failure(entity.name, e, version=version, attempts=attempt)
                else:
                    logger.info(
                        f"Promotion of '{entity.name}' {version} to {environment} started "
                        f"(task {handle.task_id})"
                    )
                    stage.record_success(entity.name, version=version, attempts=attempt)
                    break
        return stage.succeeded

    async def protected_versions(
        self,
        snapshot: PostPublishSnapshot,
        summary: RunSummary,
    ) -> tuple[PostPublishSnapshot, ProtectedVersions, bool]:
        """Collect the member versions embedded in every composite.

        Returns:
            (snapshot with components resolved, protected set, complete flag)
        """
        snapshot = require_post_publish(snapshot)
        stage = summary.stage("protect")
        components: dict[str, List[ComponentRef]] = {}
        protected = ProtectedVersions()
        complete = True

        for entity in snapshot.resolved.composites():
            try:
                refs = await self.client.get_entity_components(entity.name)
            except ContentManagerError as e:
                logger.error(f"Cannot read components of '{entity.name}': {e}")
                stage.record_failure(entity.name, e, version=entity.latest_version)
                complete = False
                continue
            components[entity.name] = refs
            for ref in refs:
                protected.add(ref)
            stage.record_success(entity.name, version=entity.latest_version)

        summary.protected = protected.to_list()
        logger.info(f"{len(protected)} version(s) protected by composites")
        return with_components(snapshot, self.resolver, components), protected, complete

    async def cleanup_stage(
        self,
        snapshot: PostPublishSnapshot,
        composite: bool,
        protected: Optional[ProtectedVersions],
        summary: RunSummary,
    ) -> int:
        """Delete versions beyond the retention count.

        Args:
            snapshot: Post-publish snapshot
            composite: Clean composites (True) or plain content views (False)
            protected: Versions that must survive, None for no protection
            summary: Run summary

        Returns:
            Number of versions deleted
        """
        snapshot = require_post_publish(snapshot)
        stage = summary.stage(Stage.CLEANUP_CCV.value if composite else Stage.CLEANUP_CV.value)
        keep = self.config.lifecycle.keep_versions
        targets = snapshot.resolved.composites() if composite else snapshot.resolved.non_composites()

        index = 0
        for entity in targets:
            keep_safe = protected.for_entity(entity.name) if protected is not None else set()
            deletions = plan_deletions(
                entity.versions,
                keep,
                [f"{major}.{minor}" for major, minor in keep_safe],
            )
            if not deletions:
                stage.record_skip()
                continue

            logger.info(
                f"Deleting {len(deletions)} version(s) of '{entity.name}', keeping {keep}"
            )
            for version in deletions:
                await self._pace(index)
                index += 1
                label = format_version(version)
                try:
                    await self.client.delete_version(entity.name, version)
                except ContentManagerError as e:
                    logger.error(f"Delete of '{entity.name}' {label} failed: {e}")
                    stage.record_failure(entity.name, e, version=label)
                    continue
                stage.record_success(entity.name, version=label)
        return stage.succeeded


async def run_lifecycle(
    client: RemoteStateClient,
    config: ManagerConfig,
    stages: Optional[Iterable[Stage]] = None,
    sleep: Sleeper = asyncio.sleep,
) -> RunSummary:
    """Run one lifecycle pass and close the client."""
    try:
        return await Orchestrator(client, config, stages=stages, sleep=sleep).run()
    finally:
        await client.close()
