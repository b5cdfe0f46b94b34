"""
Cascading VPC delete.

A delete plan is an ordered list of stages followed by the network delete
call itself:

  * `CleanupStep`: soft.  Removes dependents and returns how many it deleted.
    A failing step is logged and skipped; the provider will refuse the final
    delete on its own if something still blocks it.
  * `DeleteGate`: hard.  Looks for dependents that must never be removed
    implicitly (running instances).  Any blocker aborts the whole delete with
    `ConflictError` before the delete call is issued.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, TypeVar, Union

from cloudnet.context import RequestContext
from cloudnet.errors import ConflictError, OperationCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CleanupStep:
    name: str
    run: Callable[[], int]


@dataclass
class DeleteGate:
    name: str
    find_blockers: Callable[[], list[str]]
    message: str


@dataclass
class CascadeResult:
    target: str
    deleted: dict[str, int] = field(default_factory=dict)
    failed_steps: list[str] = field(default_factory=list)


def best_effort_delete(
    items: Iterable[T], delete: Callable[[T], None], describe: Callable[[T], str]
) -> int:
    """Delete every item, logging and skipping individual failures."""
    count = 0
    for item in items:
        try:
            delete(item)
        except OperationCancelledError:
            raise
        except Exception as exc:
            logger.warning("Failed to delete %s: %s", describe(item), exc)
            continue
        count += 1
        logger.info("Deleted %s", describe(item))
    return count


class CascadingDeleteOrchestrator:
    def run(
        self,
        target: str,
        stages: list[Union[CleanupStep, DeleteGate]],
        delete: Callable[[], None],
        ctx: RequestContext,
    ) -> CascadeResult:
        result = CascadeResult(target=target)

        for stage in stages:
            ctx.raise_if_cancelled()
            if isinstance(stage, DeleteGate):
                blockers = stage.find_blockers()
                if blockers:
                    logger.warning(
                        "Delete of %s blocked by %s: %s", target, stage.name, ", ".join(blockers)
                    )
                    raise ConflictError(
                        stage.message, details={"target": target, "blockers": blockers}
                    )
                continue

            try:
                count = stage.run()
            except OperationCancelledError:
                raise
            except Exception as exc:
                logger.warning("Cleanup step %s failed for %s: %s", stage.name, target, exc)
                result.failed_steps.append(stage.name)
                continue
            result.deleted[stage.name] = count
            logger.info("Cleanup step %s removed %d resource(s) from %s", stage.name, count, target)

        ctx.raise_if_cancelled()
        delete()
        logger.info("Deleted %s", target)
        return result
