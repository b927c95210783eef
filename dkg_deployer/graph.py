"""
Dependency graph resolution for one orchestrator run.

Nodes are logical names, not steps: when a run holds several steps for the
same logical name (a v1 step and its v2 upgrade), all of them are processed
before any module depending on that name. A dependency outside the run must
already be deployed according to the ledger.
"""

from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Set

from loguru import logger

from .descriptors import DescriptorTable, ModuleDescriptor
from .exceptions import CyclicDependencyError, MissingDependencyError


class DependencyGraph:
    """Partial order over the modules selected for a run."""

    def __init__(self, table: DescriptorTable, is_deployed: Callable[[str], bool]):
        """
        Args:
            table: Steps selected for this run, in declaration order
            is_deployed: Ledger lookup for names resolved by a prior run
        """
        self.table = table
        self.is_deployed = is_deployed

        # logical name -> its steps in this run, in band order
        self._steps: "OrderedDict[str, List[ModuleDescriptor]]" = OrderedDict()
        for descriptor in table:
            self._steps.setdefault(descriptor.logical_name, []).append(descriptor)
        for steps in self._steps.values():
            steps.sort(key=lambda d: d.band)

        # logical name -> dependencies that are themselves part of the run
        self._edges: Dict[str, List[str]] = {}
        for name, steps in self._steps.items():
            deps: List[str] = []
            for step in steps:
                for dep in step.dependencies:
                    if dep in self._steps and dep not in deps:
                        deps.append(dep)
            self._edges[name] = deps

    @property
    def logical_names(self) -> List[str]:
        return list(self._steps)

    def dependencies_of(self, logical_name: str) -> List[str]:
        return list(self._edges.get(logical_name, []))

    def find_cycle(self) -> Optional[List[str]]:
        """Return one dependency cycle as a closed path, or None."""
        WHITE, GREY, BLACK = 0, 1, 2
        color = {name: WHITE for name in self._steps}
        stack: List[str] = []

        def visit(name: str) -> Optional[List[str]]:
            color[name] = GREY
            stack.append(name)
            for dep in self._edges[name]:
                if color[dep] == GREY:
                    return stack[stack.index(dep):] + [dep]
                if color[dep] == WHITE:
                    cycle = visit(dep)
                    if cycle:
                        return cycle
            stack.pop()
            color[name] = BLACK
            return None

        for name in self._steps:
            if color[name] == WHITE:
                cycle = visit(name)
                if cycle:
                    return cycle
        return None

    def check_missing(self) -> None:
        """Fail on a dependency that is neither in this run nor in the ledger."""
        for name, steps in self._steps.items():
            for step in steps:
                for dep in step.dependencies:
                    if dep not in self._steps and not self.is_deployed(dep):
                        raise MissingDependencyError(name, dep)

    def validate(self) -> None:
        """Raise on cycles or unresolvable dependencies; sends nothing on-chain."""
        cycle = self.find_cycle()
        if cycle:
            raise CyclicDependencyError(cycle)
        self.check_missing()

    def order(self) -> List[ModuleDescriptor]:
        """
        Dependency-respecting processing order.

        Ties are broken by declaration order, so the result is deterministic
        for a given table.
        """
        self.validate()

        remaining = {name: set(deps) for name, deps in self._edges.items()}
        done: Set[str] = set()
        ordered: List[ModuleDescriptor] = []

        while remaining:
            ready = [name for name, deps in remaining.items() if deps <= done]
            # validate() rules out cycles, so something is always ready
            name = ready[0]
            ordered.extend(self._steps[name])
            done.add(name)
            del remaining[name]

        logger.debug(f"Processing order: {', '.join(d.step_id for d in ordered)}")
        return ordered


def ensure_eligible(
    descriptor: ModuleDescriptor,
    processed: Set[str],
    is_deployed: Callable[[str], bool],
) -> None:
    """
    Guard checked right before a module's first transaction.

    Raises MissingDependencyError unless every dependency was processed
    earlier in this run or exists in the ledger.
    """
    for dep in descriptor.dependencies:
        if dep not in processed and not is_deployed(dep):
            raise MissingDependencyError(descriptor.logical_name, dep)
