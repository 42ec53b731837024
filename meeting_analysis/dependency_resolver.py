"""
Dependency graph construction and topological ordering for template sections.
"""

from collections import deque
from typing import Dict, List, Sequence

from loguru import logger

from meeting_analysis.errors import CircularDependencyError, TemplateConfigurationError
from meeting_analysis.models import Template, TemplateSection


class DependencyNode:
    """One section in the graph with its forward and reverse edges."""

    __slots__ = ("section", "dependencies", "dependents")

    def __init__(self, section: TemplateSection):
        self.section = section
        self.dependencies: List[str] = list(dict.fromkeys(section.dependencies))
        self.dependents: List[str] = []

    @property
    def id(self) -> str:
        return self.section.id

    def __repr__(self) -> str:
        return f"DependencyNode({self.id!r}, deps={self.dependencies})"


def build_dependency_graph(sections: Sequence[TemplateSection]) -> Dict[str, DependencyNode]:
    """
    Build the adjacency structure for a list of sections.

    Args:
        sections: Template sections in declaration order

    Returns:
        Mapping of section id to node, in declaration order

    Raises:
        TemplateConfigurationError: duplicate section ids or a dependency
            on a section that does not exist
    """
    graph: Dict[str, DependencyNode] = {}
    for section in sections:
        if section.id in graph:
            raise TemplateConfigurationError(f'Duplicate section id "{section.id}" in template')
        graph[section.id] = DependencyNode(section)

    for node in graph.values():
        for dep in node.dependencies:
            if dep not in graph:
                raise TemplateConfigurationError(
                    f'Section "{node.section.name}" ({node.id}) depends on non-existent section "{dep}"'
                )
            graph[dep].dependents.append(node.id)

    return graph


def topological_sort(graph: Dict[str, DependencyNode]) -> List[str]:
    """
    Kahn's algorithm over the graph.

    Ties are broken by declaration order, so the result is deterministic.

    Raises:
        CircularDependencyError: naming every unprocessed node and, for each,
            the dependencies that were themselves left unprocessed
    """
    in_degree = {node_id: len(node.dependencies) for node_id, node in graph.items()}
    queue = deque(node_id for node_id, degree in in_degree.items() if degree == 0)
    ordered: List[str] = []

    while queue:
        node_id = queue.popleft()
        ordered.append(node_id)
        for dependent in graph[node_id].dependents:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    if len(ordered) < len(graph):
        done = set(ordered)
        unprocessed = [node_id for node_id in graph if node_id not in done]
        chains = {
            node_id: [dep for dep in graph[node_id].dependencies if dep not in done]
            for node_id in unprocessed
        }
        logger.error(f"Circular dependency among sections: {unprocessed}")
        raise CircularDependencyError(unprocessed, chains)

    return ordered


def resolve_processing_order(sections: Sequence[TemplateSection]) -> List[TemplateSection]:
    """Return sections ordered so every section follows all of its dependencies."""
    graph = build_dependency_graph(sections)
    order = topological_sort(graph)
    logger.debug(f"Section processing order: {order}")
    return [graph[node_id].section for node_id in order]


def validate_template(template: Template) -> None:
    """Reject templates the engine cannot run; no network calls happen before this passes."""
    if not template.sections:
        raise TemplateConfigurationError(f'Template "{template.name}" has no sections to analyze')
    topological_sort(build_dependency_graph(template.sections))
