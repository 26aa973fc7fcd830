from agentrun.models import AgentDefinition
from agentrun.scheduler import topological_order


def _agent(agent_id: str, *dependencies: str) -> AgentDefinition:
    return AgentDefinition(
        id=agent_id,
        prompt=f"prompt for {agent_id}",
        dependencies=list(dependencies) if dependencies else None,
    )


def _ids(agents: list[AgentDefinition]) -> list[str]:
    return [agent.id for agent in agents]


def test_independent_agents_keep_declaration_order() -> None:
    agents = [_agent("a"), _agent("b"), _agent("c")]

    assert _ids(topological_order(agents)) == ["a", "b", "c"]


def test_dependencies_run_before_dependents() -> None:
    agents = [_agent("publisher", "editor"), _agent("writer"), _agent("editor", "writer")]

    ordered = _ids(topological_order(agents))

    assert ordered == ["writer", "editor", "publisher"]
    assert ordered.index("writer") < ordered.index("editor") < ordered.index("publisher")


def test_order_is_deterministic() -> None:
    agents = [_agent("c", "a"), _agent("b"), _agent("a")]

    first = _ids(topological_order(agents))
    second = _ids(topological_order(agents))

    assert first == second == ["a", "c", "b"]


def test_unknown_dependency_is_ignored() -> None:
    agents = [_agent("a", "ghost"), _agent("b", "a")]

    assert _ids(topological_order(agents)) == ["a", "b"]


def test_cycle_emits_each_agent_once() -> None:
    agents = [_agent("a", "b"), _agent("b", "a")]

    assert _ids(topological_order(agents)) == ["b", "a"]


def test_empty_input() -> None:
    assert topological_order([]) == []
