"""
Rule tree normalization.

Catalogs store rule trees as a flat list whose ``levelName`` encodes depth
with leading whitespace or data.tree markers::

    Dwellings With Basements
     ¦--Depth to Water Table        (Type: "or")
     ¦   ¦--Water table depth shallow  (RefId: 101)
     ¦   °--Flooding frequent          (RefId: 102)
     °--NOT Slope                   (Type: "not")
         °--Slope steep                (RefId: 103)

The normalizer walks the list once with a stack of open ancestors: a node's
parent is the most recent open node with a strictly shorter prefix, so any
consistent indent width works. Nodes stored in nested form (``children``)
are normalized recursively under their parent.

Operator and hedge names are resolved to enums here; unknown names raise
ConfigurationError so bad catalog data fails at load time.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence, Union

from src.interpretation.errors import ConfigurationError
from src.interpretation.models import (
    Hedge,
    HierarchicalRuleNode,
    NodeKind,
    Operator,
    RuleNode,
)

logger = logging.getLogger(__name__)

# Leading indentation and tree-drawing markers in levelName
_PREFIX_RE = re.compile(r"^(?:\s|¦|°|\||`|│|├|└|─|--)*")

# Generic Type values used by some catalogs, with the name in Value
_GENERIC_TYPES = ("operator", "hedge", "evaluation", "rule")

# Keys of non-leaf nodes; leaves are keyed by ref id, which may not use this prefix
PATH_KEY_PREFIX = "node:"


@dataclass
class _Draft:
    source: RuleNode
    indent: int
    label: str
    children: list["_Draft"] = field(default_factory=list)


def split_level_name(level_name: str) -> tuple[int, str]:
    """
    Split a levelName into (prefix width, label).

    Example:
        >>> split_level_name(" ¦   °--Slope steep")
        (8, 'Slope steep')
    """
    prefix = _PREFIX_RE.match(level_name).group(0)
    return len(prefix), level_name[len(prefix):].strip()


def _build_drafts(nodes: Sequence[RuleNode]) -> list[_Draft]:
    roots: list[_Draft] = []
    stack: list[_Draft] = []

    for node in nodes:
        indent, label = split_level_name(node.level_name)
        draft = _Draft(source=node, indent=indent, label=label)

        while stack and stack[-1].indent >= indent:
            stack.pop()

        if stack:
            stack[-1].children.append(draft)
        else:
            roots.append(draft)
        stack.append(draft)

        if node.children:
            draft.children.extend(_build_drafts(node.children))

    return roots


def _parse_param(text: Optional[str], node_label: str) -> Optional[float]:
    if text is None or not text.strip():
        return None
    try:
        return float(text.strip())
    except ValueError:
        raise ConfigurationError(
            f"Node '{node_label}' has non-numeric hedge parameter {text!r}"
        ) from None


def _resolve_hedge(declaration: str, extra: Optional[str], label: str) -> Optional[tuple[Hedge, Optional[float]]]:
    """Resolve "power 2" / ("power", "2") style hedge declarations."""
    tokens = declaration.strip().split(None, 1)
    if not tokens:
        return None
    parsed = Hedge.parse(tokens[0])
    if parsed is None:
        parsed = Hedge.parse(declaration)
        tokens = [declaration]
    if parsed is None:
        return None
    hedge, param = parsed
    inline = tokens[1] if len(tokens) > 1 else None
    explicit = _parse_param(inline, label)
    if explicit is None:
        explicit = _parse_param(extra, label)
    return hedge, explicit if explicit is not None else param


def _classify(draft: _Draft, depth: int):
    """Return (kind, operator, hedge, param) for a draft node."""
    node = draft.source
    label = draft.label or node.level_name
    node_kind = (node.node_kind or "").strip()
    generic = node_kind.lower()

    if node.ref_id is not None and generic in ("", "evaluation"):
        return NodeKind.EVALUATION, None, None, None

    if generic == "evaluation":
        raise ConfigurationError(f"Evaluation node '{label}' has no reference id")

    if generic == "rule":
        node_kind = ""
    elif generic in ("operator", "hedge"):
        node_kind, value = node.value or "", None
        if not node_kind:
            raise ConfigurationError(f"{generic.title()} node '{label}' has no value")
    else:
        value = node.value

    if node_kind:
        # Names shared by an operator and a hedge (multiply, not_null_and)
        # are hedges unless the node is declared as a generic Operator
        operator = Operator.parse(node_kind) if generic != "hedge" else None
        resolved = _resolve_hedge(node_kind, value, label) if generic != "operator" else None
        if operator is not None and (generic == "operator" or resolved is None):
            return NodeKind.OPERATOR, operator, None, None
        if resolved is not None:
            return NodeKind.HEDGE, None, resolved[0], resolved[1]
        raise ConfigurationError(
            f"Unknown node type '{node_kind}' on node '{label}'. "
            f"Operators: {[op.value for op in Operator]}, hedges: {[h.value for h in Hedge]}"
        )

    if node.value and generic != "rule":
        resolved = _resolve_hedge(node.value, None, label)
        if resolved is None:
            raise ConfigurationError(f"Unknown hedge '{node.value}' on node '{label}'")
        return NodeKind.HEDGE, None, resolved[0], resolved[1]

    return (NodeKind.ROOT if depth == 0 else NodeKind.RULE), None, None, None


def _finalize(draft: _Draft, depth: int, path: str) -> HierarchicalRuleNode:
    kind, operator, hedge, param = _classify(draft, depth)
    node = draft.source
    name = draft.label or node.node_kind or node.ref_id or path
    n_children = len(draft.children)

    if kind == NodeKind.EVALUATION and str(node.ref_id).startswith(PATH_KEY_PREFIX):
        raise ConfigurationError(
            f"Evaluation node '{name}' has reserved reference id '{node.ref_id}'"
        )
    if kind == NodeKind.EVALUATION and n_children:
        raise ConfigurationError(f"Evaluation node '{name}' cannot have children")
    if kind == NodeKind.HEDGE:
        if n_children != 1:
            raise ConfigurationError(
                f"Hedge node '{name}' must have exactly one child, got {n_children}"
            )
        if hedge.requires_param and param is None:
            raise ConfigurationError(f"Hedge '{hedge.value}' on node '{name}' requires a parameter")
    if kind == NodeKind.OPERATOR:
        if operator == Operator.TIMES and n_children != 2:
            raise ConfigurationError(
                f"Operator 'times' on node '{name}' needs exactly two children, got {n_children}"
            )
        if n_children == 0:
            raise ConfigurationError(f"Operator node '{name}' has no children")
    if kind in (NodeKind.ROOT, NodeKind.RULE) and n_children == 0:
        raise ConfigurationError(f"Rule node '{name}' has no children")

    children = tuple(
        _finalize(child, depth + 1, f"{path}/{i}") for i, child in enumerate(draft.children)
    )
    return HierarchicalRuleNode(
        name=name,
        kind=kind,
        depth=depth,
        key=node.ref_id if kind == NodeKind.EVALUATION else path,
        operator=operator,
        hedge=hedge,
        hedge_param=param,
        ref_id=node.ref_id,
        children=children,
    )


def normalize(
    flat_nodes: Sequence[Union[RuleNode, Mapping[str, Any]]],
) -> tuple[HierarchicalRuleNode, ...]:
    """
    Convert a flat, indentation-encoded rule list into typed trees.

    Args:
        flat_nodes: RuleNode instances or raw catalog dictionaries
            (``levelName``/``Type``/``Value``/``RefId``/``children`` keys)

    Returns:
        Root-level nodes. Several roots are combined by an implicit AND
        when evaluated.

    Raises:
        ConfigurationError: Unknown operator/hedge names or malformed structure
    """
    nodes = [n if isinstance(n, RuleNode) else RuleNode.from_dict(n) for n in flat_nodes]
    if not nodes:
        raise ConfigurationError("Rule tree is empty")

    drafts = _build_drafts(nodes)
    roots = tuple(_finalize(draft, 0, f"{PATH_KEY_PREFIX}{i}") for i, draft in enumerate(drafts))
    logger.debug(
        f"Normalized {len(nodes)} flat nodes into {len(roots)} root(s), "
        f"{sum(1 for r in roots for _ in r.iter_nodes())} nodes total"
    )
    return roots
