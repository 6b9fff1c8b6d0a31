from __future__ import annotations
import logging
from typing import List, Optional

import sqlglot.expressions as exp

from apisql.catalog.models import ApiCatalog
from apisql.errors import ConstraintMappingError, QueryShapeError
from apisql.planner.matcher import match_path
from apisql.planner.models import ResolvedQuery
from apisql.schema.columns import ColumnSchema

logger = logging.getLogger(__name__)


def resolve_constraint(
    predicate: Optional[exp.Expression],
    entity_name: str,
    columns: ColumnSchema,
    catalog: ApiCatalog,
) -> ResolvedQuery:
    """
    Map a pushed-down predicate onto exactly one remote endpoint.

    A single equality is matched directly. For a conjunction every operand
    is tried independently; operands that are not column = literal (IS NULL,
    literal on the left, expressions) simply do not match. Operands other
    than the matched one are not applied here.

    Raises:
        QueryShapeError: no predicate, or neither an equality nor an AND.
        ConstraintMappingError: zero or several operands map to an endpoint.
    """
    if predicate is None:
        raise QueryShapeError("Where clause is required.")

    predicate = predicate.unnest()
    if isinstance(predicate, (exp.EQ, exp.And)):
        operands = conjuncts(predicate)
    else:
        raise QueryShapeError(
            "Where clause must be a single constraint or an AND."
        )

    matches = [
        resolved
        for resolved in (
            _match_operand(op, entity_name, columns, catalog) for op in operands
        )
        if resolved is not None
    ]
    if len(matches) != 1:
        raise ConstraintMappingError(len(matches))

    resolved = matches[0]
    logger.info(
        "Resolved %s.%s = %s to %s",
        entity_name, resolved.column_name, resolved.literal_value,
        resolved.endpoint.path,
    )
    return resolved


def conjuncts(node: exp.Expression) -> List[exp.Expression]:
    """Operands of a (possibly nested, possibly parenthesised) AND."""
    node = node.unnest()
    if isinstance(node, exp.And):
        return conjuncts(node.left) + conjuncts(node.right)
    return [node]


def encode_literal(node: exp.Expression) -> Optional[str]:
    """
    Textual form of a literal as sent to the API, or None if node is not a
    literal. Quoted string literals lose exactly one quote on each side;
    every other literal keeps its text unchanged.
    """
    if isinstance(node, exp.Literal):
        if node.is_string:
            text = node.sql()
            return text[1:-1]
        return node.this
    if isinstance(node, exp.Boolean):
        return "true" if node.this else "false"
    if isinstance(node, exp.Neg) and isinstance(node.this, exp.Literal) \
            and not node.this.is_string:
        return f"-{node.this.this}"
    return None


def _match_operand(
    operand: exp.Expression,
    entity_name: str,
    columns: ColumnSchema,
    catalog: ApiCatalog,
) -> Optional[ResolvedQuery]:
    if not isinstance(operand, exp.EQ):
        return None

    column_node = operand.left.unnest()
    if not isinstance(column_node, exp.Column):
        return None
    value = encode_literal(operand.right.unnest())
    if value is None:
        return None

    column_index = columns.index_of(column_node.name)
    if column_index < 0:
        return None

    endpoint = match_path(catalog, entity_name, columns.order, column_index)
    if endpoint is None:
        return None
    return ResolvedQuery(
        endpoint=endpoint,
        column_index=column_index,
        column_name=columns.order[column_index],
        literal_value=value,
    )
