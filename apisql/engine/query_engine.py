from __future__ import annotations
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import duckdb
import pandas as pd
import sqlglot
import sqlglot.expressions as exp
from opentelemetry import trace

from apisql.engine.schema import ApiSchema
from apisql.engine.table import ApiTable
from apisql.errors import ApiSqlError, UnknownTableError, UnsupportedOperationError
from apisql.planner.constraints import conjuncts
from apisql.schema.columns import ColumnSchema
from apisql.schema.field_kind import FieldKind

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("apisql.engine")

_PANDAS_DTYPES: Dict[FieldKind, str] = {
    FieldKind.INTEGER: "Int64",
    FieldKind.FLOAT: "Float64",
    FieldKind.DOUBLE: "Float64",
    FieldKind.BOOLEAN: "boolean",
}


@dataclass
class TableRef:
    """One table reference in a SELECT, with the predicate pushed to it."""

    node: exp.Table
    schema: str
    table: ApiTable
    view_name: str
    aliases: Set[str] = field(default_factory=set)
    predicate: Optional[exp.Expression] = None


class QueryEngine:
    """
    Runs SQL over ApiTables.

    Flow per request:
      parse → resolve table refs → split WHERE per table → scan (push-down)
      → load rows into DuckDB views → execute the full SQL → return rows

    The push-down uses exactly one equality per table; DuckDB then applies
    the whole WHERE clause again, so residual predicates still filter rows.
    Each request gets its own in-memory DuckDB connection.
    """

    def __init__(self, schemas: Dict[str, ApiSchema]) -> None:
        self._schemas = schemas

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def execute_query(
        self, sql: str, cancel_event: Optional[threading.Event] = None
    ) -> Dict[str, Any]:
        """
        Returns:
            {rows, columns, timing} on success, or
            {error, error_type, status_code} on failure.
        """
        with tracer.start_as_current_span(
            "engine.execute_query", attributes={"sql": sql}
        ) as root_span:
            try:
                ast = sqlglot.parse_one(sql, read="duckdb")
            except sqlglot.errors.ParseError as exc:
                return {"error": f"SQL parse error: {exc}",
                        "error_type": "ParseError", "status_code": 400}

            try:
                if isinstance(ast, (exp.Insert, exp.Update, exp.Delete)):
                    self._reject_write(ast)
                if not isinstance(ast, exp.Select):
                    raise UnsupportedOperationError(
                        f"Only SELECT is supported, got {ast.key.upper()}"
                    )
                return self._execute_select(ast, cancel_event, root_span)
            except ApiSqlError as exc:
                logger.info("Query failed (%s): %s", type(exc).__name__, exc)
                root_span.set_attribute("engine.error", type(exc).__name__)
                return {
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "status_code": exc.status_code,
                }

    # ------------------------------------------------------------------
    # SELECT
    # ------------------------------------------------------------------

    def _execute_select(
        self,
        ast: exp.Select,
        cancel_event: Optional[threading.Event],
        root_span: Any,
    ) -> Dict[str, Any]:
        refs = self._table_refs(ast)
        if not refs:
            raise UnknownTableError(
                "No recognized tables in query. "
                f"Available schemas: {', '.join(sorted(self._schemas))}"
            )

        where = ast.args.get("where")
        operands = conjuncts(where.this) if where is not None else []
        for ref in refs:
            ref.predicate = _pushdown_predicate(operands, ref.aliases, len(refs) == 1)

        scan_start = time.time()
        frames: Dict[str, pd.DataFrame] = {}
        for ref in refs:
            enumerator = ref.table.scan(ref.predicate, cancel_event=cancel_event)
            rows = list(enumerator)
            frames[ref.view_name] = _to_frame(rows, ref.table.columns)
            logger.debug("Scanned %s: %d rows from %s",
                         ref.view_name, len(rows), enumerator.target)
        scan_ms = int((time.time() - scan_start) * 1000)

        rewritten = _rewrite_tables(ast, refs)
        duckdb_start = time.time()
        con = duckdb.connect(database=":memory:")
        try:
            with tracer.start_as_current_span("engine.duckdb"):
                for view_name, df in frames.items():
                    con.register(view_name, df)
                try:
                    cursor = con.execute(rewritten)
                    columns = [d[0] for d in cursor.description]
                    rows = [dict(zip(columns, r)) for r in cursor.fetchall()]
                except duckdb.Error as exc:
                    return {"error": f"SQL execution error: {exc}",
                            "error_type": "ExecutionError", "status_code": 400}
        finally:
            con.close()
        duckdb_ms = int((time.time() - duckdb_start) * 1000)

        root_span.set_attribute("engine.scan_ms", scan_ms)
        root_span.set_attribute("engine.duckdb_ms", duckdb_ms)
        root_span.set_attribute("engine.rows_returned", len(rows))
        return {
            "rows": rows,
            "columns": columns,
            "timing": {
                "total_ms": scan_ms + duckdb_ms,
                "scan_ms": scan_ms,
                "duckdb_ms": duckdb_ms,
            },
        }

    def _table_refs(self, ast: exp.Expression) -> List[TableRef]:
        refs: List[TableRef] = []
        for i, node in enumerate(ast.find_all(exp.Table)):
            table = self._lookup(node)
            alias = node.alias or node.name
            refs.append(TableRef(
                node=node,
                schema=node.db,
                table=table,
                view_name=f"{node.db}_{node.name}_{i}",
                aliases={alias.lower(), node.name.lower()},
            ))
        return refs

    def _lookup(self, node: exp.Table) -> ApiTable:
        schema = self._schemas.get(node.db) if node.db else None
        if schema is None:
            raise UnknownTableError(
                f"Unknown schema: '{node.db}'. "
                f"Available: {', '.join(sorted(self._schemas))}"
            )
        table = schema.table(node.name)
        if table is None:
            raise UnknownTableError(
                f"Unknown table: '{node.db}.{node.name}'. "
                f"Available: {', '.join(sorted(schema.table_map))}"
            )
        return table

    def _reject_write(self, ast: exp.Expression) -> None:
        target = ast.find(exp.Table)
        if target is None:
            raise UnsupportedOperationError("Write operations are not supported")
        table = self._lookup(target)
        if isinstance(ast, exp.Insert):
            table.insert()
        elif isinstance(ast, exp.Update):
            table.update()
        else:
            table.delete()


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

def _pushdown_predicate(
    operands: List[exp.Expression],
    aliases: Set[str],
    single_table: bool,
) -> Optional[exp.Expression]:
    """
    AND of the conjuncts whose columns all belong to one table reference.
    Unqualified columns belong to the table only in single-table queries.
    """
    mine: List[exp.Expression] = []
    for conjunct in operands:
        cols = list(conjunct.find_all(exp.Column))
        if not cols:
            if single_table:
                mine.append(conjunct)
            continue
        if all(
            (c.table.lower() in aliases) if c.table else single_table
            for c in cols
        ):
            mine.append(conjunct)
    if not mine:
        return None
    if len(mine) == 1:
        return mine[0]
    return exp.and_(*mine)


def _to_frame(rows: List[tuple], columns: ColumnSchema) -> pd.DataFrame:
    df = pd.DataFrame.from_records(rows, columns=list(columns.order))
    for name, kind in zip(columns.order, columns.kinds):
        dtype = _PANDAS_DTYPES.get(kind)
        if dtype is not None:
            df[name] = df[name].astype(dtype)
    return df


def _rewrite_tables(ast: exp.Expression, refs: List[TableRef]) -> str:
    """Swap each "<schema>"."<table>" for its view, keeping the reference name."""
    views = {id(ref.node): ref.view_name for ref in refs}

    def transform(node: exp.Expression) -> exp.Expression:
        if isinstance(node, exp.Table) and id(node) in views:
            replacement = exp.to_table(views[id(node)])
            alias = exp.to_identifier(node.alias or node.name, quoted=True)
            replacement.set("alias", exp.TableAlias(this=alias))
            return replacement
        return node

    # in place: the Table nodes are keyed by identity
    return ast.transform(transform, copy=False).sql(dialect="duckdb")
