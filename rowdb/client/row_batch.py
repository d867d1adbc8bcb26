"""
Columnar row batches: the in-memory form of a table write.
"""
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from rowdb.common.errors import SchemaError
from rowdb.common.models import ColumnSchema
from rowdb.client.wire import is_valid_value, timestamp_column_count, check_timestamp_role

ColumnTriple = Tuple[ColumnSchema, Tuple[Any, ...], Tuple[bool, ...]]


class RowBatch:
    """
    An immutable batch of rows destined for one table.

    Values are held per column, in schema declaration order. Each column has a
    null mask with one flag per row; a null row keeps ``None`` in its value
    slot. When no mask is given for a column, ``None`` values mark the nulls.
    """

    def __init__(
        self,
        table: str,
        schema: Sequence[ColumnSchema],
        columns: Sequence[Sequence[Any]],
        null_masks: Optional[Sequence[Optional[Sequence[bool]]]] = None,
        row_count: Optional[int] = None,
        require_timestamp: bool = True
    ):
        """
        Build and validate a row batch.

        Args:
            table: Name of the target table
            schema: Column schemas, in wire order
            columns: One value sequence per schema entry
            null_masks: Optional per-column null flags (True = null)
            row_count: Expected number of rows (derived from the columns if omitted)
            require_timestamp: Require exactly one timestamp column (insert batches)

        Raises:
            SchemaError: If the batch violates its schema
        """
        if not table:
            raise SchemaError("Row batch needs a table name")

        self._table = table
        self._schema = tuple(schema)
        self._validate_schema(require_timestamp)

        if len(columns) != len(self._schema):
            raise SchemaError(
                f"Table '{table}' declares {len(self._schema)} columns but {len(columns)} value arrays were given"
            )
        if null_masks is not None and len(null_masks) != len(self._schema):
            raise SchemaError(
                f"Table '{table}' declares {len(self._schema)} columns but {len(null_masks)} null masks were given"
            )

        if row_count is None:
            row_count = len(columns[0]) if columns else 0
        if row_count < 0:
            raise SchemaError(f"Negative row count {row_count}")
        self._row_count = row_count

        values = []
        masks = []
        for index, column in enumerate(self._schema):
            mask = null_masks[index] if null_masks is not None else None
            column_values, column_mask = self._validate_column(column, columns[index], mask)
            values.append(column_values)
            masks.append(column_mask)

        self._values = tuple(values)
        self._null_masks = tuple(masks)

    @classmethod
    def from_rows(
        cls,
        table: str,
        schema: Sequence[ColumnSchema],
        rows: Sequence[Sequence[Any]],
        require_timestamp: bool = True
    ) -> "RowBatch":
        """Build a batch from row tuples, with ``None`` marking nulls."""
        for position, row in enumerate(rows):
            if len(row) != len(schema):
                raise SchemaError(
                    f"Row {position} of table '{table}' has {len(row)} values, expected {len(schema)}"
                )
        columns = [[row[index] for row in rows] for index in range(len(schema))]
        return cls(table, schema, columns, row_count=len(rows), require_timestamp=require_timestamp)

    @property
    def table(self) -> str:
        return self._table

    @property
    def schema(self) -> Tuple[ColumnSchema, ...]:
        return self._schema

    @property
    def row_count(self) -> int:
        return self._row_count

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self._schema]

    def columns(self) -> Iterator[ColumnTriple]:
        """Iterate over (schema, values, null_mask) in declaration order."""
        return iter(zip(self._schema, self._values, self._null_masks))

    def select(self, names: Sequence[str]) -> List[ColumnTriple]:
        """
        Pick a subset of columns, keeping declaration order.

        Raises:
            SchemaError: If a name is not a column of this batch
        """
        wanted = set(names)
        missing = wanted.difference(self.column_names)
        if missing:
            raise SchemaError(f"Table '{self._table}' has no column(s): {', '.join(sorted(missing))}")
        return [triple for triple in self.columns() if triple[0].name in wanted]

    def __len__(self) -> int:
        return self._row_count

    def __repr__(self) -> str:
        return f"RowBatch(table={self._table!r}, columns={self.column_names}, rows={self._row_count})"

    def _validate_schema(self, require_timestamp: bool) -> None:
        seen = set()
        for column in self._schema:
            if not isinstance(column, ColumnSchema):
                raise SchemaError(f"Expected ColumnSchema, got {type(column).__name__}")
            if column.name in seen:
                raise SchemaError(f"Duplicate column '{column.name}' in table '{self._table}'")
            seen.add(column.name)
            problem = check_timestamp_role(column)
            if problem:
                raise SchemaError(problem)

        if require_timestamp:
            count = timestamp_column_count(self._schema)
            if count != 1:
                raise SchemaError(
                    f"Insert batch for table '{self._table}' needs exactly one timestamp column, found {count}"
                )

    def _validate_column(
        self,
        column: ColumnSchema,
        values: Sequence[Any],
        mask: Optional[Sequence[bool]]
    ) -> Tuple[Tuple[Any, ...], Tuple[bool, ...]]:
        if len(values) != self._row_count:
            raise SchemaError(
                f"Column '{column.name}' has {len(values)} values, expected {self._row_count}"
            )

        if mask is None:
            mask = tuple(value is None for value in values)
        else:
            mask = tuple(bool(flag) for flag in mask)
            if len(mask) != self._row_count:
                raise SchemaError(
                    f"Null mask of column '{column.name}' has {len(mask)} entries, expected {self._row_count}"
                )

        checked = []
        for row, (value, is_null) in enumerate(zip(values, mask)):
            if is_null:
                checked.append(None)
                continue
            if value is None:
                raise SchemaError(f"Column '{column.name}' row {row} is None but not marked null")
            if not is_valid_value(column.datatype, value):
                raise SchemaError(
                    f"Column '{column.name}' row {row}: {value!r} is not a valid {column.datatype.name} value"
                )
            checked.append(value)

        return tuple(checked), mask
