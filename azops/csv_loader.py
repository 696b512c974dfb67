"""
Bulk loading of CSV files into a database table.

Any SQLAlchemy-supported database works (Azure SQL via ``mssql+pyodbc``,
Azure Database for PostgreSQL via ``postgresql+psycopg``, SQLite for local
runs). Rows are inserted in batches, each batch in its own transaction, so
one bad batch does not abort the whole file.
"""

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path

from sqlalchemy import Column, MetaData, Table, Text, create_engine, insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from azops.exceptions import CsvFormatError, InputFileError, TableNotFoundError
from azops.util.redact import redact_sensitive

logger = logging.getLogger(__name__)


@dataclass
class FailedBatch:
    index: int
    first_line: int
    rows: int
    error: str


@dataclass
class LoadReport:
    source: str
    table: str
    columns: list[str] = field(default_factory=list)
    ignored_headers: list[str] = field(default_factory=list)
    rows_read: int = 0
    rows_inserted: int = 0
    batches: int = 0
    failed_batches: list[FailedBatch] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_batches

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "table": self.table,
            "rows_read": self.rows_read,
            "rows_inserted": self.rows_inserted,
            "batches": self.batches,
            "failed_batches": len(self.failed_batches),
            "ignored_headers": self.ignored_headers,
        }


def parse_column_map(pairs: list[str]) -> dict[str, str]:
    """Parse ``csv_column=db_column`` pairs."""
    mapping = {}
    for pair in pairs:
        source, sep, target = pair.partition("=")
        if not sep or not source.strip() or not target.strip():
            raise ValueError(f"Invalid column mapping '{pair}', expected csv_column=db_column")
        mapping[source.strip()] = target.strip()
    return mapping


class CsvLoader:
    """Loads CSV files into one table of a database."""

    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def from_url(cls, url: str) -> "CsvLoader":
        logger.info(f"Connecting to {redact_sensitive(url)}")
        return cls(create_engine(url))

    def load(
        self,
        csv_path: str | Path,
        table: str,
        batch_size: int = 1000,
        column_map: dict[str, str] | None = None,
        truncate: bool = False,
        create_table: bool = False,
        empty_as_null: bool = True,
        delimiter: str = ",",
        encoding: str = "utf-8-sig",
        schema: str | None = None,
    ) -> LoadReport:
        """
        Load one CSV file.

        Args:
            csv_path: CSV file with a header row
            table: Target table name
            batch_size: Rows per INSERT transaction
            column_map: CSV header -> table column overrides
            truncate: Delete existing rows before loading
            create_table: Create the table (all text columns) when missing
            empty_as_null: Insert empty strings as NULL
            delimiter: Field delimiter
            encoding: File encoding (default strips a UTF-8 BOM)
            schema: Database schema of the table

        Returns:
            LoadReport with row and batch counts

        Raises:
            CsvFormatError: If the file has no header or no header matches a column
            TableNotFoundError: If the table is missing and create_table is False
        """
        p = Path(csv_path)
        if not p.is_file():
            raise InputFileError(str(p))
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        column_map = column_map or {}
        report = LoadReport(source=str(p), table=table)

        with open(p, newline="", encoding=encoding) as f:
            reader = csv.DictReader(f, delimiter=delimiter)
            headers = reader.fieldnames
            if not headers:
                raise CsvFormatError(str(p), "file is empty or has no header row")

            target_table = self._get_table(table, schema, headers, column_map, create_table)
            mapping = self._map_headers(headers, target_table, column_map, report)
            if not mapping:
                raise CsvFormatError(
                    str(p), f"no CSV header matches a column of table '{table}'"
                )

            if truncate:
                with self.engine.begin() as conn:
                    conn.execute(target_table.delete())
                logger.info(f"Truncated {table}")

            batch: list[dict] = []
            first_line = 2
            for row in reader:
                report.rows_read += 1
                batch.append(
                    {
                        column: _cell(row.get(header), empty_as_null)
                        for header, column in mapping.items()
                    }
                )
                if len(batch) >= batch_size:
                    self._insert_batch(target_table, batch, first_line, report)
                    first_line = reader.line_num + 1
                    batch = []

            if batch:
                self._insert_batch(target_table, batch, first_line, report)

        logger.info(
            f"{p.name}: {report.rows_inserted}/{report.rows_read} rows inserted into {table}"
        )
        return report

    def _get_table(
        self,
        name: str,
        schema: str | None,
        headers: list[str],
        column_map: dict[str, str],
        create_table: bool,
    ) -> Table:
        metadata = MetaData()
        try:
            return Table(name, metadata, autoload_with=self.engine, schema=schema)
        except NoSuchTableError:
            if not create_table:
                raise TableNotFoundError(f"{schema}.{name}" if schema else name) from None

        metadata = MetaData()
        columns = []
        for header in headers:
            column = column_map.get(header, header).strip()
            if column and column not in [c.name for c in columns]:
                columns.append(Column(column, Text))
        created = Table(name, metadata, *columns, schema=schema)
        metadata.create_all(self.engine)
        logger.info(f"Created table {name} with {len(columns)} text column(s)")
        return created

    def _map_headers(
        self, headers: list[str], table: Table, column_map: dict[str, str], report: LoadReport
    ) -> dict[str, str]:
        columns_by_lower = {c.name.lower(): c.name for c in table.columns}
        mapping = {}
        for header in headers:
            target = column_map.get(header, header).strip().lower()
            if target in columns_by_lower:
                mapping[header] = columns_by_lower[target]
            else:
                report.ignored_headers.append(header)
                logger.warning(f"CSV column '{header}' has no match in {table.name}; ignored")
        report.columns = list(mapping.values())
        return mapping

    def _insert_batch(self, table: Table, batch: list[dict], first_line: int, report: LoadReport):
        report.batches += 1
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(table), batch)
            report.rows_inserted += len(batch)
        except SQLAlchemyError as e:
            error = redact_sensitive(str(e.orig if getattr(e, "orig", None) else e))
            report.failed_batches.append(FailedBatch(report.batches, first_line, len(batch), error))
            logger.error(f"Batch {report.batches} (from line {first_line}) failed: {error}")


def _cell(value: str | None, empty_as_null: bool) -> str | None:
    if empty_as_null and value == "":
        return None
    return value
