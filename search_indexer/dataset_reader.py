import io
import json
import logging
import posixpath
from typing import Optional

import pyarrow as pa
import pyarrow.fs as pafs
import pyarrow.json as pajson
import pyarrow.parquet as pq

from search_indexer.errors import DatasetReadError
from search_indexer.index_config import DatasetFormat
from search_indexer.storage import resolve_filesystem

logger = logging.getLogger(__name__)


def _is_hidden(name: str) -> bool:
    # _SUCCESS markers, .crc sidecars and the like.
    return name.startswith("_") or name.startswith(".")


def _dataset_files(filesystem: pafs.FileSystem, fs_path: str, path: str) -> list[str]:
    info = filesystem.get_file_info(fs_path)
    if info.type == pafs.FileType.NotFound:
        raise DatasetReadError(f"Dataset not found: {path}")
    if info.type == pafs.FileType.File:
        return [fs_path]
    entries = filesystem.get_file_info(pafs.FileSelector(fs_path, recursive=True))
    files = sorted(
        entry.path
        for entry in entries
        if entry.type == pafs.FileType.File and not _is_hidden(posixpath.basename(entry.path))
    )
    return files


def _read_bytes(filesystem: pafs.FileSystem, fs_path: str) -> bytes:
    with filesystem.open_input_stream(fs_path) as stream:
        return stream.read()


def _read_json_lines(raw: bytes, source: str) -> Optional[pa.Table]:
    if not raw.strip():
        return None
    try:
        return pajson.read_json(io.BytesIO(raw))
    except pa.ArrowInvalid as e:
        raise DatasetReadError(f"Invalid JSON lines in {source}: {e}") from e


def _read_json_array(raw: bytes, source: str) -> Optional[pa.Table]:
    if not raw.strip():
        return None
    try:
        parsed = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DatasetReadError(f"Invalid JSON array in {source}: {e}") from e
    if isinstance(parsed, dict):
        parsed = [parsed]
    if not isinstance(parsed, list):
        raise DatasetReadError(f"Expected a JSON array in {source}")
    if any(not isinstance(record, dict) for record in parsed):
        raise DatasetReadError(f"Every element of the JSON array in {source} must be an object")
    if not parsed:
        return None
    try:
        return pa.Table.from_pylist(parsed)
    except (pa.ArrowInvalid, pa.ArrowTypeError) as e:
        raise DatasetReadError(f"Unable to infer a schema for {source}: {e}") from e


def _concat(tables: list[pa.Table]) -> pa.Table:
    if not tables:
        return pa.table({})
    if len(tables) == 1:
        return tables[0]
    return pa.concat_tables(tables, promote_options="default")


def read_dataset(
    path: str,
    dataset_format: DatasetFormat | str,
    filesystem: Optional[pafs.FileSystem] = None,
) -> pa.Table:
    """Load a dataset into an Arrow table.

    ``json`` is newline-delimited, one record per line. ``json-array`` treats
    each whole file as a single JSON array of records. ``parquet`` accepts a
    file or a directory of part files. Directories are read recursively,
    skipping names starting with ``_`` or ``.``.

    Args:
        path: Dataset file or directory (local path or filesystem URI).
        dataset_format: One of ``json``, ``json-array``, ``parquet``.
        filesystem: Filesystem to read from; inferred from ``path`` when omitted.

    Returns:
        pa.Table: Rows with their discovered schema.
    """
    fmt = DatasetFormat.parse(dataset_format)
    if filesystem is None:
        filesystem, fs_path = resolve_filesystem(path)
    else:
        fs_path = str(path)

    if fmt is DatasetFormat.PARQUET:
        _dataset_files(filesystem, fs_path, path)
        try:
            table = pq.read_table(fs_path, filesystem=filesystem)
        except (pa.ArrowInvalid, OSError) as e:
            raise DatasetReadError(f"Unable to read parquet dataset {path}: {e}") from e
    else:
        reader = _read_json_lines if fmt is DatasetFormat.JSON else _read_json_array
        tables: list[pa.Table] = []
        for file_path in _dataset_files(filesystem, fs_path, path):
            table_part = reader(_read_bytes(filesystem, file_path), file_path)
            if table_part is not None:
                tables.append(table_part)
        try:
            table = _concat(tables)
        except (pa.ArrowInvalid, pa.ArrowTypeError) as e:
            raise DatasetReadError(f"Incompatible schemas across files of {path}: {e}") from e

    logger.info(f"Loaded {table.num_rows} rows from {path} ({fmt.value})")
    return table
