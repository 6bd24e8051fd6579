"""CSV files: codec, cache and value mapping.

Repair of CSV sources lives in ``data_migrator.files.repair``.
"""

from data_migrator.files.cache import CsvCache
from data_migrator.files.codec import read_csv, write_csv
from data_migrator.files.value_mapping import ValueMapping, load_value_mapping

__all__ = [
    "CsvCache",
    "read_csv",
    "write_csv",
    "ValueMapping",
    "load_value_mapping",
]
