"""Storage backends, sorted-table files and table-file bookkeeping for a LevelDB-style store."""

__version__ = "0.1.0"

__all__ = [
    "storage",
    "memstorage",
    "counting",
    "util",
    "filestorage",
    "tableformat",
    "tablewriter",
    "block",
    "tablereader",
    "tables",
    "kv",
]