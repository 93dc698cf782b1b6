# File: mbmdrc/utils.py
# Location: mbmdrc/mbmdrc/utils.py

"""
Utility functions module.

Provides helpers for logging and for reading and writing the delimited
data tables used by the command line.
"""

import gzip
import logging
import os
from typing import Optional

import pandas as pd

logger = logging.getLogger("mbmdrc")


def silent_logger(name: str = "mbmdrc.silent") -> logging.Logger:
    """
    Return a logger that discards every record.

    Pass it as the ``logger`` argument of ``MBMDRClassifier`` to run without
    progress output.
    """
    quiet = logging.getLogger(name)
    if not any(isinstance(h, logging.NullHandler) for h in quiet.handlers):
        quiet.addHandler(logging.NullHandler())
    quiet.propagate = False
    quiet.setLevel(logging.CRITICAL + 1)
    return quiet


def smart_open(filename: str, mode: str = "r", encoding: str = "utf-8"):
    """
    Open a file with automatic gzip support based on file extension.

    Parameters
    ----------
    filename : str
        Path to the file
    mode : str
        File opening mode ('r', 'w', 'rt', 'wt', etc.)
    encoding : str
        Text encoding (for text modes)

    Returns
    -------
    file object
        Opened file handle
    """
    if filename.endswith(".gz"):
        if "t" not in mode and "b" not in mode:
            mode = mode + "t"
        return gzip.open(filename, mode, encoding=encoding)
    if "b" not in mode:
        return open(filename, mode, encoding=encoding)
    return open(filename, mode)


def detect_separator(filename: str) -> str:
    """Comma for ``.csv`` / ``.csv.gz`` files, tab otherwise."""
    base = filename[:-3] if filename.endswith(".gz") else filename
    return "," if base.lower().endswith(".csv") else "\t"


def read_table(filename: str, sep: Optional[str] = None) -> pd.DataFrame:
    """
    Read a delimited data table (optionally gzipped) into a DataFrame.

    Raises
    ------
    FileNotFoundError
        If ``filename`` does not exist.
    """
    if not os.path.exists(filename):
        raise FileNotFoundError(f"Data file '{filename}' not found.")
    sep = sep or detect_separator(filename)
    with smart_open(filename, "r") as handle:
        df = pd.read_csv(handle, sep=sep)
    logger.debug(f"Read {len(df)} rows x {len(df.columns)} columns from {filename}")
    return df


def write_table(df: pd.DataFrame, filename: Optional[str], sep: Optional[str] = None) -> None:
    """Write ``df`` to ``filename``, or to stdout when ``filename`` is None or '-'."""
    if filename in (None, "-"):
        print(df.to_csv(sep=sep or "\t", index=False), end="")
        return
    sep = sep or detect_separator(filename)
    with smart_open(filename, "w") as handle:
        df.to_csv(handle, sep=sep, index=False)
    logger.info(f"Wrote {len(df)} rows to {filename}")
