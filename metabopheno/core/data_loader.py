"""
Data Loading Module

Reads the metabolite abundance matrix and the clinical metadata table,
restricts both to the samples they have in common and orders them by a
grouping attribute so that rows line up one-to-one.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from ..exceptions import DataAlignmentError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SampleTable:
    """Row-aligned abundance matrix and metadata for one pipeline stage.

    Both frames are indexed by sample key, in the same order. Stages never
    modify a table in place; they build a new one with ``with_abundance``
    or ``subset``.
    """

    abundance: pd.DataFrame
    metadata: pd.DataFrame

    def __post_init__(self):
        if not self.abundance.index.equals(self.metadata.index):
            raise ValueError("Abundance and metadata rows are not aligned on the same sample keys")
        if self.abundance.index.has_duplicates:
            dup = self.abundance.index[self.abundance.index.duplicated()].unique().tolist()
            raise ValueError(f"Duplicate sample keys: {dup[:10]}")

    @property
    def samples(self) -> pd.Index:
        return self.abundance.index

    @property
    def analytes(self) -> pd.Index:
        return self.abundance.columns

    @property
    def n_samples(self) -> int:
        return len(self.abundance.index)

    def with_abundance(self, abundance: pd.DataFrame) -> "SampleTable":
        """Return a new table with the same samples and a replaced abundance matrix."""
        return SampleTable(abundance=abundance.loc[self.samples], metadata=self.metadata.copy())

    def subset(self, keys: Sequence) -> "SampleTable":
        """Return a new table restricted to ``keys``, keeping the current row order."""
        keep = self.samples[self.samples.isin(pd.Index(keys))]
        return SampleTable(abundance=self.abundance.loc[keep].copy(),
                           metadata=self.metadata.loc[keep].copy())

    def drop_missing(self, column: str) -> Tuple["SampleTable", int]:
        """Drop samples with no value for a metadata column.

        Returns the reduced table and the number of samples removed.
        """
        if column not in self.metadata.columns:
            raise ValueError(f"Metadata column '{column}' not found. "
                             f"Available columns: {list(self.metadata.columns)}")
        present = self.metadata[column].notna()
        n_missing = int((~present).sum())
        if n_missing:
            logger.warning(f"Excluding {n_missing} sample(s) with missing '{column}'")
        return self.subset(self.samples[present.values]), n_missing


def read_table(path: Union[str, Path], id_column: Optional[str] = None,
               sep: Optional[str] = None) -> pd.DataFrame:
    """
    Read a delimited, Excel or Parquet table keyed by sample identifier.

    Args:
        path: Input file
        id_column: Identifier column; the first column is used when None
        sep: Delimiter for text files; sniffed when None

    Returns:
        DataFrame indexed by the identifier as strings
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Data file '{p}' not found")

    suffix = p.suffix.lower()
    if suffix in {".xlsx", ".xls"}:
        df = pd.read_excel(p)
    elif suffix == ".parquet":
        df = pd.read_parquet(p)
    elif sep is not None:
        df = pd.read_csv(p, sep=sep)
    elif suffix in {".tsv", ".txt"}:
        df = pd.read_csv(p, sep="\t")
    elif suffix == ".csv":
        df = pd.read_csv(p)
    else:
        df = pd.read_csv(p, sep=None, engine="python")

    if id_column is None:
        id_column = df.columns[0]
    if id_column not in df.columns:
        raise ValueError(f"Identifier column '{id_column}' not found in {p.name}. "
                         f"Available columns: {list(df.columns)}")

    df[id_column] = df[id_column].astype(str).str.strip()
    df = df.set_index(id_column)
    df.index.name = "sample_id"
    if df.index.has_duplicates:
        raise ValueError(f"{p.name} has duplicate identifiers in '{id_column}'")

    logger.info(f"Loaded {p.name}: {df.shape[0]} rows x {df.shape[1]} columns")
    return df


def coerce_abundance(abundance: pd.DataFrame) -> pd.DataFrame:
    """Convert every analyte column to float; unparseable cells become missing."""
    before = abundance.isna().sum().sum()
    out = abundance.apply(pd.to_numeric, errors="coerce").astype(float)
    introduced = int(out.isna().sum().sum() - before)
    if introduced:
        logger.warning(f"{introduced} non-numeric abundance value(s) treated as missing")
    return out


def align_tables(abundance: pd.DataFrame, metadata: pd.DataFrame,
                 group_column: str) -> SampleTable:
    """
    Restrict both tables to their shared sample keys and sort by group.

    Args:
        abundance: Samples x analytes
        metadata: Samples x clinical attributes
        group_column: Metadata column used to order the rows

    Returns:
        SampleTable whose frames have identical, ordered indexes
    """
    if group_column not in metadata.columns:
        raise ValueError(f"Grouping column '{group_column}' not found in metadata. "
                         f"Available columns: {list(metadata.columns)}")

    abundance = abundance.copy()
    metadata = metadata.copy()
    abundance.index = abundance.index.astype(str)
    metadata.index = metadata.index.astype(str)

    shared = metadata.index[metadata.index.isin(abundance.index)]
    if len(shared) == 0:
        raise DataAlignmentError(
            f"No common sample identifiers between abundance ({len(abundance)} rows) "
            f"and metadata ({len(metadata)} rows)"
        )

    only_abundance = len(abundance.index) - len(shared)
    only_metadata = len(metadata.index) - len(shared)
    logger.info(f"Aligned {len(shared)} shared samples "
                f"(dropped {only_abundance} abundance-only, {only_metadata} metadata-only)")

    meta = metadata.loc[shared]
    group = meta[group_column]
    if pd.api.types.is_numeric_dtype(group):
        keys = group.to_numpy(dtype=float, na_value=np.nan)
    else:
        keys = group.astype(str).values
    # mergesort is stable: ties keep the metadata file order
    order = np.argsort(keys, kind="mergesort")
    meta = meta.iloc[order]
    abund = coerce_abundance(abundance.loc[meta.index])

    return SampleTable(abundance=abund, metadata=meta)


def load_datasets(abundance_path: Union[str, Path], metadata_path: Union[str, Path],
                  group_column: str, id_column: Optional[str] = None) -> SampleTable:
    """Read both input tables and align them."""
    abundance = read_table(abundance_path, id_column=id_column)
    metadata = read_table(metadata_path, id_column=id_column)
    return align_tables(abundance, metadata, group_column)
