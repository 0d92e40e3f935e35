"""Mock AnnData generators for testing.

Provides functions to create small scRNA-seq style AnnData objects with
known cell types, samples and a condition effect, without requiring
real data.
"""

from typing import Dict, List

import numpy as np
import pandas as pd
from scipy import sparse


CELL_TYPE_MARKERS: Dict[str, List[str]] = {
    "T cell": ["CD3D", "CD3E", "IL7R", "LCK", "CD2"],
    "B cell": ["MS4A1", "CD79A", "CD79B", "CD19", "BANK1"],
    "Monocyte": ["LYZ", "CD14", "S100A8", "S100A9", "FCN1"],
}

# Induced in every cell type of the tumor samples
RESPONSE_GENES = ["ISG15", "IFI6", "MX1", "IFIT1", "IFIT3", "OAS1"]

MITO_GENES = ["MT-CO1", "MT-ND1", "MT-ATP6", "MT-CYB"]
RIBO_GENES = ["RPS3", "RPS6", "RPL10", "RPL13"]
HB_GENES = ["HBB", "HBA1"]

SAMPLE_TABLE = pd.DataFrame({
    "sample_id": ["S1", "S2", "S3", "S4"],
    "patient": ["P1", "P1", "P2", "P2"],
    "tissue": ["normal", "tumor", "normal", "tumor"],
})

# Cell type mix per tissue (T cell, B cell, Monocyte)
TYPE_PROBABILITIES = {
    "normal": [0.4, 0.3, 0.3],
    "tumor": [0.6, 0.2, 0.2],
}


def gene_names(n_background: int = 150) -> List[str]:
    """Gene order used by :func:`create_count_adata`."""
    markers = [g for genes in CELL_TYPE_MARKERS.values() for g in genes]
    background = [f"GENE{i:04d}" for i in range(n_background)]
    return markers + RESPONSE_GENES + MITO_GENES + RIBO_GENES + HB_GENES + background


def create_count_adata(
    n_cells: int = 400,
    n_background: int = 150,
    n_low_quality: int = 10,
    seed: int = 42,
) -> "AnnData":
    """Create a raw UMI count AnnData with three cell types.

    Cells are spread over four samples (two patients, each with a normal
    and a tumor sample). Marker genes are high in their own cell type,
    response genes are high in tumor cells, and the first
    ``n_low_quality`` cells look like broken cells (few genes, mostly
    mitochondrial counts).

    Parameters
    ----------
    n_cells : int
        Number of cells
    n_background : int
        Number of unstructured background genes
    n_low_quality : int
        Cells simulated as low quality
    seed : int
        Random seed for reproducibility

    Returns
    -------
    AnnData
        Sparse integer counts in ``.X``; obs has sample_id, patient,
        tissue, true_cell_type and low_quality
    """
    import anndata as ad

    np.random.seed(seed)

    genes = gene_names(n_background)
    gene_index = {g: i for i, g in enumerate(genes)}
    cell_types = list(CELL_TYPE_MARKERS)

    samples = np.resize(SAMPLE_TABLE["sample_id"].to_numpy(), n_cells)
    tissue_of = dict(zip(SAMPLE_TABLE["sample_id"], SAMPLE_TABLE["tissue"]))
    patient_of = dict(zip(SAMPLE_TABLE["sample_id"], SAMPLE_TABLE["patient"]))
    tissues = np.array([tissue_of[s] for s in samples])
    types = np.array([
        np.random.choice(cell_types, p=TYPE_PROBABILITIES[t]) for t in tissues
    ])

    # Baseline expression: every gene detected at a moderate rate
    base = np.maximum(np.random.gamma(shape=4.0, scale=0.5, size=len(genes)), 0.5)
    rates = np.tile(base, (n_cells, 1))
    for cell_type, markers in CELL_TYPE_MARKERS.items():
        idx = [gene_index[g] for g in markers]
        rates[:, idx] = np.where((types == cell_type)[:, None], 8.0, 0.2)
    response_idx = [gene_index[g] for g in RESPONSE_GENES]
    rates[:, response_idx] = np.where((tissues == "tumor")[:, None], 6.0, 0.5)
    mito_idx = [gene_index[g] for g in MITO_GENES]
    rates[:, mito_idx] = 3.0

    low_quality = np.zeros(n_cells, dtype=bool)
    low_quality[:n_low_quality] = True
    rates[low_quality] *= 0.1
    rates[np.ix_(low_quality, mito_idx)] = 20.0

    library = np.random.lognormal(mean=0.0, sigma=0.2, size=(n_cells, 1))
    counts = np.random.poisson(rates * library).astype(np.float32)

    obs = pd.DataFrame({
        "sample_id": pd.Categorical(samples),
        "patient": pd.Categorical([patient_of[s] for s in samples]),
        "tissue": pd.Categorical(tissues),
        "true_cell_type": pd.Categorical(types),
        "low_quality": low_quality,
    })
    obs.index = pd.Index([f"cell_{i}" for i in range(n_cells)])
    var = pd.DataFrame(index=pd.Index(genes))

    return ad.AnnData(X=sparse.csr_matrix(counts), obs=obs, var=var)


def create_normalized_adata(
    n_cells: int = 400,
    seed: int = 42,
) -> "AnnData":
    """Create a QC-clean, log-normalized AnnData.

    Low-quality cells are dropped; ``layers["counts"]``,
    ``layers["lognorm"]`` and ``.raw`` are filled the way the normalize
    stage leaves them.
    """
    import scanpy as sc

    adata = create_count_adata(n_cells=n_cells, n_low_quality=0, seed=seed)
    adata.layers["counts"] = adata.X.copy()
    sc.pp.normalize_total(adata, target_sum=1e4)
    sc.pp.log1p(adata)
    adata.layers["lognorm"] = adata.X.copy()
    adata.raw = adata
    return adata


def create_clustered_adata(
    n_cells: int = 400,
    seed: int = 42,
) -> "AnnData":
    """Create a normalized AnnData that looks like cluster stage output.

    ``obs["cluster"]`` follows the simulated cell types ("0" T cell,
    "1" B cell, "2" Monocyte) and ``obsm`` holds a PCA-like embedding and
    a 2-D UMAP-like embedding with one blob per cluster.
    """
    adata = create_normalized_adata(n_cells=n_cells, seed=seed)

    np.random.seed(seed + 1)
    cell_types = list(CELL_TYPE_MARKERS)
    codes = np.array([cell_types.index(t) for t in adata.obs["true_cell_type"]])
    adata.obs["cluster"] = pd.Categorical([str(c) for c in codes])

    centers = np.array([[0.0, 0.0], [8.0, 0.0], [4.0, 7.0]])
    adata.obsm["X_umap"] = centers[codes] + np.random.normal(scale=0.8, size=(adata.n_obs, 2))
    pca_centers = np.random.normal(scale=5.0, size=(len(cell_types), 10))
    adata.obsm["X_pca"] = pca_centers[codes] + np.random.normal(size=(adata.n_obs, 10))
    return adata


def create_annotated_adata(
    n_cells: int = 400,
    seed: int = 42,
) -> "AnnData":
    """Create a clustered AnnData with ``obs["cell_type"]`` filled in."""
    adata = create_clustered_adata(n_cells=n_cells, seed=seed)
    adata.obs["cell_type"] = pd.Categorical(adata.obs["true_cell_type"].astype(str))
    return adata


def create_de_table(
    category: str,
    up_genes: List[str],
    down_genes: List[str] = (),
    n_background: int = 20,
) -> pd.DataFrame:
    """Create a DE table in the layout written by the DE stage.

    ``up_genes`` and ``down_genes`` pass the default thresholds; the
    background genes do not.
    """
    rows = []
    for i, gene in enumerate(up_genes):
        rows.append((gene, 10.0 - i * 0.1, 2.0, 1e-8, 1e-6))
    for i, gene in enumerate(down_genes):
        rows.append((gene, -10.0 + i * 0.1, -2.0, 1e-8, 1e-6))
    for i in range(n_background):
        rows.append((f"BG{i:03d}", 0.1, 0.05, 0.5, 0.9))
    df = pd.DataFrame(rows, columns=["gene", "score", "logfoldchange", "pval", "pval_adj"])
    df["pct_case"] = 0.5
    df["pct_reference"] = 0.4
    df["cell_type"] = category
    return df
