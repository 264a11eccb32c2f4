"""`lintrace` - robust clustering and lineage/pseudotime inference for
single-cell embeddings.

Subpackages:
- clustering: Resampling ensemble and consensus extraction
- lineage: Cluster graph (MST) and lineage enumeration
- curves: Simultaneous principal curves and pseudotime
- pipeline: Embedding providers, orchestrator, output assembly
- schemas: Pydantic configuration
- contracts: Stage invariants and error taxonomy
"""

__version__ = "0.1.0"
