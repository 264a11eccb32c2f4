"""Pipeline wiring: embedding provider, orchestrator and output assembly."""

from lintrace.pipeline.provider import ArrayEmbeddingProvider, EmbeddingProvider
from lintrace.pipeline.assembler import AssembledOutput, OutputAssembler
from lintrace.pipeline.orchestrator import LineagePipeline

__all__ = [
    "ArrayEmbeddingProvider",
    "EmbeddingProvider",
    "AssembledOutput",
    "OutputAssembler",
    "LineagePipeline",
]
