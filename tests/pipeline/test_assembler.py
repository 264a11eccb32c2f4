import numpy as np
import pandas as pd
import pytest

from lintrace.contracts import InputError
from lintrace.core import UNASSIGNED, ClusterAssignment, ClusterSet, RunStatus
from lintrace.curves import PseudotimeEngine
from lintrace.lineage import ClusterGraphBuilder
from lintrace.pipeline import OutputAssembler
from tests.helpers.synthetic import assignment_for, blob_labels

pytestmark = [pytest.mark.unit, pytest.mark.pipeline]


@pytest.fixture
def stage_outputs(pipeline_config, blob_embedding):
    labels = blob_labels(3, 20)
    labels[7] = UNASSIGNED
    assignment = assignment_for(blob_embedding, labels)
    clusters = ClusterSet.from_assignment(blob_embedding, assignment)
    graph = ClusterGraphBuilder(pipeline_config).build(clusters)
    pseudotime = PseudotimeEngine(pipeline_config).fit(blob_embedding, assignment, clusters, graph)
    return assignment, graph, pseudotime


def test_columns_and_index(stage_outputs):
    assignment, graph, pseudotime = stage_outputs

    out = OutputAssembler().assemble(assignment, graph, pseudotime)

    assert out.table.index.name == "cell_id"
    assert list(out.table.columns) == [
        "cluster_label", "stability",
        "pseudotime_0", "pseudotime_1",
        "weight_0", "weight_1",
    ]
    assert out.pseudotime_columns() == ["pseudotime_0", "pseudotime_1"]
    assert out.weight_columns() == ["weight_0", "weight_1"]
    assert out.table["cluster_label"].dtype == np.int64
    assert out.status is RunStatus.COMPLETED
    assert out.graph["root"] == 0
    assert out.graph["lineages"] == {0: [0, 1], 1: [0, 2]}


def test_absent_pairs_are_na(stage_outputs):
    assignment, graph, pseudotime = stage_outputs

    table = OutputAssembler().assemble(assignment, graph, pseudotime).table

    # blob 1 cells lie on lineage 0 only
    upper = table.iloc[20:40]
    assert upper["pseudotime_1"].isna().all()
    assert upper["pseudotime_0"].notna().all()
    assert (upper["weight_1"] == 0.0).all()
    # the unassigned cell lies on no lineage
    row = table.loc["cell_0007"]
    assert row["cluster_label"] == UNASSIGNED
    assert pd.isna(row["pseudotime_0"]) and pd.isna(row["pseudotime_1"])
    assert row["weight_0"] == 0.0 and row["weight_1"] == 0.0


def test_idempotent(stage_outputs, blob_embedding):
    assignment, graph, pseudotime = stage_outputs
    diagnostics = {"pac_score": 0.0, "k_counts": {3: 10}}
    assembler = OutputAssembler()

    first = assembler.assemble(assignment, graph, pseudotime, metadata=blob_embedding.metadata,
                               diagnostics=diagnostics)
    second = assembler.assemble(assignment, graph, pseudotime, metadata=blob_embedding.metadata,
                                diagnostics=diagnostics)

    pd.testing.assert_frame_equal(first.table, second.table)
    assert first.table.attrs == second.table.attrs
    assert first.graph == second.graph


def test_diagnostics_copied(stage_outputs):
    assignment, graph, pseudotime = stage_outputs
    diagnostics = {"k_counts": {3: 10}}

    out = OutputAssembler().assemble(assignment, graph, pseudotime, diagnostics=diagnostics)
    diagnostics["k_counts"][3] = 0

    assert out.diagnostics["k_counts"][3] == 10
    assert out.table.attrs["diagnostics"]["k_counts"][3] == 10


def test_metadata_joined(stage_outputs, blob_embedding):
    assignment, graph, pseudotime = stage_outputs

    table = OutputAssembler().assemble(assignment, graph, pseudotime, metadata=blob_embedding.metadata).table

    assert table.columns[-1] == "batch"
    assert table.loc["cell_0003", "batch"] == "b1"


def test_metadata_rows_must_match(stage_outputs, blob_embedding):
    assignment, graph, pseudotime = stage_outputs
    meta = blob_embedding.metadata.iloc[:10]

    with pytest.raises(InputError, match="Metadata rows"):
        OutputAssembler().assemble(assignment, graph, pseudotime, metadata=meta)


def test_metadata_column_clash(stage_outputs, blob_embedding):
    assignment, graph, pseudotime = stage_outputs
    meta = blob_embedding.metadata.rename(columns={"batch": "stability"})

    with pytest.raises(InputError, match="collide"):
        OutputAssembler().assemble(assignment, graph, pseudotime, metadata=meta)


def test_record_must_cover_same_cells(stage_outputs):
    assignment, graph, pseudotime = stage_outputs
    other = ClusterAssignment(
        cell_ids=assignment.cell_ids[::-1],
        labels=assignment.labels[::-1],
        stability=assignment.stability[::-1],
    )

    with pytest.raises(InputError, match="do not match"):
        OutputAssembler().assemble(other, graph, pseudotime)


def test_labels_only(stage_outputs):
    assignment, _, _ = stage_outputs

    out = OutputAssembler().assemble(assignment, status=RunStatus.CANCELLED)

    assert list(out.table.columns) == ["cluster_label", "stability"]
    assert out.graph is None
    assert out.status is RunStatus.CANCELLED
    assert out.table.attrs["status"] == "cancelled"
