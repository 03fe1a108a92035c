"""Plain-text persistence for trees, decision tables and boosted ensembles.

A model is a ``[Predictor: <Kind>]`` line followed by ``Name: value`` lines;
arrays are written as bracketed comma-separated lists. Floats use ``repr``
so reading a model back reproduces its predictions exactly::

    [Predictor: DecisionTable]
    AttributeIndices: [3, 0]
    Thresholds: [6.5, 0.25]
    Bitmasks: [0, 1, 3]
    Predictions: [0.0, 1.0, 2.5]
"""

from __future__ import annotations

from enum import Enum
import io
from typing import Callable, Iterable, TextIO

import numpy as np

from boosting import BoostedModel
from decision_table import DecisionTable
from regression_tree import FlattenedTree, RegressionTree


class ModelKind(Enum):
    REGRESSION_TREE = "RegressionTree"
    DECISION_TABLE = "DecisionTable"
    BOOSTED_TABLES = "BoostedTables"
    BOOSTED_TREES = "BoostedTrees"


Model = RegressionTree | DecisionTable | BoostedModel


def model_kind(model: Model) -> ModelKind:
    if isinstance(model, RegressionTree):
        return ModelKind.REGRESSION_TREE
    if isinstance(model, DecisionTable):
        return ModelKind.DECISION_TABLE
    if isinstance(model, BoostedModel):
        if any(isinstance(member, RegressionTree) for member in model.models):
            return ModelKind.BOOSTED_TREES
        return ModelKind.BOOSTED_TABLES
    raise ValueError(f"cannot persist a model of type {type(model).__name__}")


def _format_list(values: np.ndarray) -> str:
    if values.dtype.kind == "f":
        items = (repr(float(v)) for v in values)
    else:
        items = (str(int(v)) for v in values)
    return "[" + ", ".join(items) + "]"


def _parse_list(text: str, dtype: type) -> np.ndarray:
    text = text.strip()
    if not (text.startswith("[") and text.endswith("]")):
        raise ValueError(f"expected a bracketed list, got {text!r}")
    body = text[1:-1].strip()
    if not body:
        return np.empty(0, dtype=dtype)
    return np.asarray([dtype(item) for item in body.split(",")], dtype=dtype)


class _ModelWriter:
    def __init__(self, out: TextIO) -> None:
        self.out = out

    def header(self, kind: ModelKind) -> None:
        self.out.write(f"[Predictor: {kind.value}]\n")

    def value(self, name: str, value: object) -> None:
        self.out.write(f"{name}: {value}\n")

    def array(self, name: str, values: np.ndarray) -> None:
        self.value(name, _format_list(np.asarray(values)))


class _ModelReader:
    def __init__(self, lines: Iterable[str]) -> None:
        self._lines = [line.strip() for line in lines if line.strip()]
        self._pos = 0

    @property
    def exhausted(self) -> bool:
        return self._pos >= len(self._lines)

    def _next(self) -> str:
        if self.exhausted:
            raise ValueError("unexpected end of model text")
        line = self._lines[self._pos]
        self._pos += 1
        return line

    def header(self) -> ModelKind:
        line = self._next()
        prefix = "[Predictor:"
        if not (line.startswith(prefix) and line.endswith("]")):
            raise ValueError(f"expected a predictor header, got {line!r}")
        name = line[len(prefix):-1].strip()
        try:
            return ModelKind(name)
        except ValueError:
            raise ValueError(f"unknown model kind: {name!r}") from None

    def value(self, name: str) -> str:
        line = self._next()
        prefix = f"{name}:"
        if not line.startswith(prefix):
            raise ValueError(f"expected {name!r}, got {line!r}")
        return line[len(prefix):].strip()

    def array(self, name: str, dtype: type) -> np.ndarray:
        return _parse_list(self.value(name), dtype)


def _write_tree(writer: _ModelWriter, tree: RegressionTree) -> None:
    flat = tree.flatten()
    writer.header(ModelKind.REGRESSION_TREE)
    writer.value("NumNodes", flat.values.size)
    writer.array("AttributeIndices", flat.attribute_indices)
    writer.array("Thresholds", flat.thresholds)
    writer.array("Lefts", flat.lefts)
    writer.array("Rights", flat.rights)
    writer.array("IsLeaf", flat.is_leaf.astype(np.int64))
    writer.array("Values", flat.values)


def _read_tree(reader: _ModelReader) -> RegressionTree:
    num_nodes = int(reader.value("NumNodes"))
    flat = FlattenedTree(
        attribute_indices=reader.array("AttributeIndices", int),
        thresholds=reader.array("Thresholds", float),
        lefts=reader.array("Lefts", int),
        rights=reader.array("Rights", int),
        is_leaf=reader.array("IsLeaf", int).astype(bool),
        values=reader.array("Values", float),
    )
    for name in ("attribute_indices", "thresholds", "lefts", "rights", "is_leaf", "values"):
        if getattr(flat, name).size != num_nodes:
            raise ValueError(f"tree field {name} must have {num_nodes} entries")
    return RegressionTree.from_flattened(flat)


def _write_table(writer: _ModelWriter, table: DecisionTable) -> None:
    writer.header(ModelKind.DECISION_TABLE)
    writer.array("AttributeIndices", table.attribute_indices)
    writer.array("Thresholds", table.thresholds)
    writer.array("Bitmasks", table.bitmasks)
    writer.array("Predictions", table.predictions)


def _read_table(reader: _ModelReader) -> DecisionTable:
    return DecisionTable(
        attribute_indices=reader.array("AttributeIndices", int),
        thresholds=reader.array("Thresholds", float),
        bitmasks=reader.array("Bitmasks", int),
        predictions=reader.array("Predictions", float),
    )


def _write_boosted(writer: _ModelWriter, model: BoostedModel, kind: ModelKind) -> None:
    writer.header(kind)
    writer.value("BaseScore", repr(model.base_score))
    if model.bin_thresholds is None:
        writer.value("BinThresholds", None)
    else:
        writer.value("BinThresholds", len(model.bin_thresholds))
        for thresholds in model.bin_thresholds:
            if thresholds is None:
                writer.value("Bins", None)
            else:
                writer.array("Bins", thresholds)
    writer.value("NumModels", len(model.models))
    write_member = _write_tree if kind is ModelKind.BOOSTED_TREES else _write_table
    for member in model.models:
        write_member(writer, member)


def _read_boosted(reader: _ModelReader, kind: ModelKind) -> BoostedModel:
    base_score = float(reader.value("BaseScore"))

    bin_thresholds: list[np.ndarray | None] | None = None
    count = reader.value("BinThresholds")
    if count != "None":
        bin_thresholds = []
        for _ in range(int(count)):
            text = reader.value("Bins")
            bin_thresholds.append(None if text == "None" else _parse_list(text, float))

    member_kind = ModelKind.REGRESSION_TREE if kind is ModelKind.BOOSTED_TREES else ModelKind.DECISION_TABLE
    read_member: Callable[[_ModelReader], Model] = (
        _read_tree if member_kind is ModelKind.REGRESSION_TREE else _read_table
    )
    models = []
    for _ in range(int(reader.value("NumModels"))):
        found = reader.header()
        if found is not member_kind:
            raise ValueError(f"{kind.value} cannot contain a {found.value}")
        models.append(read_member(reader))
    return BoostedModel(base_score, models, bin_thresholds)


def write_model(model: Model, out: TextIO) -> None:
    kind = model_kind(model)
    writer = _ModelWriter(out)
    if kind is ModelKind.REGRESSION_TREE:
        _write_tree(writer, model)
    elif kind is ModelKind.DECISION_TABLE:
        _write_table(writer, model)
    else:
        _write_boosted(writer, model, kind)


def _read(reader: _ModelReader) -> Model:
    kind = reader.header()
    if kind is ModelKind.REGRESSION_TREE:
        return _read_tree(reader)
    if kind is ModelKind.DECISION_TABLE:
        return _read_table(reader)
    return _read_boosted(reader, kind)


def read_model(source: TextIO) -> Model:
    reader = _ModelReader(source)
    model = _read(reader)
    if not reader.exhausted:
        raise ValueError("trailing content after model")
    return model


def dumps(model: Model) -> str:
    out = io.StringIO()
    write_model(model, out)
    return out.getvalue()


def loads(text: str) -> Model:
    return read_model(io.StringIO(text))
