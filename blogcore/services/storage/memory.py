"""In-process document store.

Evaluates the subset of the MongoDB query, update and aggregation dialect
that blogcore services issue, so the same service code runs against a live
database or entirely in memory (tests, local tooling).
"""

import asyncio
import copy
import logging
import operator
import re
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from bson import ObjectId

from blogcore.errors import ConflictError
from blogcore.services.storage.base import (
    Document,
    DocumentStore,
    SortSpec,
    get_path,
    set_path,
    unset_path,
)
from blogcore.services.storage.indexes import text_weights, unique_fields

logger = logging.getLogger(__name__)

_MISSING = object()
_TOKEN_RE = re.compile(r"\w+")

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$lt": operator.lt,
    "$lte": operator.le,
}

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


# -- value helpers -----------------------------------------------------------


def _normalize(value: Any) -> Any:
    """Deep-copy ``value``, making naive datetimes UTC-aware like MongoDB does."""
    if isinstance(value, dict):
        return {k: _normalize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_normalize(v) for v in value]
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _type_rank(value: Any) -> int:
    """BSON comparison order of a value's type."""
    if value is None:
        return 1
    if isinstance(value, bool):
        return 8
    if isinstance(value, (int, float)):
        return 2
    if isinstance(value, str):
        return 3
    if isinstance(value, dict):
        return 4
    if isinstance(value, list):
        return 5
    if isinstance(value, ObjectId):
        return 7
    if isinstance(value, datetime):
        return 9
    return 10


def _sort_key(value: Any) -> tuple[int, Any]:
    rank = _type_rank(value)
    if rank == 1:
        return (rank, 0)
    if rank in (4, 5, 10):
        return (rank, repr(value))
    return (rank, value)


def _hashable(value: Any) -> Any:
    if isinstance(value, dict):
        return tuple((k, _hashable(v)) for k, v in value.items())
    if isinstance(value, list):
        return tuple(_hashable(v) for v in value)
    return value


def _path_values(doc: Any, path: str) -> list[Any]:
    """Every value reachable at ``path``, descending into arrays of subdocuments."""
    current = [doc]
    for part in path.split("."):
        found = []
        for value in current:
            if isinstance(value, dict):
                if part in value:
                    found.append(value[part])
            elif isinstance(value, list):
                found.extend(
                    item[part] for item in value if isinstance(item, dict) and part in item
                )
        current = found
    return current


def _candidates(doc: Any, path: str) -> list[Any]:
    """Values a query condition is tested against: arrays and their elements."""
    out: list[Any] = []
    for value in _path_values(doc, path):
        out.append(value)
        if isinstance(value, list):
            out.extend(value)
    return out


# -- query matching ----------------------------------------------------------


def _equals(doc: Document, path: str, value: Any) -> bool:
    candidates = _candidates(doc, path)
    if value is None:
        return not candidates or any(c is None for c in candidates)
    if isinstance(value, re.Pattern):
        return any(isinstance(c, str) and value.search(c) for c in candidates)
    return any(c == value for c in candidates)


def _regex(pattern: Any, options: str) -> re.Pattern:
    if isinstance(pattern, re.Pattern):
        return pattern
    flags = 0
    for char in options:
        flags |= _REGEX_FLAGS.get(char, 0)
    return re.compile(pattern, flags)


def _apply_operator(doc: Document, path: str, op: str, arg: Any, options: str) -> bool:
    if op == "$eq":
        return _equals(doc, path, arg)
    if op == "$ne":
        return not _equals(doc, path, arg)
    if op == "$in":
        return any(_equals(doc, path, v) for v in arg)
    if op == "$nin":
        return not any(_equals(doc, path, v) for v in arg)
    if op in _COMPARATORS:
        compare = _COMPARATORS[op]
        return any(
            _type_rank(c) == _type_rank(arg) and compare(c, arg)
            for c in _candidates(doc, path)
        )
    if op == "$exists":
        return bool(_path_values(doc, path)) == bool(arg)
    if op == "$regex":
        pattern = _regex(arg, options)
        return any(isinstance(c, str) and pattern.search(c) for c in _candidates(doc, path))
    if op == "$size":
        return any(isinstance(v, list) and len(v) == arg for v in _path_values(doc, path))
    if op == "$not":
        return not _match_condition(doc, path, arg)
    raise ValueError(f"Unsupported query operator: {op}")


def _is_operator_dict(condition: Any) -> bool:
    return (
        isinstance(condition, dict)
        and bool(condition)
        and all(k.startswith("$") for k in condition)
    )


def _match_condition(doc: Document, path: str, condition: Any) -> bool:
    if _is_operator_dict(condition):
        options = condition.get("$options", "")
        return all(
            _apply_operator(doc, path, op, arg, options)
            for op, arg in condition.items()
            if op != "$options"
        )
    return _equals(doc, path, condition)


def matches(doc: Document, filter: Document) -> bool:
    """True when ``doc`` satisfies ``filter``. ``$text`` is scored separately."""
    for key, condition in filter.items():
        if key == "$and":
            if not all(matches(doc, sub) for sub in condition):
                return False
        elif key == "$or":
            if not any(matches(doc, sub) for sub in condition):
                return False
        elif key == "$nor":
            if any(matches(doc, sub) for sub in condition):
                return False
        elif key == "$text":
            continue
        elif not _match_condition(doc, key, condition):
            return False
    return True


# -- full-text scoring -------------------------------------------------------


def _tokens(text: str, case_sensitive: bool) -> list[str]:
    return _TOKEN_RE.findall(text if case_sensitive else text.lower())


def text_score(
    doc: Document, search: str, weights: dict[str, int], case_sensitive: bool = False
) -> float:
    """Weighted relevance of ``doc`` for the terms in ``search``.

    Follows MongoDB's per-field formula: repeated occurrences of a term add
    geometrically less, scaled by how much of the field the term covers and
    by the field weight. Zero means no term matched. Stemming and stop words
    are not applied.
    """
    terms = set(_tokens(search, case_sensitive))
    if not terms:
        return 0.0
    score = 0.0
    for field, weight in weights.items():
        value = get_path(doc, field)
        if not isinstance(value, str):
            continue
        tokens = _tokens(value, case_sensitive)
        for term in terms:
            count = tokens.count(term)
            if not count:
                continue
            freq = 2 - 2 ** (1 - count)
            coeff = 0.5 * count / len(tokens) + 0.5
            score += weight * freq * coeff
    return score


# -- projection --------------------------------------------------------------


def _is_flag(value: Any) -> bool:
    return isinstance(value, bool) or (isinstance(value, int) and value in (0, 1))


def _copy_path(src: Document, dst: Document, parts: list[str]) -> None:
    key = parts[0]
    if key not in src:
        return
    value = src[key]
    if len(parts) == 1:
        dst[key] = value
        return
    if isinstance(value, dict):
        target = dst.get(key)
        if not isinstance(target, dict):
            target = dst[key] = {}
        _copy_path(value, target, parts[1:])
    elif isinstance(value, list):
        items = [item for item in value if isinstance(item, dict)]
        target = dst.get(key)
        if not isinstance(target, list) or len(target) != len(items):
            target = dst[key] = [{} for _ in items]
        for item, sub in zip(items, target):
            _copy_path(item, sub, parts[1:])


def _project(
    doc: Document,
    spec: Document,
    evaluate: Callable[[Any, Document], Any] | None = None,
    score: float | None = None,
) -> Document:
    """Apply a find-style or ``$project``-style specification to ``doc``."""
    meta = [
        k
        for k, v in spec.items()
        if isinstance(v, dict) and v.get("$meta") == "textScore"
    ]
    flags = {k: v for k, v in spec.items() if k not in meta and _is_flag(v)}
    computed = {k: v for k, v in spec.items() if k not in meta and k not in flags}
    id_flag = flags.pop("_id", None)
    include_id = id_flag is None or bool(id_flag)
    inclusion = bool(computed) or any(flags.values()) or (not flags and bool(id_flag))

    if inclusion:
        result: Document = {}
        if include_id and "_id" in doc:
            result["_id"] = doc["_id"]
        for path, flag in flags.items():
            if flag:
                _copy_path(doc, result, path.split("."))
        for path, expr in computed.items():
            value = evaluate(expr, doc) if evaluate else expr
            set_path(result, path, value)
    else:
        result = _normalize(doc)
        for path in flags:
            unset_path(result, path)
        if not include_id:
            result.pop("_id", None)

    for key in meta:
        result[key] = score if score is not None else 0.0
    return result


# -- aggregation expressions -------------------------------------------------


def _field_value(value: Any, parts: list[str]) -> Any:
    for i, part in enumerate(parts):
        if isinstance(value, list):
            resolved = (_field_value(item, parts[i:]) for item in value)
            return [v for v in resolved if v is not None]
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def _to_ms(delta: timedelta) -> float:
    return delta / timedelta(milliseconds=1)


def _expr_size(arg: Any, doc: Document) -> int:
    value = evaluate(arg, doc)
    if not isinstance(value, list):
        raise ValueError(f"$size requires an array, got {type(value).__name__}")
    return len(value)


def _expr_concat(arg: list, doc: Document) -> str | None:
    parts = [evaluate(a, doc) for a in arg]
    if any(p is None for p in parts):
        return None
    return "".join(str(p) for p in parts)


def _expr_round(arg: list, doc: Document) -> float | None:
    value = evaluate(arg[0], doc)
    places = evaluate(arg[1], doc) if len(arg) > 1 else 0
    if value is None:
        return None
    return float(round(value, places))


def _expr_divide(arg: list, doc: Document) -> float | None:
    a, b = (evaluate(x, doc) for x in arg)
    if a is None or b is None:
        return None
    return a / b


def _expr_subtract(arg: list, doc: Document) -> Any:
    a, b = (evaluate(x, doc) for x in arg)
    if a is None or b is None:
        return None
    if isinstance(a, datetime) and isinstance(b, datetime):
        return _to_ms(a - b)
    if isinstance(a, datetime):
        return a - timedelta(milliseconds=b)
    return a - b


def _expr_add(arg: list, doc: Document) -> Any:
    values = [evaluate(x, doc) for x in arg]
    if any(v is None for v in values):
        return None
    dates = [v for v in values if isinstance(v, datetime)]
    numbers = [v for v in values if not isinstance(v, datetime)]
    if dates:
        return dates[0] + timedelta(milliseconds=sum(numbers))
    return sum(numbers)


def _expr_multiply(arg: list, doc: Document) -> Any:
    result: Any = 1
    for x in arg:
        value = evaluate(x, doc)
        if value is None:
            return None
        result *= value
    return result


def _truthy(value: Any) -> bool:
    return value is not None and value is not False and value != 0


def _expr_cond(arg: Any, doc: Document) -> Any:
    if isinstance(arg, dict):
        test, then, otherwise = arg["if"], arg["then"], arg["else"]
    else:
        test, then, otherwise = arg
    return evaluate(then if _truthy(evaluate(test, doc)) else otherwise, doc)


def _expr_eq(arg: list, doc: Document) -> bool:
    a, b = (evaluate(x, doc) for x in arg)
    return a == b


def _expr_if_null(arg: list, doc: Document) -> Any:
    value = evaluate(arg[0], doc)
    return value if value is not None else evaluate(arg[1], doc)


_EXPRESSIONS: dict[str, Callable[[Any, Document], Any]] = {
    "$literal": lambda arg, doc: arg,
    "$size": _expr_size,
    "$concat": _expr_concat,
    "$round": _expr_round,
    "$divide": _expr_divide,
    "$subtract": _expr_subtract,
    "$add": _expr_add,
    "$multiply": _expr_multiply,
    "$cond": _expr_cond,
    "$eq": _expr_eq,
    "$ifNull": _expr_if_null,
}


def evaluate(expr: Any, doc: Document) -> Any:
    """Evaluate an aggregation expression against ``doc``."""
    if isinstance(expr, str) and expr.startswith("$"):
        return _field_value(doc, expr[1:].split("."))
    if isinstance(expr, list):
        return [evaluate(e, doc) for e in expr]
    if isinstance(expr, dict):
        if len(expr) == 1:
            op = next(iter(expr))
            if op.startswith("$"):
                handler = _EXPRESSIONS.get(op)
                if handler is None:
                    raise ValueError(f"Unsupported expression operator: {op}")
                return handler(expr[op], doc)
        return {k: evaluate(v, doc) for k, v in expr.items()}
    return expr


# -- group accumulators ------------------------------------------------------


def _numeric(values: Iterable[Any]) -> list[int | float]:
    return [
        v for v in values if isinstance(v, (int, float)) and not isinstance(v, bool)
    ]


def _acc_sum(values: list[Any]) -> int | float:
    return sum(_numeric(values))


def _acc_avg(values: list[Any]) -> float | None:
    nums = _numeric(values)
    return sum(nums) / len(nums) if nums else None


def _acc_max(values: list[Any]) -> Any:
    present = [v for v in values if v is not None]
    return max(present, key=_sort_key) if present else None


def _acc_min(values: list[Any]) -> Any:
    present = [v for v in values if v is not None]
    return min(present, key=_sort_key) if present else None


def _acc_add_to_set(values: list[Any]) -> list[Any]:
    out: list[Any] = []
    for v in values:
        if v not in out:
            out.append(v)
    return out


_ACCUMULATORS: dict[str, Callable[[list[Any]], Any]] = {
    "$sum": _acc_sum,
    "$avg": _acc_avg,
    "$max": _acc_max,
    "$min": _acc_min,
    "$first": lambda values: values[0] if values else None,
    "$push": list,
    "$addToSet": _acc_add_to_set,
}


# -- sorting -----------------------------------------------------------------


def _sort_value(doc: Document, field: str, direction: int) -> Any:
    value = get_path(doc, field)
    if isinstance(value, list):
        if not value:
            return None
        pick = min if direction > 0 else max
        return pick(value, key=_sort_key)
    return value


def _sort_docs(
    docs: list[Document], sort: SortSpec, scores: dict[int, float] | None = None
) -> None:
    """Stable multi-key sort in place; ``{"$meta": "textScore"}`` sorts by score."""
    for field, direction in reversed(sort):
        if isinstance(direction, dict):
            docs.sort(key=lambda d: (scores or {}).get(id(d), 0.0), reverse=True)
        else:
            docs.sort(
                key=lambda d, f=field, dr=direction: _sort_key(_sort_value(d, f, dr)),
                reverse=direction < 0,
            )


# -- updates -----------------------------------------------------------------


def _apply_update(doc: Document, update: Document) -> None:
    if not update or not all(k.startswith("$") for k in update):
        raise ValueError("Update document must only contain update operators")
    for op, fields in update.items():
        for path, value in fields.items():
            if op == "$set":
                set_path(doc, path, value)
            elif op == "$unset":
                unset_path(doc, path)
            elif op == "$inc":
                current = get_path(doc, path, 0)
                if not isinstance(current, (int, float)) or isinstance(current, bool):
                    raise TypeError(f"Cannot apply $inc to non-numeric field {path!r}")
                set_path(doc, path, current + value)
            elif op == "$addToSet":
                items = get_path(doc, path)
                if items is None:
                    items = []
                    set_path(doc, path, items)
                additions = value["$each"] if _is_operator_dict(value) else [value]
                items.extend(v for v in additions if v not in items)
            elif op == "$pull":
                items = get_path(doc, path)
                if isinstance(items, list):
                    set_path(doc, path, [v for v in items if v != value])
            else:
                raise ValueError(f"Unsupported update operator: {op}")


# -- the store ---------------------------------------------------------------


class MemoryDocumentStore(DocumentStore):
    """Dict-backed document store with MongoDB semantics for blogcore queries.

    Writes are serialized by an ``asyncio.Lock`` so every single-document
    update, including ``$inc``, is atomic with respect to other coroutines.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[ObjectId, Document]] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    def _docs(self, collection: str) -> dict[ObjectId, Document]:
        return self._collections.setdefault(collection, {})

    def _check_unique(
        self, collection: str, doc: Document, exclude: ObjectId | None = None
    ) -> None:
        for field in unique_fields(collection):
            value = get_path(doc, field)
            if value is None:
                continue
            for other in self._docs(collection).values():
                if other["_id"] != exclude and get_path(other, field) == value:
                    raise ConflictError(field, value)

    def _select(
        self, collection: str, filter: Document
    ) -> tuple[list[Document], dict[int, float]]:
        text = filter.get("$text")
        weights: dict[str, int] = {}
        if text is not None:
            weights = text_weights(collection)
            if not weights:
                raise ValueError(f"Collection {collection!r} has no text index")
        selected: list[Document] = []
        scores: dict[int, float] = {}
        for stored in self._docs(collection).values():
            score = None
            if text is not None:
                score = text_score(
                    stored,
                    text.get("$search", ""),
                    weights,
                    bool(text.get("$caseSensitive", False)),
                )
                if score <= 0:
                    continue
            if not matches(stored, filter):
                continue
            doc = _normalize(stored)
            selected.append(doc)
            if score is not None:
                scores[id(doc)] = score
        return selected, scores

    async def insert_one(self, collection: str, document: Document) -> ObjectId:
        async with self._lock:
            doc = _normalize(document)
            doc.setdefault("_id", ObjectId())
            if doc["_id"] in self._docs(collection):
                raise ConflictError("_id", doc["_id"])
            self._check_unique(collection, doc)
            self._docs(collection)[doc["_id"]] = doc
            return doc["_id"]

    async def find(
        self,
        collection: str,
        filter: Document | None = None,
        *,
        sort: SortSpec | None = None,
        skip: int = 0,
        limit: int = 0,
        projection: Document | None = None,
    ) -> list[Document]:
        docs, scores = self._select(collection, _normalize(filter or {}))
        if sort:
            _sort_docs(docs, sort, scores)
        if skip:
            docs = docs[skip:]
        if limit:
            docs = docs[:limit]
        if not projection:
            return docs
        return [_project(d, projection, score=scores.get(id(d))) for d in docs]

    async def find_one(
        self,
        collection: str,
        filter: Document,
        projection: Document | None = None,
    ) -> Document | None:
        docs = await self.find(collection, filter, limit=1, projection=projection)
        return docs[0] if docs else None

    async def count_documents(self, collection: str, filter: Document) -> int:
        docs, _ = self._select(collection, _normalize(filter))
        return len(docs)

    async def update_one(
        self, collection: str, filter: Document, update: Document
    ) -> bool:
        filter = _normalize(filter)
        async with self._lock:
            store = self._docs(collection)
            for doc_id, stored in store.items():
                if not matches(stored, filter):
                    continue
                candidate = _normalize(stored)
                _apply_update(candidate, _normalize(update))
                self._check_unique(collection, candidate, exclude=doc_id)
                store[doc_id] = candidate
                return True
            return False

    async def delete_one(self, collection: str, filter: Document) -> bool:
        filter = _normalize(filter)
        async with self._lock:
            store = self._docs(collection)
            for doc_id, stored in store.items():
                if matches(stored, filter):
                    del store[doc_id]
                    return True
            return False

    async def distinct(
        self, collection: str, field: str, filter: Document | None = None
    ) -> list[Any]:
        docs, _ = self._select(collection, _normalize(filter or {}))
        values: list[Any] = []
        for doc in docs:
            for value in _path_values(doc, field):
                for item in value if isinstance(value, list) else [value]:
                    if item not in values:
                        values.append(item)
        return values

    async def aggregate(
        self, collection: str, pipeline: list[Document]
    ) -> list[Document]:
        docs = [_normalize(d) for d in self._docs(collection).values()]
        return self._run_pipeline(docs, pipeline)

    async def ping(self) -> bool:
        return not self._closed

    async def close(self) -> None:
        self._closed = True

    # -- pipeline stages -----------------------------------------------------

    def _run_pipeline(
        self, docs: list[Document], pipeline: list[Document]
    ) -> list[Document]:
        for stage in pipeline:
            if len(stage) != 1:
                raise ValueError(f"Pipeline stage must have exactly one key: {stage}")
            name, spec = next(iter(stage.items()))
            if name == "$match":
                if "$text" in spec:
                    raise ValueError("$text is not supported inside aggregate()")
                spec = _normalize(spec)
                docs = [d for d in docs if matches(d, spec)]
            elif name in ("$addFields", "$set"):
                docs = [self._add_fields(d, spec) for d in docs]
            elif name == "$project":
                docs = [_project(d, spec, evaluate) for d in docs]
            elif name == "$unwind":
                docs = self._unwind(docs, spec)
            elif name == "$group":
                docs = self._group(docs, spec)
            elif name == "$sort":
                _sort_docs(docs, list(spec.items()))
            elif name == "$skip":
                docs = docs[spec:]
            elif name == "$limit":
                docs = docs[:spec]
            elif name == "$lookup":
                docs = self._lookup(docs, spec)
            elif name == "$count":
                docs = [{spec: len(docs)}] if docs else []
            else:
                raise ValueError(f"Unsupported pipeline stage: {name}")
        return docs

    @staticmethod
    def _add_fields(doc: Document, spec: Document) -> Document:
        new = _normalize(doc)
        for path, expr in spec.items():
            set_path(new, path, evaluate(expr, doc))
        return new

    @staticmethod
    def _unwind(docs: list[Document], spec: Any) -> list[Document]:
        if isinstance(spec, str):
            path, preserve = spec, False
        else:
            path, preserve = spec["path"], spec.get("preserveNullAndEmptyArrays", False)
        field = path.lstrip("$")
        out: list[Document] = []
        for doc in docs:
            value = get_path(doc, field, _MISSING)
            if isinstance(value, list) and value:
                for item in value:
                    new = _normalize(doc)
                    set_path(new, field, item)
                    out.append(new)
            elif isinstance(value, list) or value is _MISSING or value is None:
                if preserve:
                    new = _normalize(doc)
                    unset_path(new, field)
                    out.append(new)
            else:
                out.append(doc)
        return out

    @staticmethod
    def _group(docs: list[Document], spec: Document) -> list[Document]:
        key_expr = spec["_id"]
        accumulators = {k: v for k, v in spec.items() if k != "_id"}
        groups: dict[Any, tuple[Any, list[Document]]] = {}
        for doc in docs:
            key = evaluate(key_expr, doc)
            groups.setdefault(_hashable(key), (key, []))[1].append(doc)

        out: list[Document] = []
        for key, members in groups.values():
            row: Document = {"_id": key}
            for name, acc in accumulators.items():
                (op, expr), = acc.items()
                reducer = _ACCUMULATORS.get(op)
                if reducer is None:
                    raise ValueError(f"Unsupported accumulator: {op}")
                row[name] = reducer([evaluate(expr, m) for m in members])
            out.append(row)
        return out

    def _lookup(self, docs: list[Document], spec: Document) -> list[Document]:
        foreign = list(self._docs(spec["from"]).values())
        local_field = spec.get("localField")
        foreign_field = spec.get("foreignField")
        out: list[Document] = []
        for doc in docs:
            if local_field is not None:
                local_values = _candidates(doc, local_field) or [None]
                joined = [
                    _normalize(f)
                    for f in foreign
                    if any(
                        c == v
                        for c in (_candidates(f, foreign_field) or [None])
                        for v in local_values
                    )
                ]
            else:
                joined = [_normalize(f) for f in foreign]
            if spec.get("pipeline"):
                joined = self._run_pipeline(joined, spec["pipeline"])
            new = dict(doc)
            set_path(new, spec["as"], joined)
            out.append(new)
        return out
